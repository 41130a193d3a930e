"""Tests for assistant session state."""

import pytest

from workflows import (
    AwaitingConfirmation,
    AwaitingPropertyInfo,
    InMemorySessionStore,
    InvalidTransition,
    NoPendingAction,
    PendingAction,
    SessionState,
)

CREATE_BILL = PendingAction("create_bill", {'vendor': "Verde Farms", 'amount': "1250.00"})


class TestSessionState:

    def test_fresh_session_has_nothing_pending(self):
        state = SessionState("s1")
        assert state.pending == NoPendingAction()
        assert state.history == ()

    def test_propose_then_confirm(self):
        state = SessionState("s1").propose(CREATE_BILL)
        assert state.pending == AwaitingConfirmation(CREATE_BILL)

        state, action = state.confirm()
        assert action == CREATE_BILL
        assert state.pending == NoPendingAction()

    def test_confirm_twice_fails(self):
        state, _ = SessionState("s1").propose(CREATE_BILL).confirm()
        with pytest.raises(InvalidTransition):
            state.confirm()

    def test_deny_drops_action(self):
        state = SessionState("s1").propose(CREATE_BILL).deny()
        assert state.pending == NoPendingAction()

    def test_property_question_before_confirmation(self):
        state = SessionState("s1").propose(CREATE_BILL, needs_property=True)
        assert state.pending == AwaitingPropertyInfo(CREATE_BILL)
        with pytest.raises(InvalidTransition):
            state.confirm()

        state = state.provide_property("prop-7")
        _, action = state.confirm()
        assert action.arguments == {'vendor': "Verde Farms", 'amount': "1250.00", 'property_id': "prop-7"}
        # The original action is untouched
        assert 'property_id' not in CREATE_BILL.arguments

    def test_not_property_related(self):
        state = SessionState("s1").propose(CREATE_BILL, needs_property=True).provide_property(None)
        _, action = state.confirm()
        assert action == CREATE_BILL

    def test_provide_property_without_question(self):
        with pytest.raises(InvalidTransition):
            SessionState("s1").propose(CREATE_BILL).provide_property("prop-7")

    def test_new_proposal_replaces_old(self):
        other = PendingAction("reject_document", {'id': "d1"})
        state = SessionState("s1").propose(CREATE_BILL).propose(other)
        assert state.pending == AwaitingConfirmation(other)

    def test_states_are_immutable(self):
        state = SessionState("s1")
        state.with_turn("user", "hello")
        assert state.history == ()


class TestInMemorySessionStore:

    def test_sessions_are_isolated(self):
        sessions = InMemorySessionStore()
        sessions.save(sessions.get("a").propose(CREATE_BILL))
        assert sessions.get("b").pending == NoPendingAction()
        assert sessions.get("a").pending == AwaitingConfirmation(CREATE_BILL)

    def test_history_is_trimmed(self):
        sessions = InMemorySessionStore(max_turns=4)
        for i in range(10):
            sessions.append_turn("a", "user", f"message {i}")
        history = sessions.get("a").history
        assert len(history) == 4
        assert history[0].content == "message 6"
        assert history[-1].content == "message 9"

    def test_default_history_length(self):
        sessions = InMemorySessionStore()
        for i in range(30):
            sessions.append_turn("a", "user" if i % 2 == 0 else "assistant", str(i))
        assert len(sessions.get("a").history) == 22

    def test_pending_action_survives_turns(self):
        sessions = InMemorySessionStore()
        sessions.save(sessions.get("a").propose(CREATE_BILL))
        sessions.append_turn("a", "user", "yes")
        assert sessions.get("a").pending == AwaitingConfirmation(CREATE_BILL)

    def test_clear(self):
        sessions = InMemorySessionStore()
        sessions.append_turn("a", "user", "hi")
        sessions.clear("a")
        assert sessions.get("a").history == ()

    def test_invalid_max_turns(self):
        with pytest.raises(ValueError):
            InMemorySessionStore(max_turns=0)
