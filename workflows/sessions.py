"""Conversation state for the assistant.

Each session carries its own history and its own pending action. The
pending action is one of three variants:

    NoPendingAction                  nothing waiting
    AwaitingConfirmation(action)     asked the user to confirm action
    AwaitingPropertyInfo(action)     asked which property action belongs to

SessionState is immutable; every transition returns a new state, which the
caller saves back to a SessionStore.
"""

import dataclasses
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from .errors import InvalidTransition

# History length kept per session (user and assistant turns)
DEFAULT_MAX_TURNS = 22


@dataclass(frozen=True)
class PendingAction:
    """A function call the assistant wants to run once the user agrees."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoPendingAction:
    pass


@dataclass(frozen=True)
class AwaitingConfirmation:
    action: PendingAction


@dataclass(frozen=True)
class AwaitingPropertyInfo:
    action: PendingAction


Pending = Union[NoPendingAction, AwaitingConfirmation, AwaitingPropertyInfo]


@dataclass(frozen=True)
class Turn:
    role: str                                # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class SessionState:
    session_id: str
    history: Tuple[Turn, ...] = ()
    pending: Pending = NoPendingAction()

    def with_turn(self, role: str, content: str,
                  max_turns: int = DEFAULT_MAX_TURNS) -> "SessionState":
        """New state with a turn appended, keeping only the last max_turns."""
        history = (self.history + (Turn(role, content),))[-max_turns:]
        return dataclasses.replace(self, history=history)

    def propose(self, action: PendingAction, needs_property: bool = False) -> "SessionState":
        """Ask the user about an action, replacing any earlier pending one."""
        pending = AwaitingPropertyInfo(action) if needs_property else AwaitingConfirmation(action)
        return dataclasses.replace(self, pending=pending)

    def provide_property(self, property_id: Optional[str]) -> "SessionState":
        """Attach the property the user named (None: not property-related).

        Raises:
            InvalidTransition: If no property question is pending
        """
        if not isinstance(self.pending, AwaitingPropertyInfo):
            raise InvalidTransition("No action is waiting for property info")
        action = self.pending.action
        if property_id is not None:
            action = PendingAction(action.name, {**action.arguments, 'property_id': property_id})
        return dataclasses.replace(self, pending=AwaitingConfirmation(action))

    def confirm(self) -> Tuple["SessionState", PendingAction]:
        """Clear the pending action and hand it back for execution.

        Raises:
            InvalidTransition: If nothing is awaiting confirmation
        """
        if not isinstance(self.pending, AwaitingConfirmation):
            raise InvalidTransition("No action is awaiting confirmation")
        return dataclasses.replace(self, pending=NoPendingAction()), self.pending.action

    def deny(self) -> "SessionState":
        """Drop whatever is pending."""
        return dataclasses.replace(self, pending=NoPendingAction())


class SessionStore(ABC):
    """Key-value store for session state, injected where sessions are used."""

    @abstractmethod
    def get(self, session_id: str) -> SessionState:
        """Return the session's state, or a fresh state if it is unknown."""
        pass

    @abstractmethod
    def save(self, state: SessionState) -> None:
        pass

    @abstractmethod
    def clear(self, session_id: str) -> None:
        pass

    def append_turn(self, session_id: str, role: str, content: str) -> SessionState:
        state = self.get(session_id).with_turn(role, content, self.max_turns)
        self.save(state)
        return state

    @property
    def max_turns(self) -> int:
        return DEFAULT_MAX_TURNS


class InMemorySessionStore(SessionStore):
    """Process-local session store. Histories are trimmed on every save."""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._max_turns = max_turns
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def get(self, session_id: str) -> SessionState:
        with self._lock:
            return self._sessions.get(session_id) or SessionState(session_id)

    def save(self, state: SessionState) -> None:
        if len(state.history) > self._max_turns:
            state = dataclasses.replace(state, history=state.history[-self._max_turns:])
        with self._lock:
            self._sessions[state.session_id] = state

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
