"""Tests for the HTTP API."""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from accounting import BillRef
from api import Services, create_app
from conftest import FakeAccounting, FakeClassifier, LEGAL_TRIAGE
from workflows import (
    ApprovalPipeline,
    DocumentStatus,
    IntakePipeline,
    ReconciliationEngine,
    Transaction,
    TransactionSource,
)

PDF = ("invoice.pdf", b"%PDF-1.4 invoice", "application/pdf")


@pytest.fixture
def services(classifier, store, repository, accounting, clock):
    return Services(
        approval=ApprovalPipeline(store, repository, accounting, clock=clock),
        reconciliation=ReconciliationEngine(store, accounting),
        intake=IntakePipeline(classifier, store, repository, clock=clock),
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def upload(client, file=PDF, **data):
    response = client.post("/api/files/upload", files={'file': file}, data=data)
    assert response.status_code == 201, response.text
    return response.json()['document']


class TestUpload:

    def test_upload_invoice(self, client):
        doc = upload(client)
        assert doc['status'] == "needs_review"
        assert doc['fileRef'] == "Unprocessed Files/invoice.pdf"
        assert doc['metadata']['vendorName'] == "Verde Farms"
        assert doc['metadata']['amount'] == "1250.00"
        assert doc['metadata']['suggestedDestination'] == "AccountingSystem"
        assert doc['sourceContext'] == "web"

    def test_upload_from_drive_scan(self, services, store, repository, clock):
        services.intake = IntakePipeline(FakeClassifier(tier1=LEGAL_TRIAGE), store, repository, clock=clock)
        client = TestClient(create_app(services))
        doc = upload(client, source="drive")
        assert doc['status'] == "archived"
        assert doc['sourceContext'] == "repository-scan"

    def test_empty_file(self, client):
        response = client.post("/api/files/upload", files={'file': ("empty.pdf", b"", "application/pdf")})
        assert response.status_code == 400
        assert response.json() == {'error': "File is empty"}

    def test_missing_file(self, client):
        response = client.post("/api/files/upload", data={'source': "web"})
        assert response.status_code == 400

    def test_staging_failure(self, client, repository):
        repository.fail_upload = True
        response = client.post("/api/files/upload", files={'file': PDF})
        assert response.status_code == 500
        assert "upload refused" in response.json()['error']

    def test_no_classifier(self, services):
        services.intake = None
        response = TestClient(create_app(services)).post("/api/files/upload", files={'file': PDF})
        assert response.status_code == 500


class TestReviewQueue:

    def test_pending(self, client):
        doc = upload(client)
        response = client.get("/api/files/pending")
        assert response.status_code == 200
        assert [d['id'] for d in response.json()['documents']] == [doc['id']]

    def test_confirm(self, client, accounting):
        doc = upload(client)
        response = client.post("/api/files/confirm", json={
            'documentId': doc['id'],
            'destination': "AccountingSystem",
            'metadata': {'amount': "1200.00"},
            'targetPath': "Vendors/Verde Farms",
        })
        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['billId'] == "bill-1"
        assert body['finalPath'] == "All Files/Vendors/Verde Farms"
        assert body['fileMoved'] is True
        assert body['document']['status'] == "processed"
        assert body['document']['metadata']['createdBillId'] == "bill-1"
        assert accounting.requests[0].line_items[0].amount == Decimal("1200.00")
        assert client.get("/api/files/pending").json()['documents'] == []

    def test_confirm_accepts_doc_id(self, client):
        doc = upload(client)
        response = client.post("/api/files/confirm", json={'docId': doc['id'], 'destination': "ArchiveOnly"})
        assert response.status_code == 200
        assert response.json()['billId'] is None

    def test_confirm_without_id(self, client):
        response = client.post("/api/files/confirm", json={'destination': "ArchiveOnly"})
        assert response.status_code == 400
        assert response.json() == {'error': "Document ID required"}

    def test_confirm_unknown_document(self, client):
        response = client.post("/api/files/confirm", json={'documentId': "missing"})
        assert response.status_code == 404

    def test_confirm_twice(self, client):
        doc = upload(client)
        assert client.post("/api/files/confirm", json={'documentId': doc['id']}).status_code == 200
        response = client.post("/api/files/confirm", json={'documentId': doc['id']})
        assert response.status_code == 409

    def test_confirm_accounting_failure(self, services, client, store):
        services.approval.accounting = FakeAccounting(fail=True)
        doc = upload(client)
        response = client.post("/api/files/confirm", json={'documentId': doc['id']})

        assert response.status_code == 500
        assert "remains in review" in response.json()['error']
        assert store.get_by_id(doc['id']).status == DocumentStatus.NEEDS_REVIEW

    def test_confirm_bad_destination(self, client):
        doc = upload(client)
        response = client.post("/api/files/confirm", json={'documentId': doc['id'], 'destination': "Fax"})
        assert response.status_code == 400

    def test_reject(self, client):
        doc = upload(client)
        response = client.post("/api/files/reject", json={'documentId': doc['id']})
        assert response.status_code == 200
        assert response.json()['document']['status'] == "rejected"
        assert response.json()['document']['fileRef'] == "Rejected/invoice.pdf"

    def test_resolve_duplicate(self, client):
        upload(client)
        duplicate = upload(client, file=("copy.pdf", b"%PDF-1.4 copy", "application/pdf"))
        assert duplicate['isDuplicate'] is True

        response = client.post("/api/files/resolve-duplicate",
                               json={'documentId': duplicate['id'], 'resolution': "delete_new"})
        assert response.status_code == 200
        assert response.json()['document']['status'] == "rejected"

    def test_resolve_duplicate_without_resolution(self, client):
        doc = upload(client)
        response = client.post("/api/files/resolve-duplicate", json={'documentId': doc['id']})
        assert response.status_code == 400

    def test_resolve_non_duplicate(self, client):
        doc = upload(client)
        response = client.post("/api/files/resolve-duplicate",
                               json={'documentId': doc['id'], 'resolution': "keep_both"})
        assert response.status_code == 409

    def test_edit(self, client):
        doc = upload(client)
        response = client.patch(f"/api/files/{doc['id']}", json={'vendorName': "Verde Farms LLC"})
        assert response.status_code == 200
        assert response.json()['document']['metadata']['vendorName'] == "Verde Farms LLC"

    def test_edit_negative_amount(self, client):
        doc = upload(client)
        response = client.patch(f"/api/files/{doc['id']}", json={'amount': -3})
        assert response.status_code == 400


class TestReconciliation:

    def test_sync_and_ghosts(self, client, store, accounting):
        store.upsert_transactions([
            Transaction("realm-1", TransactionSource.BANK, "t1", Decimal("100.00"), date(2026, 3, 10)),
            Transaction("realm-1", TransactionSource.BANK, "t2", Decimal("42.00"), date(2026, 3, 11),
                        counterparty="Unknown charge"),
        ])
        accounting.bills = [BillRef("b1", "Verde Farms", Decimal("100.00"), date(2026, 3, 12))]

        response = client.post("/api/reconciliation/realm-1/sync")
        assert response.json() == {'success': True, 'synced': 1}

        response = client.get("/api/reconciliation/realm-1/ghosts")
        assert response.status_code == 200
        body = response.json()
        assert body['count'] == 1
        assert body['ghosts'][0]['externalId'] == "t2"
        assert body['ghosts'][0]['vendorOrCounterparty'] == "Unknown charge"

    def test_sync_without_accounting(self, services, client):
        services.reconciliation.accounting = None
        response = client.post("/api/reconciliation/realm-1/sync")
        assert response.status_code == 500


def test_healthz(client):
    assert client.get("/healthz").json() == {'status': "ok"}
