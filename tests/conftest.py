"""Shared fixtures and in-memory fakes for the ledgerdesk tests.

The fakes stand in for the LLM provider, the file repository and the
accounting system, so no test needs network access or credentials.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from accounting import AccountingError, AccountingSystem, BillRef, BillRequest, VendorRef
from ledgerdesk import LedgerDesk
from models import Classifier, Tier1Result, Tier2Result
from storage import FileRepository, StorageError
from workflows import (
    Destination, Document, DocumentStatus, DocumentStore, ExtractedFields,
)


FINANCIAL_TRIAGE = Tier1Result("financial_actionable", "Inventory Invoices", True)
LEGAL_TRIAGE = Tier1Result("non_financial", "Legal Documents", False)

VERDE_FARMS = Tier2Result(
    vendor_name="Verde Farms",
    amount=Decimal("1250.00"),
    date=date(2026, 3, 1),
    description="Seed trays and growing medium",
    filing_category="Inventory Invoices",
    confidence=0.92,
)


class FakeClock:
    """Fixed UTC clock that tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeClassifier(Classifier):
    """Returns canned results, or raises when given an exception."""

    def __init__(self, tier1=FINANCIAL_TRIAGE, tier2=VERDE_FARMS) -> None:
        self.tier1 = tier1
        self.tier2 = tier2
        self.tier1_calls = 0
        self.tier2_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    async def classify_tier1(self, data: bytes, mime_type: str) -> Tier1Result:
        self.tier1_calls += 1
        if isinstance(self.tier1, Exception):
            raise self.tier1
        return self.tier1

    async def classify_tier2(self, data: bytes, mime_type: str) -> Tier2Result:
        self.tier2_calls += 1
        if isinstance(self.tier2, Exception):
            raise self.tier2
        return self.tier2


class FakeRepository(FileRepository):
    """In-memory file repository. References are 'folder/filename' paths."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.moves: List[tuple] = []
        self.fail_upload = False
        self.fail_move = False

    @property
    def display_name(self) -> str:
        return "memory (fake)"

    def put(self, file_ref: str, data: bytes = b"%PDF-1.4 test") -> str:
        self.files[file_ref] = data
        return file_ref

    async def upload_to_path(self, data: bytes, filename: str, path: str) -> str:
        if self.fail_upload:
            raise StorageError("upload refused")
        return self.put(f"{path}/{self.sanitize_filename(filename)}", data)

    async def move_path(self, file_ref: str, new_path: str) -> str:
        if self.fail_move:
            raise StorageError("move refused")
        if file_ref not in self.files:
            raise StorageError(f"Source file does not exist: {file_ref}")
        new_ref = f"{new_path}/{file_ref.rsplit('/', 1)[-1]}"
        if new_ref != file_ref:
            self.files[new_ref] = self.files.pop(file_ref)
            self.moves.append((file_ref, new_ref))
        return new_ref

    async def read_bytes(self, file_ref: str) -> bytes:
        if file_ref not in self.files:
            raise StorageError(f"File does not exist: {file_ref}")
        return self.files[file_ref]

    def sanitize_filename(self, name: str) -> str:
        return name.replace('/', '-').strip()


class FakeAccounting(AccountingSystem):
    """Records vendors and bills. fail=True makes every write raise."""

    def __init__(self, fail: bool = False, bills: Optional[List[BillRef]] = None) -> None:
        self.fail = fail
        self.vendors: Dict[str, VendorRef] = {}
        self.requests: List[BillRequest] = []
        self.bills: List[BillRef] = list(bills or [])
        self.before_create = None

    async def find_or_create_vendor(self, display_name: str) -> VendorRef:
        if self.fail:
            raise AccountingError("QuickBooks API error: service unavailable")
        if display_name not in self.vendors:
            self.vendors[display_name] = VendorRef(str(len(self.vendors) + 1), display_name)
        return self.vendors[display_name]

    async def create_bill(self, request: BillRequest) -> BillRef:
        if self.fail:
            raise AccountingError("QuickBooks API error: service unavailable")
        if self.before_create is not None:
            self.before_create()
        self.requests.append(request)
        bill = BillRef(
            id=f"bill-{len(self.requests)}",
            vendor_name=request.vendor.display_name,
            total=sum((line.amount for line in request.line_items), Decimal("0.00")),
            txn_date=None,
        )
        self.bills.append(bill)
        return bill

    async def list_bills(self, realm_id: str) -> List[BillRef]:
        if self.fail:
            raise AccountingError("QuickBooks API error: service unavailable")
        return list(self.bills)


@pytest.fixture(autouse=True)
def log_lines():
    """Collect LedgerDesk log output instead of printing it."""
    lines: List[str] = []
    LedgerDesk.set_sink(lines.append)
    yield lines
    LedgerDesk.set_sink(None)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    doc_store = DocumentStore(str(tmp_path / "ledgerdesk.db"))
    yield doc_store
    doc_store.close()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def accounting():
    return FakeAccounting()


@pytest.fixture
def review_document(store, repository, clock):
    """Factory for documents waiting in the review queue, with a staged file."""

    def make(vendor: str = "Verde Farms", amount: str = "1250.00",
             destination: Destination = Destination.ACCOUNTING_SYSTEM,
             filename: str = "invoice.pdf", **changes) -> Document:
        fields = ExtractedFields(
            vendor_name=vendor,
            amount=Decimal(amount),
            date=date(2026, 3, 1),
            description="Seed trays",
            filing_category="Inventory Invoices",
            is_financial=True,
            suggested_path=f"Invoices/2026/{vendor}",
            suggested_destination=destination,
            category="financial_actionable",
            subcategory="Inventory Invoices",
            needs_deep_analysis=True,
        )
        doc = Document(
            id="",
            file_ref=repository.put(f"Unprocessed Files/{filename}"),
            filename=filename,
            status=DocumentStatus.NEEDS_REVIEW,
            created_at=clock(),
            category=fields.filing_category,
            extracted=fields,
        )
        return store.insert(doc.replace(**changes))

    return make
