"""Document and transaction records shared by the workflows.

Document metadata has gone through several shapes over time (nested under
'data', 'vendor' instead of 'vendorName', 'totalAmount', 'invoiceDate', ...).
ExtractedFields is the one canonical shape; from_dict() migrates older shapes
when a record is read, so consumers never deal with fallbacks.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

# Version of the canonical metadata shape written by to_dict()
METADATA_VERSION = 2

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC timestamp; string order equals time order."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def to_amount(value: Any) -> Decimal:
    """Normalize an amount to a two-place Decimal.

    Raises:
        ValueError: If value is not a number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        if isinstance(value, str):
            value = value.replace('$', '').replace(',', '').strip()
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class DocumentStatus(str, Enum):
    STAGED_UNCLASSIFIED = "staged_unclassified"
    NEEDS_REVIEW = "needs_review"
    ARCHIVED = "archived"
    PROCESSED = "processed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.ARCHIVED, DocumentStatus.PROCESSED, DocumentStatus.REJECTED)


class Destination(str, Enum):
    """Where an approved document goes."""
    ACCOUNTING_SYSTEM = "AccountingSystem"
    ARCHIVE_ONLY = "ArchiveOnly"

    @classmethod
    def parse(cls, value: Any) -> "Destination":
        """Accept enum values and the labels used by the review queue.

        Raises:
            ValueError: If value names no destination
        """
        if isinstance(value, cls):
            return value
        key = str(value).replace(" ", "").replace("_", "").lower()
        if key in ("accountingsystem", "quickbooks"):
            return cls.ACCOUNTING_SYSTEM
        if key in ("archiveonly", "archive", "driveonly"):
            return cls.ARCHIVE_ONLY
        raise ValueError(f"Unknown destination: {value}")


class SourceContext(str, Enum):
    """Where an ingested file came from."""
    WEB = "web"
    REPOSITORY_SCAN = "repository-scan"

    @classmethod
    def parse(cls, value: Any) -> "SourceContext":
        if isinstance(value, cls):
            return value
        if value == "drive":
            return cls.REPOSITORY_SCAN
        return cls(value)


class TransactionSource(str, Enum):
    BANK = "bank"
    BOOK = "book"


# Canonical key -> keys to try, in order. Older records used the later ones.
_FIELD_ALIASES = {
    'vendorName': ('vendorName', 'vendor', 'data.vendorName', 'data.vendor'),
    'amount': ('amount', 'totalAmount', 'data.amount', 'data.totalAmount'),
    'date': ('date', 'invoiceDate', 'data.date', 'data.invoiceDate'),
    'description': ('description', 'data.description', 'summary'),
    'filingCategory': ('filingCategory', 'data.filingCategory'),
    'isFinancial': ('isFinancial',),
    'suggestedPath': ('suggestedPath',),
    'suggestedDestination': ('suggestedDestination',),
    'category': ('category',),
    'subcategory': ('subcategory',),
    'needsDeepAnalysis': ('needsDeepAnalysis', 'needs_deep_analysis'),
}


def _lookup(raw: Dict[str, Any], key: str) -> Any:
    if '.' in key:
        outer, inner = key.split('.', 1)
        nested = raw.get(outer)
        return nested.get(inner) if isinstance(nested, dict) else None
    return raw.get(key)


def canonical_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map a metadata dict of any historical shape onto canonical keys.

    Only keys that carry a value are returned, so the result can be used as
    a partial update.
    """
    result = {}
    for canonical, aliases in _FIELD_ALIASES.items():
        for alias in aliases:
            value = _lookup(raw, alias)
            if value is not None and value != "":
                result[canonical] = value
                break
    return result


@dataclass
class ExtractedFields:
    """Canonical structured prediction for a document."""

    vendor_name: str = ""                    # "Verde Farms"
    amount: Decimal = Decimal("0.00")        # Always >= 0, two places
    date: Optional["date"] = None            # Date on the document
    description: str = ""
    filing_category: str = ""                # One of models.ALLOWED_FOLDERS
    is_financial: bool = False
    suggested_path: str = ""                 # "Invoices/2026/Verde Farms"
    suggested_destination: Destination = Destination.ARCHIVE_ONLY

    # Tier 1 triage
    category: str = ""                       # "financial_actionable", ...
    subcategory: str = ""
    needs_deep_analysis: bool = False

    def __post_init__(self) -> None:
        self.amount = to_amount(self.amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': METADATA_VERSION,
            'vendorName': self.vendor_name,
            'amount': str(self.amount),
            'date': self.date.isoformat() if self.date else None,
            'description': self.description,
            'filingCategory': self.filing_category,
            'isFinancial': self.is_financial,
            'suggestedPath': self.suggested_path,
            'suggestedDestination': self.suggested_destination.value,
            'category': self.category,
            'subcategory': self.subcategory,
            'needsDeepAnalysis': self.needs_deep_analysis,
        }

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ExtractedFields":
        """Build from a metadata dict of any version."""
        values = canonical_fields(raw or {})
        try:
            amount = to_amount(values.get('amount', 0))
        except ValueError:
            amount = Decimal("0.00")
        try:
            destination = Destination.parse(values['suggestedDestination'])
        except (KeyError, ValueError):
            destination = (Destination.ACCOUNTING_SYSTEM if amount > 0 and values.get('isFinancial')
                           else Destination.ARCHIVE_ONLY)
        return cls(
            vendor_name=str(values.get('vendorName', '')).strip(),
            amount=max(amount, Decimal("0.00")),
            date=to_date(values.get('date')),
            description=str(values.get('description', '')),
            filing_category=str(values.get('filingCategory', '')),
            is_financial=bool(values.get('isFinancial', False)),
            suggested_path=str(values.get('suggestedPath', '')),
            suggested_destination=destination,
            category=str(values.get('category', '')),
            subcategory=str(values.get('subcategory', '')),
            needs_deep_analysis=bool(values.get('needsDeepAnalysis', False)),
        )

    def merge(self, corrections: Optional[Dict[str, Any]]) -> "ExtractedFields":
        """New ExtractedFields with reviewer corrections applied on top.

        Raises:
            ValueError: If a corrected amount is not a number or negative
        """
        updates = canonical_fields(corrections or {})
        if 'amount' in updates and to_amount(updates['amount']) < 0:
            raise ValueError("Amount must not be negative")
        merged = {k: v for k, v in self.to_dict().items() if v is not None}
        merged.update(updates)
        return ExtractedFields.from_dict(merged)


@dataclass
class Document:
    """One uploaded file and everything known about it."""

    id: str
    file_ref: str                            # Opaque pointer into the file repository
    status: DocumentStatus
    created_at: datetime = field(default_factory=utcnow)
    filename: str = ""
    category: str = ""                       # Filing category / final path
    extracted: ExtractedFields = field(default_factory=ExtractedFields)
    confidence: float = 0.0                  # Advisory only
    is_duplicate: bool = False
    duplicate_of_id: Optional[str] = None
    source_context: SourceContext = SourceContext.WEB
    processed_at: Optional[datetime] = None
    resolution: Dict[str, Any] = field(default_factory=dict)  # destination, createdBillId, finalPath
    last_error: Optional[str] = None         # Last failed action, for the review queue

    def replace(self, **changes) -> "Document":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view used by the HTTP API and CLI."""
        metadata = self.extracted.to_dict()
        metadata.update(self.resolution)
        return {
            'id': self.id,
            'fileRef': self.file_ref,
            'filename': self.filename,
            'status': self.status.value,
            'category': self.category,
            'metadata': metadata,
            'confidence': self.confidence,
            'isDuplicate': self.is_duplicate,
            'duplicateOfId': self.duplicate_of_id,
            'sourceContext': self.source_context.value,
            'createdAt': format_timestamp(self.created_at),
            'processedAt': format_timestamp(self.processed_at) if self.processed_at else None,
            'lastError': self.last_error,
        }


@dataclass
class Transaction:
    """One bank- or book-sourced money movement."""

    realm_id: str
    source: TransactionSource
    external_id: str                         # Source-system ID, unique per source
    amount: Decimal                          # Signed
    date: date
    counterparty: str = ""
    is_reconciled: bool = False
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'realmId': self.realm_id,
            'source': self.source.value,
            'externalId': self.external_id,
            'amount': str(self.amount),
            'date': self.date.isoformat(),
            'vendorOrCounterparty': self.counterparty,
            'isReconciled': self.is_reconciled,
        }
