"""Duplicate detection for newly ingested documents.

A document is a duplicate when an earlier document has exactly the same
vendor name and amount and was created within the trailing window. There is
no fuzzy matching on vendor names.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from .document_store import DocumentStore
from .documents import Document, utcnow
from .errors import DocumentPersistenceFailure, DuplicateCheckFailure

DUPLICATE_WINDOW_DAYS = 30


class DuplicateDetector:
    """Finds an earlier document with the same vendor and amount."""

    def __init__(self, store: DocumentStore,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.clock = clock or utcnow

    def find_duplicate(self, vendor_name: str, amount: Decimal,
                       within_days: int = DUPLICATE_WINDOW_DAYS,
                       exclude_id: Optional[str] = None) -> Optional[Document]:
        """Return the most recent matching document, or None.

        Raises:
            DuplicateCheckFailure: If the store query fails
        """
        if not vendor_name:
            return None
        since = self.clock() - timedelta(days=within_days)
        try:
            matches = self.store.query_by_vendor_and_amount_since(
                vendor_name, amount, since, exclude_id=exclude_id)
        except DocumentPersistenceFailure as e:
            raise DuplicateCheckFailure(f"Duplicate check failed: {e}") from e
        return matches[0] if matches else None
