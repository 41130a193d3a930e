"""Ghost transaction detection.

A ghost is a bank transaction with no matching book (accounting) transaction.
A bank and a book transaction match when their amounts agree to the cent and
their dates are at most DATE_TOLERANCE_DAYS apart, in either direction.

Matching is first-found and non-exclusive: one book transaction may account
for several bank transactions.
"""

import asyncio
from decimal import Decimal
from typing import List, Optional

from accounting import AccountingError, AccountingSystem
from ledgerdesk import LedgerDesk
from .document_store import DocumentStore
from .documents import Transaction, TransactionSource

AMOUNT_TOLERANCE = Decimal("0.01")
DATE_TOLERANCE_DAYS = 3


def is_match(bank: Transaction, book: Transaction) -> bool:
    """Check whether a book transaction accounts for a bank transaction."""
    if abs(book.amount - bank.amount) >= AMOUNT_TOLERANCE:
        return False
    return abs((book.date - bank.date).days) <= DATE_TOLERANCE_DAYS


class ReconciliationEngine:
    """Compares bank and book transactions per realm."""

    def __init__(self, store: DocumentStore,
                 accounting: Optional[AccountingSystem] = None) -> None:
        self.store = store
        self.accounting = accounting

    def detect_ghosts(self, realm_id: str) -> List[Transaction]:
        """Bank transactions of a realm with no matching book transaction.

        Read-only: nothing is flagged or stored.
        """
        bank = self.store.list_transactions(realm_id, TransactionSource.BANK)
        book = self.store.list_transactions(realm_id, TransactionSource.BOOK)
        return [txn for txn in bank if not any(is_match(txn, entry) for entry in book)]

    async def sync_book_transactions(self, realm_id: str) -> int:
        """Copy the realm's bills into the transaction store as book entries.

        Upserts by bill ID, so repeated syncs never create duplicate rows.

        Returns:
            Number of bills synced

        Raises:
            AccountingError: If the bills can't be fetched
        """
        if self.accounting is None:
            raise AccountingError("No accounting system configured")

        bills = await self.accounting.list_bills(realm_id)
        transactions = [
            Transaction(
                realm_id=realm_id,
                source=TransactionSource.BOOK,
                external_id=bill.id,
                amount=bill.total,
                date=bill.txn_date,
                counterparty=bill.vendor_name or "Unknown",
                is_reconciled=True,
            )
            for bill in bills
            if bill.txn_date is not None
        ]
        skipped = len(bills) - len(transactions)
        if skipped:
            LedgerDesk.log(f"[yellow]Skipped {skipped} bill(s) without a transaction date[/yellow]")
        count = await asyncio.to_thread(self.store.upsert_transactions, transactions)
        LedgerDesk.log(f"Synced {count} book transaction(s) for realm {realm_id}")
        return count
