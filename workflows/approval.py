"""Approval pipeline: commit reviewed documents.

Approving a document runs three steps in a fixed order:

    1. accounting write (vendor + bill), only for AccountingSystem documents
       with a positive amount
    2. file move into the all-files tree
    3. status update to processed

A failed accounting write stops everything and leaves the document in
review. A failed file move is logged and the approval carries on; a misfiled
document can be moved later, a lost bill can't be found again.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from accounting import AccountingSystem, BillLine, BillRef, BillRequest, category_for_filing
from ledgerdesk import LedgerDesk, ALL_FILES_ROOT, DEFAULT_TARGET_PATH, REJECTED_FOLDER
from storage import FileRepository
from .document_store import DocumentStore
from .documents import Destination, Document, DocumentStatus, ExtractedFields, utcnow
from .errors import (
    AccountingWriteFailure, AlreadyProcessed, ConcurrentModification,
    DocumentPersistenceFailure, FileMoveFailure, InvalidTransition, LedgerDeskError,
)
from .intake import clean_path

# Bills are due 30 days after the invoice date (Net 30)
PAYMENT_TERMS_DAYS = 30

KEEP_BOTH = "keep_both"
DELETE_NEW = "delete_new"


@dataclass
class ApprovalResult:
    document: Document
    destination: Destination
    bill: Optional[BillRef]                  # None for ArchiveOnly or zero amounts
    final_path: str
    file_moved: bool


class ApprovalPipeline:
    """Approves, rejects and edits documents waiting for review."""

    def __init__(
        self,
        store: DocumentStore,
        repository: Optional[FileRepository] = None,
        accounting: Optional[AccountingSystem] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.accounting = accounting
        self.clock = clock or utcnow

    def list_pending(self) -> List[Document]:
        """Documents waiting for review, newest first."""
        return self.store.query_by_status(DocumentStatus.NEEDS_REVIEW)

    async def approve(
        self,
        document_id: str,
        destination: Union[Destination, str, None] = None,
        metadata: Optional[Dict[str, Any]] = None,
        target_path: str = "",
    ) -> ApprovalResult:
        """Commit a reviewed document.

        Args:
            document_id: Document to approve
            destination: AccountingSystem or ArchiveOnly. Defaults to the
                suggested destination.
            metadata: Reviewer-confirmed fields (vendorName, amount, date,
                description, filingCategory), merged over the extracted ones
            target_path: Folder below the all-files root. Empty means
                'Uncategorized'.

        Returns:
            ApprovalResult with the processed document

        Raises:
            DocumentNotFound: If the document doesn't exist
            AlreadyProcessed: If the document was already processed
            InvalidTransition: If the document is rejected or archived
            AccountingWriteFailure: If the bill couldn't be created; the
                document remains in review
            ConcurrentModification: If another request changed the document
            DocumentPersistenceFailure: If the final status update failed
        """
        doc = await asyncio.to_thread(self.store.get_by_id, document_id)
        if doc.status == DocumentStatus.PROCESSED:
            raise AlreadyProcessed(f"Document {document_id} already processed")
        if doc.status != DocumentStatus.NEEDS_REVIEW:
            raise InvalidTransition(f"Cannot approve a document that is {doc.status.value}")

        destination = (Destination.parse(destination) if destination
                       else doc.extracted.suggested_destination)
        fields = doc.extracted.merge(metadata)

        # 1. Accounting write
        bill = None
        if destination == Destination.ACCOUNTING_SYSTEM and fields.amount > 0:
            try:
                bill = await self._create_bill(fields)
            except Exception as e:
                failure = AccountingWriteFailure(
                    f"Accounting write failed, document remains in review: {e}")
                LedgerDesk.log(f"[red]{document_id}: {failure}[/red]")
                await self._record_error(document_id, str(failure))
                raise failure from e
            LedgerDesk.log(f"Created bill {bill.id} for {bill.vendor_name} (${bill.total})")

        # 2. File move
        target = clean_path(target_path) or DEFAULT_TARGET_PATH
        final_path = f"{ALL_FILES_ROOT}/{target}"
        file_ref, file_moved = await self._move(doc, final_path)

        # 3. Status update
        patch = {
            'status': DocumentStatus.PROCESSED,
            'processed_at': self.clock(),
            'category': target,
            'extracted': fields,
            'file_ref': file_ref,
            'resolution': {
                'destination': destination.value,
                'createdBillId': bill.id if bill else None,
                'finalPath': final_path,
            },
            'last_error': None,
        }
        try:
            updated = await asyncio.to_thread(
                self.store.update_by_id, document_id, patch,
                expected_status=DocumentStatus.NEEDS_REVIEW)
        except (ConcurrentModification, DocumentPersistenceFailure) as e:
            if bill is not None:
                LedgerDesk.log(f"[red]Bill {bill.id} was created but document {document_id} "
                               f"could not be marked processed ({e}). "
                               f"Reconcile manually.[/red]")
            raise

        LedgerDesk.log(f"Document {document_id} processed -> {final_path}")
        return ApprovalResult(
            document=updated,
            destination=destination,
            bill=bill,
            final_path=final_path,
            file_moved=file_moved,
        )

    async def _create_bill(self, fields: ExtractedFields) -> BillRef:
        if self.accounting is None:
            raise AccountingWriteFailure("No accounting system configured")
        if not fields.vendor_name:
            raise AccountingWriteFailure("Vendor name is required to create a bill")

        vendor = await self.accounting.find_or_create_vendor(fields.vendor_name)
        bill_date = fields.date or self.clock().date()
        description = fields.description or f"{fields.vendor_name} invoice"
        request = BillRequest(
            vendor=vendor,
            due_date=bill_date + timedelta(days=PAYMENT_TERMS_DAYS),
            line_items=[BillLine(
                description=description,
                amount=fields.amount,
                category=category_for_filing(fields.filing_category, fields.vendor_name, description),
            )],
        )
        return await self.accounting.create_bill(request)

    async def _move(self, doc: Document, folder: str):
        """Best-effort move. Returns (file_ref, moved)."""
        if self.repository is None or not doc.file_ref:
            LedgerDesk.log(f"[yellow]File move skipped for {doc.id}: no file repository[/yellow]")
            return doc.file_ref, False
        try:
            return await self.repository.move_path(doc.file_ref, folder), True
        except Exception as e:
            failure = FileMoveFailure(f"Could not move {doc.file_ref} to {folder}: {e}")
            LedgerDesk.log(f"[yellow]{doc.id}: {failure}[/yellow]")
            return doc.file_ref, False

    async def _record_error(self, document_id: str, message: str) -> None:
        try:
            await asyncio.to_thread(self.store.update_by_id, document_id, {'last_error': message})
        except LedgerDeskError as e:
            LedgerDesk.log(f"[yellow]Could not record error on {document_id}: {e}[/yellow]")

    async def reject(self, document_id: str) -> Document:
        """Move the file to the rejected folder and mark the document rejected.

        Raises:
            DocumentNotFound: If the document doesn't exist
            AlreadyProcessed: If the document was already processed
            InvalidTransition: If the document was archived
        """
        doc = await asyncio.to_thread(self.store.get_by_id, document_id)
        if doc.status == DocumentStatus.REJECTED:
            return doc
        if doc.status == DocumentStatus.PROCESSED:
            raise AlreadyProcessed(f"Document {document_id} already processed")
        if doc.status == DocumentStatus.ARCHIVED:
            raise InvalidTransition(f"Cannot reject a document that is {doc.status.value}")

        file_ref, _ = await self._move(doc, REJECTED_FOLDER)
        updated = await asyncio.to_thread(self.store.update_by_id, document_id, {
            'status': DocumentStatus.REJECTED,
            'processed_at': self.clock(),
            'file_ref': file_ref,
        }, expected_status=doc.status)
        LedgerDesk.log(f"Document {document_id} rejected")
        return updated

    async def resolve_duplicate(self, document_id: str, resolution: str) -> Document:
        """Settle a document flagged as a duplicate.

        'keep_both' leaves the document in review unchanged; 'delete_new'
        rejects it.

        Raises:
            ValueError: If resolution is not 'keep_both' or 'delete_new'
            InvalidTransition: If the document isn't a duplicate in review
        """
        if resolution not in (KEEP_BOTH, DELETE_NEW):
            raise ValueError(f"Unknown resolution: {resolution}")
        doc = await asyncio.to_thread(self.store.get_by_id, document_id)
        if doc.status != DocumentStatus.NEEDS_REVIEW or not doc.is_duplicate:
            raise InvalidTransition(f"Document {document_id} is not a duplicate awaiting review")
        if resolution == KEEP_BOTH:
            return doc
        return await self.reject(document_id)

    def edit_document(self, document_id: str, corrections: Dict[str, Any]) -> Document:
        """Apply manual field corrections to a document in review.

        Raises:
            InvalidTransition: If the document is not in review
            ValueError: If a corrected value is invalid
        """
        doc = self.store.get_by_id(document_id)
        if doc.status != DocumentStatus.NEEDS_REVIEW:
            raise InvalidTransition(f"Cannot edit a document that is {doc.status.value}")
        fields = doc.extracted.merge(corrections)
        return self.store.update_by_id(document_id, {
            'extracted': fields,
            'category': fields.filing_category or doc.category,
        }, expected_status=DocumentStatus.NEEDS_REVIEW)
