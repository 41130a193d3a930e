"""Intake pipeline: turn uploaded files into reviewable documents.

Classification is two-tier. Tier 1 (cheap) runs on every document and decides
whether Tier 2 (expensive extraction) is worth running. Most documents stop
after Tier 1 and are filed without review.

Ingestion never throws a file away: classification failures degrade to a
default record instead of raising.
"""

import asyncio
import inspect
import mimetypes
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, Union

from ledgerdesk import LedgerDesk, ALL_FILES_ROOT, STAGING_FOLDER
from models import Classifier, Tier1Result, Tier2Result
from storage import FileRepository
from .deduplication import DuplicateDetector
from .document_store import DocumentStore
from .documents import (
    Destination, Document, DocumentStatus, ExtractedFields, SourceContext, utcnow,
)
from .errors import ClassificationFailure, DuplicateCheckFailure, StagingUploadFailure

# Tier 1 result used when triage fails
TIER1_FALLBACK = Tier1Result(
    category="unknown",
    subcategory="Administrative",
    needs_deep_analysis=False,
)

UNKNOWN_VENDOR = "Unknown"
EXTRACTION_FAILED = "extraction failed"


def sanitize_path_segment(name: str) -> str:
    """Make a string safe to use as one folder name."""
    name = re.sub(r'[/\\:*?"<>|]', '-', name)
    name = re.sub(r'\s+', ' ', name).strip().strip('.')
    name = re.sub(r'-+', '-', name)
    return name


def clean_path(path: str) -> str:
    """Sanitize each segment of a '/'-separated folder path, dropping empty ones."""
    segments = (sanitize_path_segment(part) for part in re.split(r'[/\\]', path or ""))
    return '/'.join(s for s in segments if s and s != '..')


def _fallback_tier2() -> Tier2Result:
    return Tier2Result(
        vendor_name=UNKNOWN_VENDOR,
        amount=Decimal("0"),
        date=None,
        description=EXTRACTION_FAILED,
        filing_category="Administrative",
        confidence=0.0,
    )


@dataclass
class IntakeFile:
    """A file waiting in a batch.

    Bytes are loaded on demand, so a batch only ever holds one file's
    contents in memory.
    """
    filename: str
    mime_type: str
    loader: Callable[[], Union[bytes, Awaitable[bytes]]]
    file_ref: Optional[str] = None           # Set when the file is already in the repository

    @classmethod
    def from_path(cls, path: str) -> "IntakeFile":
        mime_type = mimetypes.guess_type(path)[0] or 'application/octet-stream'

        def load() -> bytes:
            with open(path, 'rb') as f:
                return f.read()

        return cls(filename=os.path.basename(path), mime_type=mime_type, loader=load)

    @classmethod
    def from_repository(cls, repository: FileRepository, file_ref: str,
                        filename: str, mime_type: Optional[str] = None) -> "IntakeFile":
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        return cls(filename=filename, mime_type=mime_type,
                   loader=lambda: repository.read_bytes(file_ref), file_ref=file_ref)

    async def read(self) -> bytes:
        data = self.loader()
        if inspect.isawaitable(data):
            data = await data
        return data


@dataclass
class BatchResult:
    documents: List[Document] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)  # (filename, error)

    @property
    def total(self) -> int:
        return len(self.documents) + len(self.failures)


class IntakePipeline:
    """Classifies uploaded files and records them as documents."""

    def __init__(
        self,
        classifier: Classifier,
        store: DocumentStore,
        repository: Optional[FileRepository] = None,
        detector: Optional[DuplicateDetector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.classifier = classifier
        self.store = store
        self.repository = repository
        self.clock = clock or utcnow
        self.detector = detector or DuplicateDetector(store, clock=self.clock)

    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        source_context: Union[SourceContext, str] = SourceContext.WEB,
        file_ref: str = "",
        filename: str = "",
    ) -> Document:
        """Classify one file that is already in the repository.

        Args:
            data: File contents (must not be empty)
            mime_type: MIME type of the file
            source_context: 'web' upload or 'repository-scan'
            file_ref: Repository reference returned by the staging upload
            filename: Original filename, for display

        Returns:
            The stored document, in status needs_review, processed or archived
        """
        if not data:
            raise ValueError("Cannot ingest an empty file")
        source_context = SourceContext.parse(source_context)

        # Record the file before classifying so a crash still leaves a trace
        doc = await asyncio.to_thread(self.store.insert, Document(
            id="",
            file_ref=file_ref,
            filename=filename,
            status=DocumentStatus.STAGED_UNCLASSIFIED,
            source_context=source_context,
            created_at=self.clock(),
        ))

        triage, triage_error = await self._triage(data, mime_type)
        if not triage.needs_deep_analysis:
            return await self._file_without_review(doc, triage, triage_error)

        fields, confidence, extract_error = await self._extract(data, mime_type, triage, doc)

        patch = {
            'status': DocumentStatus.NEEDS_REVIEW,
            'category': fields.filing_category,
            'extracted': fields,
            'confidence': confidence,
            'last_error': extract_error,
        }
        if extract_error is None:
            duplicate = await self._find_duplicate(fields, doc.id)
            if duplicate is not None:
                patch['is_duplicate'] = True
                patch['duplicate_of_id'] = duplicate.id
                LedgerDesk.log(f"[yellow]Possible duplicate of {duplicate.id}: "
                               f"{fields.vendor_name} ${fields.amount}[/yellow]")

        return await asyncio.to_thread(self.store.update_by_id, doc.id, patch)

    async def _triage(self, data: bytes, mime_type: str) -> Tuple[Tier1Result, Optional[str]]:
        try:
            return await self.classifier.classify_tier1(data, mime_type), None
        except Exception as e:
            failure = ClassificationFailure(f"Tier 1 classification failed: {e}")
            LedgerDesk.log(f"[red]{failure}[/red]")
            return TIER1_FALLBACK, str(failure)

    async def _extract(self, data: bytes, mime_type: str, triage: Tier1Result,
                       doc: Document) -> Tuple[ExtractedFields, float, Optional[str]]:
        error = None
        try:
            result = await self.classifier.classify_tier2(data, mime_type)
        except Exception as e:
            failure = ClassificationFailure(f"Tier 2 extraction failed: {e}")
            LedgerDesk.log(f"[red]{failure}[/red]")
            result = _fallback_tier2()
            error = str(failure)

        vendor = result.vendor_name.strip() or UNKNOWN_VENDOR
        year = (result.date or doc.created_at).year
        destination = (Destination.ACCOUNTING_SYSTEM if triage.is_financial and result.amount > 0
                       else Destination.ARCHIVE_ONLY)
        fields = ExtractedFields(
            vendor_name=vendor,
            amount=result.amount,
            date=result.date,
            description=result.description,
            filing_category=result.filing_category,
            is_financial=triage.is_financial,
            suggested_path=f"Invoices/{year}/{sanitize_path_segment(vendor) or UNKNOWN_VENDOR}",
            suggested_destination=destination,
            category=triage.category,
            subcategory=triage.subcategory,
            needs_deep_analysis=True,
        )
        return fields, result.confidence, error

    async def _find_duplicate(self, fields: ExtractedFields, document_id: str) -> Optional[Document]:
        try:
            return await asyncio.to_thread(
                self.detector.find_duplicate,
                fields.vendor_name, fields.amount, exclude_id=document_id)
        except DuplicateCheckFailure as e:
            LedgerDesk.log(f"[yellow]{e}; treating as not a duplicate[/yellow]")
            return None

    async def _file_without_review(self, doc: Document, triage: Tier1Result,
                                   triage_error: Optional[str]) -> Document:
        """Tier 1 says no deep analysis: file the document directly."""
        year = doc.created_at.year
        subcategory = sanitize_path_segment(triage.subcategory) or "Administrative"
        default_path = f"Documents/{year}/{subcategory}"
        fields = ExtractedFields(
            filing_category=triage.subcategory,
            is_financial=triage.is_financial,
            suggested_path=default_path,
            suggested_destination=Destination.ARCHIVE_ONLY,
            category=triage.category,
            subcategory=triage.subcategory,
            needs_deep_analysis=False,
        )
        patch = {
            'status': DocumentStatus.PROCESSED,
            'processed_at': self.clock(),
            'category': triage.subcategory,
            'extracted': fields,
            'last_error': triage_error,
        }

        # Files found by a repository scan that aren't financial get archived
        if doc.source_context == SourceContext.REPOSITORY_SCAN and not triage.is_financial:
            patch['status'] = DocumentStatus.ARCHIVED
            final_path = f"{ALL_FILES_ROOT}/{default_path}"
            if self.repository is not None and doc.file_ref:
                try:
                    patch['file_ref'] = await self.repository.move_path(doc.file_ref, final_path)
                    patch['resolution'] = {'destination': Destination.ARCHIVE_ONLY.value,
                                           'finalPath': final_path}
                except Exception as e:
                    LedgerDesk.log(f"[yellow]Archive move skipped for {doc.id}: {e}[/yellow]")

        return await asyncio.to_thread(self.store.update_by_id, doc.id, patch)

    async def stage_and_ingest(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        source_context: Union[SourceContext, str] = SourceContext.WEB,
    ) -> Document:
        """Upload a file into the staging folder, then ingest it.

        Raises:
            StagingUploadFailure: If there is no repository or the upload fails
        """
        if not data:
            raise ValueError("Cannot ingest an empty file")
        if self.repository is None:
            raise StagingUploadFailure("No file repository configured")
        try:
            file_ref = await self.repository.upload_to_path(data, filename, STAGING_FOLDER)
        except Exception as e:
            raise StagingUploadFailure(f"Failed to stage {filename}: {e}") from e
        LedgerDesk.log(f"Staged {filename} as {file_ref}")
        return await self.ingest(data, mime_type, source_context, file_ref=file_ref, filename=filename)

    async def ingest_batch(
        self,
        files: Iterable[IntakeFile],
        source_context: Union[SourceContext, str] = SourceContext.REPOSITORY_SCAN,
    ) -> BatchResult:
        """Ingest files one at a time; a failing file doesn't stop the batch."""
        result = BatchResult()
        for intake_file in files:
            try:
                data = await intake_file.read()
                if intake_file.file_ref is None:
                    doc = await self.stage_and_ingest(
                        data, intake_file.filename, intake_file.mime_type, source_context)
                else:
                    doc = await self.ingest(
                        data, intake_file.mime_type, source_context,
                        file_ref=intake_file.file_ref, filename=intake_file.filename)
                result.documents.append(doc)
            except Exception as e:
                LedgerDesk.log(f"[red]Error processing {intake_file.filename}: {e}[/red]")
                result.failures.append((intake_file.filename, str(e)))

        LedgerDesk.log(f"Batch complete: {len(result.documents)}/{result.total} processed")
        return result
