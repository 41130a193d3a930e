"""Workflow layer for ledgerdesk.

Contains the business logic for the document pipeline:
- Intake: classify uploaded files into reviewable documents
- Approval: commit, reject or correct documents in review
- Reconciliation: find bank transactions with no accounting counterpart
- Sessions: per-session assistant state
"""

from .errors import (
    LedgerDeskError,
    ClassificationFailure,
    DuplicateCheckFailure,
    FileMoveFailure,
    StagingUploadFailure,
    AccountingWriteFailure,
    DocumentNotFound,
    AlreadyProcessed,
    InvalidTransition,
    ConcurrentModification,
    DocumentPersistenceFailure,
)
from .documents import (
    METADATA_VERSION,
    Destination,
    Document,
    DocumentStatus,
    ExtractedFields,
    SourceContext,
    Transaction,
    TransactionSource,
)
from .document_store import DocumentStore
from .deduplication import DuplicateDetector, DUPLICATE_WINDOW_DAYS
from .intake import IntakePipeline, IntakeFile, BatchResult, clean_path, sanitize_path_segment
from .approval import ApprovalPipeline, ApprovalResult, KEEP_BOTH, DELETE_NEW
from .reconciliation import ReconciliationEngine, is_match
from .sessions import (
    SessionStore,
    InMemorySessionStore,
    SessionState,
    PendingAction,
    NoPendingAction,
    AwaitingConfirmation,
    AwaitingPropertyInfo,
)


__all__ = [
    # Errors
    'LedgerDeskError',
    'ClassificationFailure',
    'DuplicateCheckFailure',
    'FileMoveFailure',
    'StagingUploadFailure',
    'AccountingWriteFailure',
    'DocumentNotFound',
    'AlreadyProcessed',
    'InvalidTransition',
    'ConcurrentModification',
    'DocumentPersistenceFailure',

    # Data model
    'METADATA_VERSION',
    'Destination',
    'Document',
    'DocumentStatus',
    'ExtractedFields',
    'SourceContext',
    'Transaction',
    'TransactionSource',

    # Stores
    'DocumentStore',
    'DuplicateDetector',
    'DUPLICATE_WINDOW_DAYS',

    # Pipelines
    'IntakePipeline',
    'IntakeFile',
    'BatchResult',
    'clean_path',
    'sanitize_path_segment',
    'ApprovalPipeline',
    'ApprovalResult',
    'KEEP_BOTH',
    'DELETE_NEW',
    'ReconciliationEngine',
    'is_match',

    # Assistant sessions
    'SessionStore',
    'InMemorySessionStore',
    'SessionState',
    'PendingAction',
    'NoPendingAction',
    'AwaitingConfirmation',
    'AwaitingPropertyInfo',
]
