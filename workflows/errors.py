"""Error types raised by the document workflows."""


class LedgerDeskError(Exception):
    """Base exception for workflow operations."""
    pass


class ClassificationFailure(LedgerDeskError):
    """A classification tier failed. Intake degrades instead of raising it."""
    pass


class DuplicateCheckFailure(LedgerDeskError):
    """The duplicate lookup failed. Intake treats the document as unique."""
    pass


class FileMoveFailure(LedgerDeskError):
    """Moving a file in the repository failed."""
    pass


class StagingUploadFailure(FileMoveFailure):
    """The initial upload into staging failed, so nothing can be ingested."""
    pass


class AccountingWriteFailure(LedgerDeskError):
    """Creating the vendor or bill failed. The document stays in review."""
    pass


class DocumentNotFound(LedgerDeskError):
    """No document with the requested ID."""
    pass


class AlreadyProcessed(LedgerDeskError):
    """The document has already been processed."""
    pass


class InvalidTransition(LedgerDeskError):
    """The requested action is not allowed from the document's status."""
    pass


class ConcurrentModification(LedgerDeskError):
    """The document's status changed while the update was in flight."""
    pass


class DocumentPersistenceFailure(LedgerDeskError):
    """Reading or writing the document store failed."""
    pass
