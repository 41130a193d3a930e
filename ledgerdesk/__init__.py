"""LedgerDesk - Application state and configuration."""

import os
import re
from typing import Any, Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    import argparse
    from accounting import AccountingSystem
    from models import Classifier
    from storage import FileRepository
    from workflows import DocumentStore

__version__ = "0.1.0"

DEFAULT_DB_PATH = os.path.join(os.path.expanduser("~"), ".ledgerdesk", "ledgerdesk.db")

# File repository layout: uploads land in staging, approved files under
# the all-files root, rejected files in their own folder.
STAGING_FOLDER = "Unprocessed Files"
ALL_FILES_ROOT = "All Files"
REJECTED_FOLDER = "Rejected"
DEFAULT_TARGET_PATH = "Uncategorized"


def _strip_rich_markup(text: str) -> str:
    """Remove Rich markup tags like [red], [/red], [bold], etc."""
    return re.sub(r'\[/?[a-zA-Z_]+\]', '', text)


class LedgerDesk:
    """Central configuration and shared resources for LedgerDesk."""

    # Configuration
    db_path: str = DEFAULT_DB_PATH
    file_repository_uri: Optional[str] = None
    llm_provider_name: str = "openai"
    quickbooks_environment: str = "sandbox"

    # Shared resources (created lazily by init_services)
    store: Optional["DocumentStore"] = None
    repository: Optional["FileRepository"] = None
    classifier: Optional["Classifier"] = None
    accounting: Optional["AccountingSystem"] = None

    # Log sink (None = stdout)
    _sink: Optional[Callable[[str], None]] = None

    @classmethod
    def configure(cls, args: Optional["argparse.Namespace"] = None) -> None:
        """Initialize configuration from the environment and parsed CLI args."""
        cls.db_path = os.environ.get('DOCSTORE_DB', DEFAULT_DB_PATH)
        cls.file_repository_uri = os.environ.get('FILE_REPOSITORY')
        cls.llm_provider_name = os.environ.get('LLM_PROVIDER', 'openai')
        cls.quickbooks_environment = os.environ.get('QUICKBOOKS_ENVIRONMENT', 'sandbox')

        if args is not None:
            if getattr(args, 'db', None):
                cls.db_path = args.db
            if getattr(args, 'repository', None):
                cls.file_repository_uri = args.repository
            if getattr(args, 'llm', None):
                cls.llm_provider_name = args.llm

    @classmethod
    def init_services(cls) -> None:
        """Create the document store and any collaborators that are configured.

        The file repository, classifier and accounting client are only created
        when their configuration is present, so read-only commands (pending
        list, ghost detection) work without cloud credentials.
        """
        from workflows import DocumentStore

        cls.store = DocumentStore(cls.db_path)

        if cls.file_repository_uri and cls.repository is None:
            from storage import create_storage
            cls.repository = create_storage(cls.file_repository_uri)

        if cls.classifier is None:
            from models import create_classifier
            try:
                cls.classifier = create_classifier(cls.llm_provider_name)
            except (KeyError, ValueError) as e:
                cls.log(f"[yellow]Classifier unavailable: {e}[/yellow]")

        if cls.accounting is None and os.environ.get('QUICKBOOKS_ACCESS_TOKEN'):
            from accounting import QuickBooksClient
            cls.accounting = QuickBooksClient(
                access_token=os.environ['QUICKBOOKS_ACCESS_TOKEN'],
                realm_id=os.environ.get('QUICKBOOKS_REALM_ID', ''),
                environment=cls.quickbooks_environment,
            )

    @classmethod
    def close(cls) -> None:
        """Cleanup resources."""
        if cls.store:
            cls.store.close()
            cls.store = None

    @classmethod
    def set_sink(cls, sink: Optional[Callable[[str], None]]) -> None:
        """Redirect log output (e.g. to a test collector). None restores stdout."""
        cls._sink = sink

    @classmethod
    def log(cls, message: Any) -> None:
        """Write a diagnostic line, stripping Rich markup."""
        text = _strip_rich_markup(str(message))
        if cls._sink is not None:
            cls._sink(text)
        else:
            print(text)
