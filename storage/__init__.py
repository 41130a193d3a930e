"""File repository abstraction for ledgerdesk.

Provides a uniform interface for document files across different backends:
- LocalDriver: Local filesystem
- GDriveDriver: Google Drive

Usage:
    from storage import create_storage

    repository = create_storage("local:/path/to/folder")
    repository = create_storage("gdrive:folder_id")
"""

from .base import FileRepository, StorageError
from .local import LocalDriver


def create_storage(uri: str) -> FileRepository:
    """Create a storage driver from a URI.

    Args:
        uri: Storage URI in one of these formats:
            - local:/path/to/folder
            - gdrive:folder_id

    Returns:
        FileRepository instance for the specified backend

    Raises:
        ValueError: If URI format is invalid
    """
    storage_type, value = parse_storage_uri(uri)
    if storage_type == "local":
        return LocalDriver(value)
    # Imported lazily so the Google client stack is only loaded when used
    from .gdrive import GDriveDriver
    return GDriveDriver(value)


def parse_storage_uri(uri: str) -> tuple:
    """Parse a storage URI into (type, value) tuple.

    Args:
        uri: Storage URI (e.g., 'gdrive:abc123', 'local:/path')

    Returns:
        Tuple of (storage_type, value) where storage_type is 'gdrive' or 'local'

    Raises:
        ValueError: If URI format is invalid
    """
    if uri.startswith("gdrive:"):
        return ("gdrive", uri[7:])
    elif uri.startswith("local:"):
        return ("local", uri[6:])
    else:
        raise ValueError(
            f"Invalid storage URI: {uri}. "
            "Must start with 'gdrive:' or 'local:'"
        )


__all__ = [
    'FileRepository',
    'StorageError',
    'LocalDriver',
    'create_storage',
    'parse_storage_uri',
]
