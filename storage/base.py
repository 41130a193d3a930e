"""Base classes for file repository drivers.

This module defines the abstract interface that all storage backends must
implement. Drivers address files by an opaque reference (file_ref): a path
relative to the root for the local filesystem, a file ID for Google Drive.
Folders are addressed by '/'-separated paths relative to the root and are
created on demand.
"""

from abc import ABC, abstractmethod


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class FileRepository(ABC):
    """Abstract base class for storage backends.

    All storage drivers (local filesystem, Google Drive) implement this
    interface. Operations are coroutines; drivers backed by blocking clients
    run them in a worker thread so they never block the event loop.
    """

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for this storage (e.g., 'Books (Google Drive)')."""
        pass

    @abstractmethod
    async def upload_to_path(self, data: bytes, filename: str, path: str) -> str:
        """Store a new file inside the given folder path.

        Creates missing folders. An existing file with the same name is never
        overwritten.

        Args:
            data: File contents
            filename: Proposed filename (sanitized by the driver)
            path: Destination folder path within storage ('' for root)

        Returns:
            Reference to the stored file

        Raises:
            StorageError: If the upload fails
        """
        pass

    @abstractmethod
    async def move_path(self, file_ref: str, new_path: str) -> str:
        """Move a file into a different folder, keeping its name.

        Moving a file into the folder it already lives in is a no-op success.

        Args:
            file_ref: Reference to the file
            new_path: Destination folder path within storage

        Returns:
            Reference to the file after the move. Drivers whose references
            are paths return the new path; ID-based drivers return file_ref.

        Raises:
            StorageError: If the file doesn't exist or the move fails
        """
        pass

    @abstractmethod
    async def read_bytes(self, file_ref: str) -> bytes:
        """Read a file's contents.

        Args:
            file_ref: Reference to the file

        Returns:
            File contents

        Raises:
            StorageError: If the file doesn't exist or can't be read
        """
        pass

    # =========================================================================
    # Filename Handling
    # =========================================================================

    @abstractmethod
    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for this storage backend.

        Different backends have different restrictions on allowed characters.
        For example, local filesystems are more restrictive than Google Drive.

        Args:
            name: Proposed filename (without path)

        Returns:
            Sanitized filename safe for this storage backend
        """
        pass
