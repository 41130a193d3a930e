"""Local filesystem storage driver."""

import asyncio
import hashlib
import os
import re
import shutil

from .base import FileRepository, StorageError


class LocalDriver(FileRepository):
    """Storage driver for local filesystem.

    All paths are relative to the root_path provided at construction. File
    references are relative paths using '/' as separator.
    """

    def __init__(self, root_path: str) -> None:
        """Initialize local storage driver.

        Args:
            root_path: Absolute path to the root directory

        Raises:
            StorageError: If root_path doesn't exist
        """
        self.root_path = os.path.abspath(root_path)
        if not os.path.exists(self.root_path):
            raise StorageError(f"Directory does not exist: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise StorageError(f"Not a directory: {self.root_path}")

    @property
    def display_name(self) -> str:
        return f"{self.root_path} (local)"

    def _full_path(self, path: str) -> str:
        """Convert relative path to absolute path, refusing to leave the root."""
        if not path:
            return self.root_path
        full_path = os.path.abspath(os.path.join(self.root_path, path))
        if os.path.commonpath([full_path, self.root_path]) != self.root_path:
            raise StorageError(f"Path escapes storage root: {path}")
        return full_path

    def _ref(self, full_path: str) -> str:
        return os.path.relpath(full_path, self.root_path).replace(os.sep, '/')

    def _free_destination(self, folder: str, filename: str, data: bytes) -> str:
        """Pick a destination in folder that doesn't clobber an existing file.

        On a name collision the file gets a content-hash suffix, e.g.
        'invoice [3f2a9c1d].pdf'.
        """
        dest = os.path.join(folder, filename)
        if not os.path.exists(dest):
            return dest
        base, ext = os.path.splitext(filename)
        digest = hashlib.sha256(data).hexdigest()[:8]
        dest = os.path.join(folder, f"{base} [{digest}]{ext}")
        counter = 2
        while os.path.exists(dest):
            dest = os.path.join(folder, f"{base} [{digest}-{counter}]{ext}")
            counter += 1
        return dest

    async def upload_to_path(self, data: bytes, filename: str, path: str) -> str:
        return await asyncio.to_thread(self._upload, data, filename, path)

    def _upload(self, data: bytes, filename: str, path: str) -> str:
        folder = self._full_path(path)
        name = self.sanitize_filename(filename) or "document"
        try:
            os.makedirs(folder, exist_ok=True)
            dest = self._free_destination(folder, name, data)
            with open(dest, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {name} to {path or '/'}: {e}")
        return self._ref(dest)

    async def move_path(self, file_ref: str, new_path: str) -> str:
        return await asyncio.to_thread(self._move, file_ref, new_path)

    def _move(self, file_ref: str, new_path: str) -> str:
        full_src = self._full_path(file_ref)
        if not os.path.isfile(full_src):
            raise StorageError(f"Source file does not exist: {file_ref}")

        folder = self._full_path(new_path)
        if os.path.dirname(full_src) == folder:
            return self._ref(full_src)

        try:
            os.makedirs(folder, exist_ok=True)
            with open(full_src, 'rb') as f:
                data = f.read()
            dest = self._free_destination(folder, os.path.basename(full_src), data)
            shutil.move(full_src, dest)
        except OSError as e:
            raise StorageError(f"Failed to move file from {file_ref} to {new_path}: {e}")
        return self._ref(dest)

    async def read_bytes(self, file_ref: str) -> bytes:
        return await asyncio.to_thread(self._read, file_ref)

    def _read(self, file_ref: str) -> bytes:
        full_path = self._full_path(file_ref)
        if not os.path.isfile(full_path):
            raise StorageError(f"File does not exist: {file_ref}")
        try:
            with open(full_path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read file {file_ref}: {e}")

    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for local filesystem.

        Removes characters that are invalid on most filesystems:
        / \\ : * ? \" < > |
        """
        # Replace problematic characters with safe alternatives
        name = name.replace('/', '-')
        name = name.replace('\\', '-')
        name = name.replace(':', '-')
        name = name.replace('*', '')
        name = name.replace('?', '')
        name = name.replace('"', "'")
        name = name.replace('<', '')
        name = name.replace('>', '')
        name = name.replace('|', '-')

        # Remove leading/trailing whitespace and dots
        name = name.strip().strip('.')

        # Collapse multiple spaces/dashes
        name = re.sub(r'\s+', ' ', name)
        name = re.sub(r'-+', '-', name)

        # Limit length, keeping the extension
        if len(name) > 100:
            base, ext = os.path.splitext(name)
            name = base[:100 - len(ext)].strip() + ext

        return name
