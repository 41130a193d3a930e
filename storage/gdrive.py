"""Google Drive storage driver."""

import asyncio
import io
import mimetypes
import os
from typing import List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from .base import FileRepository, StorageError
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    log_retry,
    TRANSIENT_HTTP_STATUS_CODES,
)


SCOPES = ['https://www.googleapis.com/auth/drive']

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'


# ---------------------------------------------------------------------------
# Google Drive Retry Configuration
# ---------------------------------------------------------------------------

def _is_retryable_gdrive_error(exc: Exception) -> bool:
    """Determine if a Google Drive API error should be retried."""
    if isinstance(exc, HttpError):
        status_code = exc.resp.status
        return status_code in TRANSIENT_HTTP_STATUS_CODES
    return is_transient_network_error(exc)


def _execute_with_retry(request):
    """Execute a Google Drive API request with automatic retry."""
    @retry_on_transient_error(
        is_retryable=_is_retryable_gdrive_error,
        max_retries=5,
        base_delay=1.0,
        max_delay=60.0,
        on_retry=log_retry,
    )
    def execute():
        return request.execute()
    return execute()


def _download_with_retry(request, destination):
    """Download a file from Google Drive with automatic retry."""
    downloader = MediaIoBaseDownload(destination, request)
    done = False

    while not done:
        @retry_on_transient_error(
            is_retryable=_is_retryable_gdrive_error,
            max_retries=5,
            base_delay=1.0,
            max_delay=60.0,
            on_retry=log_retry,
        )
        def download_next_chunk():
            return downloader.next_chunk()

        status, done = download_next_chunk()


def _escape_query_value(value: str) -> str:
    """Escape a value for use in Google Drive API query strings."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GDriveDriver(FileRepository):
    """Storage driver for Google Drive.

    Uses service account authentication. Folder paths are relative to the
    root_folder_id provided at construction; file references are Drive file
    IDs, which stay stable across moves. The Drive client is blocking, so
    each operation runs in a worker thread.
    """

    def __init__(self, root_folder_id: str,
                 service_account_file: Optional[str] = None) -> None:
        """Initialize Google Drive storage driver.

        Args:
            root_folder_id: Google Drive folder ID to use as root
            service_account_file: Path to service account credentials JSON.
                Defaults to $GOOGLE_SERVICE_ACCOUNT_FILE, then
                'service_account_key.json'.

        Raises:
            StorageError: If authentication fails or folder can't be accessed
        """
        if service_account_file is None:
            service_account_file = os.environ.get(
                'GOOGLE_SERVICE_ACCOUNT_FILE', 'service_account_key.json')

        self.root_folder_id = root_folder_id
        self._root_folder_name: Optional[str] = None

        try:
            self.creds = service_account.Credentials.from_service_account_file(
                service_account_file, scopes=SCOPES
            )
            self.service = build('drive', 'v3', credentials=self.creds)

            # Verify folder exists and get its name
            result = _execute_with_retry(self.service.files().get(
                fileId=root_folder_id,
                fields="id, name",
                supportsAllDrives=True,
            ))
            self._root_folder_name = result['name']

        except Exception as e:
            raise StorageError(f"Failed to initialize Google Drive: {e}")

    @property
    def display_name(self) -> str:
        name = self._root_folder_name or self.root_folder_id
        return f"{name} (Google Drive)"

    async def upload_to_path(self, data: bytes, filename: str, path: str) -> str:
        return await asyncio.to_thread(self._upload, data, filename, path)

    def _upload(self, data: bytes, filename: str, path: str) -> str:
        try:
            parent_id = self._ensure_folders_exist(path)
            name = self.sanitize_filename(filename) or "document"
            mime_type = mimetypes.guess_type(name)[0] or 'application/octet-stream'
            media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=True)
            created = _execute_with_retry(self.service.files().create(
                body={'name': name, 'parents': [parent_id]},
                media_body=media,
                fields='id',
                supportsAllDrives=True,
            ))
            return created['id']
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to upload file: {e}")

    async def move_path(self, file_ref: str, new_path: str) -> str:
        return await asyncio.to_thread(self._move, file_ref, new_path)

    def _move(self, file_ref: str, new_path: str) -> str:
        try:
            item = _execute_with_retry(self.service.files().get(
                fileId=file_ref,
                fields="id, mimeType, parents",
                supportsAllDrives=True,
            ))
        except HttpError as e:
            if e.resp.status == 404:
                raise StorageError(f"Source file not found: {file_ref}")
            raise StorageError(f"Failed to look up file {file_ref}: {e}")

        if item.get('mimeType') == FOLDER_MIME_TYPE:
            raise StorageError(f"Cannot move a folder with this method: {file_ref}")

        try:
            new_parent_id = self._ensure_folders_exist(new_path)
            old_parents: List[str] = item.get('parents', [])
            if new_parent_id in old_parents:
                return file_ref

            _execute_with_retry(self.service.files().update(
                fileId=file_ref,
                addParents=new_parent_id,
                removeParents=','.join(old_parents),
                supportsAllDrives=True,
            ))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to move file: {e}")
        return file_ref

    async def read_bytes(self, file_ref: str) -> bytes:
        return await asyncio.to_thread(self._read, file_ref)

    def _read(self, file_ref: str) -> bytes:
        try:
            request = self.service.files().get_media(fileId=file_ref, supportsAllDrives=True)
            buffer = io.BytesIO()
            _download_with_retry(request, buffer)
            return buffer.getvalue()
        except Exception as e:
            raise StorageError(f"Failed to read file {file_ref}: {e}")

    def _ensure_folders_exist(self, folder_path: str) -> str:
        """Ensure all folders in path exist, creating if needed. Returns final folder ID."""
        if not folder_path:
            return self.root_folder_id

        parts = [p for p in folder_path.split('/') if p]
        current_parent = self.root_folder_id

        for part in parts:
            escaped_part = _escape_query_value(part)
            results = _execute_with_retry(self.service.files().list(
                q=f"name='{escaped_part}' and mimeType='{FOLDER_MIME_TYPE}' and '{current_parent}' in parents and trashed=false",
                fields="files(id, name)",
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ))

            items = results.get('files', [])
            if items:
                current_parent = items[0]['id']
            else:
                # Create folder
                file_metadata = {
                    'name': part,
                    'mimeType': FOLDER_MIME_TYPE,
                    'parents': [current_parent]
                }
                folder = _execute_with_retry(self.service.files().create(
                    body=file_metadata,
                    fields='id',
                    supportsAllDrives=True,
                ))
                current_parent = folder['id']

        return current_parent

    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for Google Drive.

        Google Drive is very permissive - only / is truly forbidden.
        """
        return name.replace('/', '-').strip()
