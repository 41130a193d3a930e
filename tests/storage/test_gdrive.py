"""Smoke tests for GDriveDriver.

These tests require:
1. A service account key file (GOOGLE_SERVICE_ACCOUNT_FILE, or
   service_account_key.json in the project root)
2. GDRIVE_TEST_FOLDER_ID environment variable pointing to a test folder

Tests are skipped if credentials are not available.
"""

import asyncio
import os
import uuid

import pytest

KEY_FILE = os.environ.get("GOOGLE_SERVICE_ACCOUNT_FILE", "service_account_key.json")

# Skip all tests if no credentials
pytestmark = pytest.mark.skipif(
    not os.path.exists(KEY_FILE),
    reason=f"No {KEY_FILE} found"
)


@pytest.fixture
def test_folder_id():
    """Get test folder ID from environment."""
    folder_id = os.environ.get("GDRIVE_TEST_FOLDER_ID")
    if not folder_id:
        pytest.skip("GDRIVE_TEST_FOLDER_ID not set")
    return folder_id


@pytest.fixture
def driver(test_folder_id):
    """Create a GDriveDriver instance."""
    from storage.gdrive import GDriveDriver
    return GDriveDriver(test_folder_id, KEY_FILE)


class TestGDriveSmoke:
    """Simple smoke tests - one call per operation."""

    def test_display_name(self, driver):
        """Verify we can connect and get folder name."""
        assert "Google Drive" in driver.display_name

    def test_upload_read_move(self, driver):
        """Upload into a scratch folder, read it back, then move it."""
        scratch = f"ledgerdesk-test-{uuid.uuid4().hex[:8]}"
        file_ref = asyncio.run(driver.upload_to_path(b"smoke test", "smoke.txt", f"{scratch}/in"))
        assert asyncio.run(driver.read_bytes(file_ref)) == b"smoke test"

        moved = asyncio.run(driver.move_path(file_ref, f"{scratch}/out"))
        assert moved == file_ref  # Drive file IDs survive a move
        assert asyncio.run(driver.read_bytes(moved)) == b"smoke test"

    def test_sanitize_filename(self, driver):
        """Verify sanitize_filename."""
        assert driver.sanitize_filename("test/name") == "test-name"
        assert driver.sanitize_filename("E*Trade") == "E*Trade"  # Allowed on GDrive
