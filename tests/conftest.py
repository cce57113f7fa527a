# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for DocVault tests.

Provides a SQLite document store, recording collaborators, and test
configuration helpers.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, Generator, List

import pytest
import pytest_asyncio

# Set test environment variables
os.environ["DOCVAULT_ADMIN_API_KEY"] = "test-api-key-12345"

RESTORE_SECRET = "correct-horse-battery-staple"


class RecordingChannel:
    """Notification channel that keeps every message in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List = []
        self.fail = fail
        self.closed = False

    async def send(self, notification) -> None:
        from docvault.exceptions import NotificationError

        if self.fail:
            raise NotificationError("SMTP server unreachable")
        self.sent.append(notification)

    async def close(self) -> None:
        self.closed = True


class InMemoryBlobStore:
    """Blob store that keeps payloads in a dict."""

    def __init__(self, fail: bool = False) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.fail = fail

    async def put(self, name: str, data: bytes, content_type: str):
        from docvault.delivery import StoredBlob
        from docvault.exceptions import BlobStoreError

        if self.fail:
            raise BlobStoreError("Disk full", details={"name": name})
        self.blobs[name] = data
        return StoredBlob(
            location=f"memory://{name}",
            url=f"https://files.example.com/{name}",
            size_bytes=len(data),
        )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path):
    """Create a test configuration."""
    from docvault.config import BackupConfig

    return BackupConfig(
        database_path=temp_dir / "store.db",
        history_db_path=temp_dir / "history.db",
        operator_address="ops@example.com",
        backup_storage_path=temp_dir / "backups",
        public_base_url="https://app.example.com",
        restore_secret=RESTORE_SECRET,
        environment="test",
    )


@pytest_asyncio.fixture
async def store_driver(test_config):
    """SQLite store with empty "users" and "orders" record sets."""
    from docvault.store import SQLiteStoreDriver

    driver = SQLiteStoreDriver(test_config.database_path)
    await driver.initialize()
    await driver.register_set("users")
    await driver.register_set("orders")
    return driver


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def memory_blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest_asyncio.fixture
async def engine_state(test_config, store_driver, recording_channel, memory_blob_store):
    """Create initialized engine state wired to in-memory collaborators."""
    from docvault.core import initialize_engine_state

    state = await initialize_engine_state(
        test_config,
        driver=store_driver,
        channel=recording_channel,
        blob_store=memory_blob_store,
    )
    yield state


@pytest_asyncio.fixture
async def seeded_users(store_driver) -> List[str]:
    """Three users with hidden credential fields, inserted through the CRUD path."""
    ids = []
    for i in range(3):
        ids.append(
            await store_driver.insert_one(
                "users",
                {
                    "_id": f"user-{i}",
                    "email": f"user{i}@example.com",
                    "password": f"$2b$10$hash{i}",
                    "role": "student",
                },
            )
        )
    return ids
