# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Tests.

These tests verify the backup guarantees:
1. Completeness - every registered set is captured, hidden fields included
2. All-or-nothing - a failing read produces no artifact and no notification
3. Round-trip - restoring a backup reproduces the store exactly
4. Exclusion - a backup refuses to start while a restore holds the lock
"""

from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from docvault.codec import decode_artifact
from docvault.config import BackupTrigger
from docvault.core import initialize_engine_state, run_backup, run_restore
from docvault.delivery.messages import BACKUP_SUBJECT, MANUAL_BACKUP_SUBJECT
from docvault.exceptions import (
    ConfigurationError,
    RegistryUnavailable,
    RestoreInProgress,
    SnapshotReadFailure,
    StoreError,
)
from docvault.history import list_runs
from docvault.lock import MAINTENANCE_LOCK_NAME
from docvault.registry import list_set_names
from docvault.snapshot import build_snapshot
from docvault.store import SQLiteStoreDriver


# ============================================================================
# Snapshot
# ============================================================================

@pytest.mark.asyncio
async def test_registry_reflects_live_store(store_driver):
    assert await list_set_names(store_driver) == ["users", "orders"]

    await store_driver.register_set("courses")

    assert await list_set_names(store_driver) == ["users", "orders", "courses"]


@pytest.mark.asyncio
async def test_snapshot_keeps_hidden_fields(store_driver, seeded_users):
    """Credential hashes hidden from client reads are still backed up."""
    artifact = await build_snapshot(store_driver, environment="test")

    users = artifact.record_sets["users"]
    assert [u["_id"] for u in users] == seeded_users
    assert all(u["password"].startswith("$2b$10$") for u in users)
    assert artifact.environment == "test"


@pytest.mark.asyncio
async def test_snapshot_read_failure_produces_nothing(store_driver, seeded_users):
    original = store_driver.read_all

    async def failing_read(name):
        if name == "orders":
            raise StoreError("database disk image is malformed")
        return await original(name)

    with patch.object(store_driver, "read_all", side_effect=failing_read):
        with pytest.raises(SnapshotReadFailure) as exc_info:
            await build_snapshot(store_driver)

    assert exc_info.value.details["record_set"] == "orders"
    assert exc_info.value.details["sets_read"] == ["users"]


# ============================================================================
# Backup runs
# ============================================================================

@pytest.mark.asyncio
async def test_users_and_empty_orders_backup(
    test_config, engine_state, recording_channel, memory_blob_store, seeded_users
):
    """Three users and no orders: one inline notification, both sets present."""
    result = await run_backup(test_config, engine_state)

    assert result.collection_names == ["users", "orders"]
    assert result.delivery_mode == "inline"
    assert result.download_url is None
    assert result.documents == 3
    assert memory_blob_store.blobs == {}

    assert len(recording_channel.sent) == 1
    notification = recording_channel.sent[0]
    assert notification.to == "ops@example.com"
    assert notification.subject == MANUAL_BACKUP_SUBJECT
    assert len(notification.attachments) == 1
    assert notification.attachments[0].filename == result.filename

    artifact = await decode_artifact(notification.attachments[0].content)
    assert len(artifact.record_sets["users"]) == 3
    assert artifact.record_sets["orders"] == []
    assert "users: 3 documents" in notification.html
    assert "orders: 0 documents" in notification.html


@pytest.mark.asyncio
async def test_scheduled_backup_uses_scheduled_subject(
    test_config, engine_state, recording_channel
):
    await run_backup(test_config, engine_state, BackupTrigger.SCHEDULED)

    assert recording_channel.sent[0].subject == BACKUP_SUBJECT


@pytest.mark.asyncio
async def test_round_trip_reproduces_store(
    test_config, engine_state, recording_channel, store_driver, seeded_users, temp_dir
):
    await store_driver.insert_one("orders", {"_id": {"$oid": "65a1"}, "total": 12.5})
    result = await run_backup(test_config, engine_state)
    data = recording_channel.sent[0].attachments[0].content

    # Fresh store with the same sets
    target = SQLiteStoreDriver(temp_dir / "target.db")
    await target.initialize()
    await target.register_set("users")
    await target.register_set("orders")
    target_config = test_config.with_updates(
        database_path=temp_dir / "target.db",
        history_db_path=temp_dir / "target_history.db",
    )
    target_state = await initialize_engine_state(
        target_config, driver=target, channel=recording_channel
    )

    restore = await run_restore(
        target_config, target_state, data, test_config.restore_secret
    )

    assert restore.status.value == "committed"
    for name in result.collection_names:
        assert await target.read_all(name) == await store_driver.read_all(name)


@pytest.mark.asyncio
async def test_registry_failure_aborts_before_reading(
    test_config, engine_state, recording_channel, store_driver
):
    with patch.object(
        store_driver,
        "list_set_names",
        AsyncMock(side_effect=StoreError("connection refused")),
    ):
        with pytest.raises(RegistryUnavailable):
            await run_backup(test_config, engine_state)

    assert recording_channel.sent == []
    assert engine_state["last_backup_status"] == "failed"

    async with aiosqlite.connect(test_config.history_db_path) as db:
        runs = await list_runs(db, kind="backup")
    assert runs[0]["status"] == "failed"
    assert "connection refused" in runs[0]["error"]


@pytest.mark.asyncio
async def test_backup_refused_while_restore_holds_lock(
    test_config, engine_state, recording_channel, store_driver
):
    await store_driver.acquire_lock(MAINTENANCE_LOCK_NAME, "restore-op", 60)

    with pytest.raises(RestoreInProgress):
        await run_backup(test_config, engine_state)

    assert recording_channel.sent == []


@pytest.mark.asyncio
async def test_backup_requires_channel_and_operator(test_config, store_driver):
    state = await initialize_engine_state(test_config, driver=store_driver)

    with pytest.raises(ConfigurationError) as exc_info:
        await run_backup(test_config, state)

    assert any("SMTP" in error for error in exc_info.value.details["errors"])


@pytest.mark.asyncio
async def test_successful_backup_is_recorded(test_config, engine_state, seeded_users):
    result = await run_backup(test_config, engine_state)

    async with aiosqlite.connect(test_config.history_db_path) as db:
        runs = await list_runs(db, kind="backup")

    assert runs[0]["id"] == result.operation_id
    assert runs[0]["status"] == "succeeded"
    assert runs[0]["trigger"] == "manual"
    assert runs[0]["size_bytes"] == result.size_bytes
    assert runs[0]["set_count"] == 2
    assert engine_state["total_backups"] == 1
    assert engine_state["last_backup_size"] == result.size_bytes
