# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Run History and Scheduler Tests.

The history is append-only and drives the automatic backup schedule:
a scheduled backup runs only when the last successful one is older than
the configured interval.
"""

import asyncio
import sqlite3
from datetime import datetime, timedelta, UTC
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from docvault.config import BackupTrigger
from docvault.core import run_backup, run_backup_with_failure_notice
from docvault.delivery.messages import BACKUP_SUBJECT, FAILURE_SUBJECT
from docvault.exceptions import StoreError
from docvault.history import (
    RunKind,
    RunStatus,
    complete_run,
    get_run,
    init_history_db,
    last_successful_run,
    list_runs,
    record_run_started,
)
from docvault.scheduler import (
    AUTOBACKUP_JOB_ID,
    is_backup_due,
    run_backup_if_due,
    setup_autobackup,
    shutdown_autobackup,
)


# ============================================================================
# History
# ============================================================================

@pytest.mark.asyncio
async def test_run_lifecycle_is_recorded(temp_dir):
    db_path = temp_dir / "history.db"
    await init_history_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run_started(db, "01HRUN0001", RunKind.BACKUP, "manual")
        started = await get_run(db, "01HRUN0001")

        await complete_run(
            db,
            "01HRUN0001",
            RunStatus.SUCCEEDED,
            size_bytes=2048,
            set_count=2,
            details={"delivery_mode": "inline"},
        )
        completed = await get_run(db, "01HRUN0001")

    assert started["status"] == "running"
    assert started["completed_at"] is None
    assert completed["status"] == "succeeded"
    assert completed["size_bytes"] == 2048
    assert completed["details"] == {"delivery_mode": "inline"}
    assert completed["completed_at"] is not None


@pytest.mark.asyncio
async def test_completed_run_cannot_be_completed_again(temp_dir):
    db_path = temp_dir / "history.db"
    await init_history_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run_started(db, "01HRUN0002", RunKind.RESTORE, "manual")
        await complete_run(db, "01HRUN0002", RunStatus.COMMITTED, set_count=3)
        await complete_run(db, "01HRUN0002", RunStatus.FAILED, error="late failure")

        run = await get_run(db, "01HRUN0002")

    assert run["status"] == "committed"
    assert run["error"] is None


@pytest.mark.asyncio
async def test_list_runs_filters_and_orders(temp_dir):
    db_path = temp_dir / "history.db"
    await init_history_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run_started(db, "01HRUN0003", RunKind.BACKUP, "manual")
        await record_run_started(db, "01HRUN0004", RunKind.REPORT, "manual")
        await record_run_started(db, "01HRUN0005", RunKind.BACKUP, "scheduled")

        backups = await list_runs(db, kind="backup")
        first_page = await list_runs(db, limit=1)
        assert await get_run(db, "missing") is None

    assert [run["id"] for run in backups] == ["01HRUN0005", "01HRUN0003"]
    assert len(first_page) == 1


@pytest.mark.asyncio
async def test_last_successful_run_ignores_failures_and_other_triggers(temp_dir):
    db_path = temp_dir / "history.db"
    await init_history_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_run_started(db, "01HRUN0006", RunKind.BACKUP, "scheduled")
        await complete_run(db, "01HRUN0006", RunStatus.SUCCEEDED)
        await record_run_started(db, "01HRUN0007", RunKind.BACKUP, "scheduled")
        await complete_run(db, "01HRUN0007", RunStatus.FAILED, error="smtp down")
        await record_run_started(db, "01HRUN0008", RunKind.BACKUP, "manual")
        await complete_run(db, "01HRUN0008", RunStatus.SUCCEEDED)

        scheduled = await last_successful_run(db, RunKind.BACKUP, "scheduled")
        any_trigger = await last_successful_run(db, RunKind.BACKUP)
        restores = await last_successful_run(db, RunKind.RESTORE)

    assert scheduled["id"] == "01HRUN0006"
    assert any_trigger["id"] == "01HRUN0008"
    assert restores is None


# ============================================================================
# Due check
# ============================================================================

@pytest.mark.asyncio
async def test_backup_due_when_never_run(test_config, engine_state):
    assert await is_backup_due(test_config, test_config.history_db_path) is True


@pytest.mark.asyncio
async def test_backup_not_due_within_interval(test_config, engine_state):
    await run_backup(test_config, engine_state, BackupTrigger.SCHEDULED)
    now = datetime.now(UTC)

    assert await is_backup_due(test_config, test_config.history_db_path, now) is False
    assert (
        await is_backup_due(
            test_config, test_config.history_db_path, now + timedelta(days=8)
        )
        is True
    )


@pytest.mark.asyncio
async def test_manual_backup_does_not_reset_schedule(test_config, engine_state):
    await run_backup(test_config, engine_state, BackupTrigger.MANUAL)

    assert await is_backup_due(test_config, test_config.history_db_path) is True


# ============================================================================
# Scheduled runs
# ============================================================================

@pytest.mark.asyncio
async def test_disabled_autobackup_never_runs(test_config, engine_state, recording_channel):
    assert await run_backup_if_due(test_config, engine_state) is None
    assert setup_autobackup(test_config, engine_state) is None
    assert recording_channel.sent == []


@pytest.mark.asyncio
async def test_due_backup_runs_once(test_config, engine_state, recording_channel):
    config = test_config.with_updates(autobackup_enabled=True)

    first = await run_backup_if_due(config, engine_state, reason="startup")
    second = await run_backup_if_due(config, engine_state, reason="interval")

    assert first is not None
    assert first.trigger == BackupTrigger.SCHEDULED
    assert second is None
    assert [n.subject for n in recording_channel.sent] == [BACKUP_SUBJECT]


@pytest.mark.asyncio
async def test_failed_scheduled_backup_sends_notice(
    test_config, engine_state, recording_channel, store_driver
):
    config = test_config.with_updates(autobackup_enabled=True)

    with patch.object(
        store_driver,
        "list_set_names",
        AsyncMock(side_effect=StoreError("connection refused")),
    ):
        result = await run_backup_if_due(config, engine_state)

    assert result is None
    assert len(recording_channel.sent) == 1
    assert recording_channel.sent[0].subject == FAILURE_SUBJECT
    assert recording_channel.sent[0].attachments == []

    async with aiosqlite.connect(config.history_db_path) as db:
        runs = await list_runs(db, kind="backup")
    assert runs[0]["status"] == "failed"
    assert runs[0]["trigger"] == "scheduled"

    # A failed run does not count, so the next check tries again
    assert await is_backup_due(config, config.history_db_path) is True


@pytest.mark.asyncio
async def test_failure_notice_errors_are_not_raised(
    test_config, engine_state, recording_channel, store_driver
):
    recording_channel.fail = True

    with patch.object(
        store_driver,
        "list_set_names",
        AsyncMock(side_effect=StoreError("connection refused")),
    ):
        result = await run_backup_with_failure_notice(
            test_config, engine_state, BackupTrigger.BACKGROUND
        )

    assert result is None
    assert engine_state["last_backup_status"] == "failed"


@pytest.mark.asyncio
async def test_unexpected_blob_store_error_sends_notice(
    test_config, engine_state, recording_channel, memory_blob_store, seeded_users
):
    config = test_config.with_updates(max_attachment_bytes=1)

    with patch.object(
        memory_blob_store,
        "put",
        AsyncMock(side_effect=PermissionError("backups directory is read-only")),
    ):
        result = await run_backup_with_failure_notice(
            config, engine_state, BackupTrigger.SCHEDULED
        )

    assert result is None
    assert [n.subject for n in recording_channel.sent] == [FAILURE_SUBJECT]
    assert "PermissionError" in recording_channel.sent[0].text
    assert engine_state["last_backup_status"] == "failed"


@pytest.mark.asyncio
async def test_history_error_sends_notice(test_config, engine_state, recording_channel):
    with patch(
        "docvault.history.record_run_started",
        AsyncMock(side_effect=sqlite3.OperationalError("database is locked")),
    ):
        result = await run_backup_with_failure_notice(
            test_config, engine_state, BackupTrigger.BACKGROUND
        )

    assert result is None
    assert [n.subject for n in recording_channel.sent] == [FAILURE_SUBJECT]
    assert "database is locked" in recording_channel.sent[0].text


@pytest.mark.asyncio
async def test_scheduler_registers_daily_check(test_config, engine_state):
    config = test_config.with_updates(autobackup_enabled=True)

    with patch("docvault.scheduler.run_backup_if_due", AsyncMock(return_value=None)):
        scheduler = setup_autobackup(config, engine_state)
        try:
            job = scheduler.get_job(AUTOBACKUP_JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(days=1)
            assert job.max_instances == 1
        finally:
            shutdown_autobackup(scheduler)
        # Let the already queued startup check settle
        await asyncio.sleep(0.05)

    assert not scheduler.running
