# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Scheduler - Periodic automatic backups.

A check runs at startup and then once a day. A backup is taken only when
the last successful scheduled backup is older than the configured
interval, so restarts do not cause extra backups.
"""

from datetime import datetime, timedelta, UTC
from pathlib import Path

import aiosqlite
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from docvault.config import BackupConfig, BackupTrigger
from docvault.core import BackupResult, EngineState, run_backup_with_failure_notice
from docvault.history import RunKind, last_successful_run

logger = structlog.get_logger()

AUTOBACKUP_JOB_ID = "docvault_autobackup"

# How often the due-check runs; the interval itself is in days
CHECK_INTERVAL = timedelta(days=1)


async def is_backup_due(
    config: BackupConfig,
    history_db_path: Path,
    now: datetime | None = None,
) -> bool:
    """
    True when no scheduled backup has succeeded within the interval.
    """
    now = now or datetime.now(UTC)

    async with aiosqlite.connect(history_db_path) as db:
        last = await last_successful_run(db, RunKind.BACKUP, BackupTrigger.SCHEDULED.value)

    if last is None or last["completed_at"] is None:
        return True

    last_at = datetime.fromisoformat(last["completed_at"])
    return now - last_at >= timedelta(days=config.autobackup_interval_days)


async def run_backup_if_due(
    config: BackupConfig,
    state: EngineState,
    reason: str = "interval",
) -> BackupResult | None:
    """
    Run a scheduled backup when one is due.

    Args:
        config: DocVault configuration
        state: Runtime state
        reason: Why the check ran (startup, interval), for the logs

    Returns:
        BackupResult if a backup ran and succeeded, otherwise None
    """
    if not config.autobackup_enabled:
        return None

    if not await is_backup_due(config, state["history_db_path"]):
        logger.debug("autobackup_not_due", reason=reason)
        return None

    logger.info(
        "autobackup_starting",
        reason=reason,
        interval_days=config.autobackup_interval_days,
    )

    result = await run_backup_with_failure_notice(
        config,
        state,
        BackupTrigger.SCHEDULED,
        timeout_seconds=config.backup_timeout_seconds,
    )

    if result is not None:
        logger.info(
            "autobackup_completed",
            operation_id=result.operation_id,
            size_bytes=result.size_bytes,
            delivery_mode=result.delivery_mode,
        )

    return result


def setup_autobackup(config: BackupConfig, state: EngineState) -> AsyncIOScheduler | None:
    """
    Start the automatic backup scheduler.

    Must be called with the event loop running.

    Returns:
        The running scheduler, or None when automatic backups are disabled
    """
    if not config.autobackup_enabled:
        logger.info("autobackup_disabled")
        return None

    scheduler = AsyncIOScheduler(timezone=UTC)

    async def check(reason: str) -> None:
        await run_backup_if_due(config, state, reason=reason)

    # First check right away, then daily
    scheduler.add_job(
        check,
        trigger=IntervalTrigger(days=CHECK_INTERVAL.days, timezone=UTC),
        args=["interval"],
        id=AUTOBACKUP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        check,
        args=["startup"],
        id=f"{AUTOBACKUP_JOB_ID}_startup",
        next_run_time=datetime.now(UTC),
    )
    scheduler.start()

    logger.info(
        "scheduler_started",
        interval_days=config.autobackup_interval_days,
        next_check=scheduler.get_job(AUTOBACKUP_JOB_ID).next_run_time.isoformat(),
    )

    return scheduler


def shutdown_autobackup(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
