# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Run History - Append-only record of backup, restore and report runs.

Each run is inserted when it starts and completed exactly once. Rows are
never deleted. The scheduler reads the last successful scheduled backup
from here to decide whether a new one is due, and the admin status
endpoint reports the latest runs.
"""

import json
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Any, List, TypedDict

import aiosqlite
import structlog

from docvault.exceptions import HistoryError

logger = structlog.get_logger()


class RunKind(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"
    REPORT = "report"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Restore terminal states
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    PARTIALLY_APPLIED = "partially_applied"


# Statuses that count as a successful run
SUCCESS_STATUSES = (RunStatus.SUCCEEDED.value, RunStatus.COMMITTED.value)


class RunRecord(TypedDict):
    """One row of the run history."""

    id: str  # ULID
    kind: str
    trigger: str | None
    status: str
    started_at: str  # ISO 8601
    completed_at: str | None  # ISO 8601 or None
    size_bytes: int | None
    set_count: int | None
    details: dict
    error: str | None


_COLUMNS = (
    "id, kind, trigger, status, started_at, completed_at, "
    "size_bytes, set_count, details, error"
)


def _row_to_record(row: Any) -> RunRecord:
    return RunRecord(
        id=row[0],
        kind=row[1],
        trigger=row[2],
        status=row[3],
        started_at=row[4],
        completed_at=row[5],
        size_bytes=row[6],
        set_count=row[7],
        details=json.loads(row[8]) if row[8] else {},
        error=row[9],
    )


async def init_history_db(db_path: Path) -> None:
    """
    Initialize the history database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    trigger TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    size_bytes INTEGER,
                    set_count INTEGER,
                    details TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_kind_started
                ON runs(kind, started_at)
            """)

            await db.commit()

        logger.info("history_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise HistoryError(
            f"Failed to initialize history database: {e}",
            details={"db_path": str(db_path)},
        )


async def record_run_started(
    db: aiosqlite.Connection,
    run_id: str,
    kind: RunKind,
    trigger: str | None = None,
) -> None:
    """
    Record the start of a run.

    Args:
        db: SQLite database connection
        run_id: Unique run ID (ULID)
        kind: backup, restore or report
        trigger: What started the run (manual, background, scheduled)
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO runs (id, kind, trigger, status, started_at, details)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, kind.value, trigger, RunStatus.RUNNING.value, now, "{}"),
    )
    await db.commit()

    logger.debug("run_recorded", run_id=run_id, kind=kind.value, trigger=trigger)


async def complete_run(
    db: aiosqlite.Connection,
    run_id: str,
    status: RunStatus,
    *,
    size_bytes: int | None = None,
    set_count: int | None = None,
    details: dict | None = None,
    error: str | None = None,
) -> None:
    """
    Mark a run as completed.

    Only a running row is updated, so a run cannot be completed twice.

    Args:
        db: SQLite database connection
        run_id: Run ID
        status: Final status
        size_bytes: Artifact size for backups
        set_count: Number of record sets involved
        details: Extra JSON-serializable information
        error: Error message if the run failed
    """
    now = datetime.now(UTC).isoformat()

    cursor = await db.execute(
        """
        UPDATE runs
        SET status = ?, completed_at = ?, size_bytes = ?, set_count = ?,
            details = ?, error = ?
        WHERE id = ? AND status = ?
        """,
        (
            status.value,
            now,
            size_bytes,
            set_count,
            json.dumps(details or {}, default=str),
            error,
            run_id,
            RunStatus.RUNNING.value,
        ),
    )
    await db.commit()

    if cursor.rowcount == 0:
        logger.warning("run_already_completed", run_id=run_id, status=status.value)


async def get_run(db: aiosqlite.Connection, run_id: str) -> RunRecord | None:
    async with db.execute(
        f"SELECT {_COLUMNS} FROM runs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None


async def list_runs(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    kind: str | None = None,
) -> List[RunRecord]:
    """
    List runs with pagination, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        kind: Optional filter by kind

    Returns:
        List of run records
    """
    query = f"SELECT {_COLUMNS} FROM runs"
    params: List = []

    if kind:
        query += " WHERE kind = ?"
        params.append(kind)

    # ULIDs sort by creation time; they break ties between equal timestamps
    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    async with db.execute(query, params) as cursor:
        return [_row_to_record(row) async for row in cursor]


async def last_successful_run(
    db: aiosqlite.Connection,
    kind: RunKind,
    trigger: str | None = None,
) -> RunRecord | None:
    """
    Most recent successful run of a kind, optionally for one trigger only.
    """
    query = (
        f"SELECT {_COLUMNS} FROM runs WHERE kind = ? AND status IN (?, ?)"
    )
    params: List = [kind.value, *SUCCESS_STATUSES]

    if trigger:
        query += " AND trigger = ?"
        params.append(trigger)

    query += " ORDER BY completed_at DESC, id DESC LIMIT 1"

    async with db.execute(query, params) as cursor:
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None
