# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SQLite Document Store - aiosqlite-backed record sets.

Each record set lives in its own table:

    rs_<name>(seq INTEGER PRIMARY KEY AUTOINCREMENT, _id TEXT UNIQUE, doc TEXT)

and is listed in the _record_sets catalog, which is what the registry
reads at runtime. Documents are stored as JSON text; seq preserves
insertion order.

Two write paths exist:
- The CRUD path (insert_one, delete_many) assigns identifiers and runs
  registered hooks.
- The raw path (replace_all_raw) is administrative-only. It bypasses all
  hooks and writes documents exactly as given.
"""

import json
import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List

import aiosqlite
import structlog

from docvault.exceptions import AtomicUnsupported, StoreError

logger = structlog.get_logger()

Document = Dict[str, Any]
Hook = Callable[[str, Document | None], Awaitable[None]]

_SET_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,62}$")

HOOK_EVENTS = ("before_insert", "before_delete")


def _table(name: str) -> str:
    return f'"rs_{name}"'


def _id_key(document: Document) -> str | None:
    """Column value for a document identifier; None when it has none."""
    if "_id" not in document or document["_id"] is None:
        return None
    return json.dumps(document["_id"], sort_keys=True, default=str)


def _dumps(document: Document) -> str:
    return json.dumps(document, ensure_ascii=False, default=str)


class SQLiteStoreDriver:
    """
    Document store on a single SQLite file.

    Args:
        db_path: Path to the SQLite database file
        supports_transactions: When False, atomic() raises AtomicUnsupported,
            as a standalone document database without transactions would
        timeout: SQLite busy timeout in seconds for each connection
    """

    def __init__(
        self,
        db_path: Path,
        *,
        supports_transactions: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.db_path = Path(db_path)
        self.supports_transactions = supports_transactions
        self.timeout = timeout
        self._hooks: Dict[str, Dict[str, List[Hook]]] = {}

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(
            self.db_path, timeout=self.timeout, isolation_level=None
        )

    async def initialize(self) -> None:
        """
        Create the catalog and lock tables. Idempotent.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self._connect() as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS _record_sets (
                        position INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        created_at TEXT NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS _maintenance_locks (
                        name TEXT PRIMARY KEY,
                        holder TEXT NOT NULL,
                        acquired_at TEXT NOT NULL,
                        expires_at TEXT NOT NULL
                    )
                """)
        except Exception as e:
            raise StoreError(
                f"Failed to initialize store database: {e}",
                details={"db_path": str(self.db_path)},
            )

        logger.info("store_initialized", db_path=str(self.db_path))

    async def register_set(self, name: str) -> None:
        """
        Register a record set, creating its table. Idempotent.

        Args:
            name: Record set name (letters, digits, underscores)
        """
        if not _SET_NAME_RE.match(name):
            raise StoreError(f"Invalid record set name: {name!r}")

        now = datetime.now(UTC).isoformat()
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute(f"""
                    CREATE TABLE IF NOT EXISTS {_table(name)} (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        _id TEXT UNIQUE,
                        doc TEXT NOT NULL
                    )
                """)
                await db.execute(
                    "INSERT OR IGNORE INTO _record_sets (name, created_at) VALUES (?, ?)",
                    (name, now),
                )
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise

    def add_hook(self, name: str, event: str, hook: Hook) -> None:
        """
        Register a hook run by the CRUD path.

        Hooks receive the set name and the document (None for deletes) and
        may raise to veto the operation. The raw path never runs them.
        """
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event: {event}, expected one of {HOOK_EVENTS}")
        self._hooks.setdefault(name, {}).setdefault(event, []).append(hook)

    async def _run_hooks(self, name: str, event: str, document: Document | None) -> None:
        for hook in self._hooks.get(name, {}).get(event, []):
            await hook(name, document)

    async def list_set_names(self) -> List[str]:
        try:
            async with self._connect() as db:
                async with db.execute(
                    "SELECT name FROM _record_sets ORDER BY position"
                ) as cursor:
                    return [row[0] async for row in cursor]
        except Exception as e:
            raise StoreError(
                f"Failed to list record sets: {e}",
                details={"db_path": str(self.db_path)},
            )

    async def read_all(self, name: str) -> List[Document]:
        try:
            async with self._connect() as db:
                async with db.execute(
                    f"SELECT doc FROM {_table(name)} ORDER BY seq"
                ) as cursor:
                    return [json.loads(row[0]) async for row in cursor]
        except Exception as e:
            raise StoreError(
                f"Failed to read record set {name}: {e}",
                details={"record_set": name},
            )

    async def read_recent(self, name: str, limit: int) -> List[Document]:
        """Most recently inserted documents first."""
        async with self._connect() as db:
            async with db.execute(
                f"SELECT doc FROM {_table(name)} ORDER BY seq DESC LIMIT ?",
                (limit,),
            ) as cursor:
                return [json.loads(row[0]) async for row in cursor]

    async def count(self, name: str) -> int:
        async with self._connect() as db:
            async with db.execute(f"SELECT COUNT(*) FROM {_table(name)}") as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def insert_one(self, name: str, document: Document) -> str:
        """
        CRUD insert: assigns a ULID identifier when missing, runs hooks.

        Returns:
            The document identifier
        """
        from ulid import ULID

        document = dict(document)
        if document.get("_id") is None:
            document["_id"] = str(ULID())

        await self._run_hooks(name, "before_insert", document)

        async with self._connect() as db:
            await db.execute(
                f"INSERT INTO {_table(name)} (_id, doc) VALUES (?, ?)",
                (_id_key(document), _dumps(document)),
            )

        return document["_id"]

    async def delete_many(self, name: str) -> int:
        """CRUD delete of every document in a set, hooks included."""
        await self._run_hooks(name, "before_delete", None)

        async with self._connect() as db:
            cursor = await db.execute(f"DELETE FROM {_table(name)}")
            return cursor.rowcount

    async def replace_all_raw(
        self,
        name: str,
        documents: List[Document],
        unit: aiosqlite.Connection | None = None,
    ) -> int:
        if unit is not None:
            return await self._replace_on(unit, name, documents)

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                inserted = await self._replace_on(db, name, documents)
                await db.execute("COMMIT")
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            return inserted

    async def _replace_on(
        self,
        db: aiosqlite.Connection,
        name: str,
        documents: List[Document],
    ) -> int:
        await db.execute(f"DELETE FROM {_table(name)}")
        if documents:
            await db.executemany(
                f"INSERT INTO {_table(name)} (_id, doc) VALUES (?, ?)",
                [(_id_key(doc), _dumps(doc)) for doc in documents],
            )

        logger.debug("record_set_replaced_raw", record_set=name, count=len(documents))
        return len(documents)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        One connection, one IMMEDIATE transaction. Committed on clean exit,
        rolled back on any exception, including cancellation.
        """
        if not self.supports_transactions:
            raise AtomicUnsupported(
                "Transactions are not supported by this store deployment",
                details={"db_path": str(self.db_path)},
            )

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            else:
                await db.execute("COMMIT")

    async def acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """
        Take the single-row advisory lock. Expired locks are reclaimed.

        Returns:
            True if the lock is now held by holder
        """
        now = datetime.now(UTC)
        expires = now + timedelta(seconds=ttl_seconds)

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute(
                    "DELETE FROM _maintenance_locks WHERE name = ? AND expires_at <= ?",
                    (name, now.isoformat()),
                )
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO _maintenance_locks
                    (name, holder, acquired_at, expires_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (name, holder, now.isoformat(), expires.isoformat()),
                )
                acquired = cursor.rowcount > 0
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise

        return acquired

    async def release_lock(self, name: str, holder: str) -> None:
        async with self._connect() as db:
            await db.execute(
                "DELETE FROM _maintenance_locks WHERE name = ? AND holder = ?",
                (name, holder),
            )

    async def lock_holder(self, name: str) -> str | None:
        """Current holder of an unexpired lock, or None."""
        async with self._connect() as db:
            async with db.execute(
                "SELECT holder FROM _maintenance_locks WHERE name = ? AND expires_at > ?",
                (name, datetime.now(UTC).isoformat()),
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None
