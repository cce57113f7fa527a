# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Store Layer - Driver protocol and the SQLite document store.
"""

from typing import Any, AsyncContextManager, Dict, List, Protocol

Document = Dict[str, Any]


class StoreDriver(Protocol):
    """
    Protocol for the persistent store driven by the backup engine.

    A store is an opaque collection of named record sets, each holding
    schemaless documents that carry their identifier under "_id".
    """

    async def list_set_names(self) -> List[str]:
        """Return every record set known to the store, in discovery order."""
        ...

    async def read_all(self, name: str) -> List[Document]:
        """Return every persisted document of a set, in iteration order."""
        ...

    async def count(self, name: str) -> int:
        ...

    async def read_recent(self, name: str, limit: int) -> List[Document]:
        ...

    async def replace_all_raw(
        self,
        name: str,
        documents: List[Document],
        unit: Any = None,
    ) -> int:
        """
        Administrative-only: clear a set bypassing hooks and bulk-insert
        documents with their identifiers untouched.

        When unit comes from atomic(), the work joins that unit instead of
        committing on its own.
        """
        ...

    def atomic(self) -> AsyncContextManager[Any]:
        """
        Group several replace_all_raw calls into one all-or-nothing unit.

        Raises:
            AtomicUnsupported: If the deployment cannot provide one
        """
        ...

    async def acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        ...

    async def release_lock(self, name: str, holder: str) -> None:
        ...

    async def lock_holder(self, name: str) -> str | None:
        ...


from docvault.store.sqlite import SQLiteStoreDriver  # noqa: E402

__all__ = [
    "Document",
    "StoreDriver",
    "SQLiteStoreDriver",
]
