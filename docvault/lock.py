# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Maintenance Lock - Exclusive write access during a restore.

The lock is a single-row advisory marker kept in the store itself, so it
is visible to every process sharing that store. It carries a TTL; a holder
that crashes cannot keep it past expiry.

Backups do not take the lock. They only check it before reading, which
leaves one race open: a restore that starts after a backup began reading
is not detected by that backup.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

from docvault.exceptions import RestoreInProgress
from docvault.store import StoreDriver

logger = structlog.get_logger()

MAINTENANCE_LOCK_NAME = "restore"


@asynccontextmanager
async def maintenance_lock(
    driver: StoreDriver,
    holder: str,
    ttl_seconds: int = 3600,
) -> AsyncIterator[str]:
    """
    Hold the maintenance lock for the duration of the block.

    The lock is released on every exit path, including cancellation and
    deadline expiry.

    Args:
        driver: Store driver holding the lock row
        holder: Identifier of the operation taking the lock
        ttl_seconds: Expiry of the lock row

    Yields:
        The holder identifier

    Raises:
        RestoreInProgress: If another holder has the lock
    """
    acquired = await driver.acquire_lock(MAINTENANCE_LOCK_NAME, holder, ttl_seconds)
    if not acquired:
        current = await driver.lock_holder(MAINTENANCE_LOCK_NAME)
        logger.warning("maintenance_lock_busy", holder=holder, current_holder=current)
        raise RestoreInProgress(
            "A restore is already in progress",
            details={"current_holder": current},
        )

    logger.info("maintenance_lock_acquired", holder=holder, ttl_seconds=ttl_seconds)
    try:
        yield holder
    finally:
        # Shielded so a cancelled restore still frees the lock
        await asyncio.shield(driver.release_lock(MAINTENANCE_LOCK_NAME, holder))
        logger.info("maintenance_lock_released", holder=holder)


async def ensure_no_restore_running(driver: StoreDriver) -> None:
    """
    Refuse to proceed while a restore holds the maintenance lock.

    Raises:
        RestoreInProgress: If the lock is held
    """
    current = await driver.lock_holder(MAINTENANCE_LOCK_NAME)
    if current is not None:
        raise RestoreInProgress(
            "A restore is in progress; backup refused",
            details={"current_holder": current},
        )
