# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Tests.

These tests verify the restore guarantees:
1. Gatekeeping - nothing is written without a valid confirmation and artifact
2. Fidelity - identifiers are preserved and hooks are bypassed
3. Atomicity - a failing atomic restore leaves the store unchanged
4. Honesty - a failing sequential restore reports exactly what happened
5. The maintenance lock is always released
"""

import asyncio
from datetime import datetime, UTC

import aiosqlite
import pytest

from docvault.codec import encode_artifact
from docvault.core import run_restore
from docvault.exceptions import (
    InvalidArtifact,
    MissingConfirmation,
    RestoreInProgress,
    StoreError,
    UnauthorizedRestore,
)
from docvault.history import list_runs
from docvault.lock import MAINTENANCE_LOCK_NAME
from docvault.restore import (
    TIMED_OUT,
    UNKNOWN_SET,
    RestoreStatus,
    SetOutcome,
    restore_artifact,
    verify_confirmation,
)
from docvault.snapshot import BackupArtifact
from docvault.store import SQLiteStoreDriver


def make_artifact(**record_sets) -> BackupArtifact:
    return BackupArtifact(
        schema_version=1,
        generated_at=datetime(2026, 3, 1, 2, 30, tzinfo=UTC),
        record_sets=record_sets,
        environment="test",
    )


def fail_on(driver, failing_set: str, *, delay: float | None = None):
    """Make replace_all_raw fail (or stall) on one record set."""
    original = driver.replace_all_raw

    async def flaky(name, documents, unit=None):
        if name == failing_set:
            if delay is not None:
                await asyncio.sleep(delay)
            raise StoreError(f"write conflict on {name}")
        return await original(name, documents, unit=unit)

    driver.replace_all_raw = flaky


RESTORED_USERS = [
    {"_id": "a1", "email": "a@example.com", "password": "$2b$10$restored"},
    {"_id": "a2", "email": "b@example.com", "password": "$2b$10$restored"},
]


# ============================================================================
# Confirmation gate
# ============================================================================

def test_confirmation_accepts_matching_secret():
    verify_confirmation("s3cret", "s3cret")


@pytest.mark.parametrize(
    "expected, supplied, error",
    [
        ("s3cret", None, MissingConfirmation),
        ("s3cret", "", MissingConfirmation),
        ("s3cret", "wrong", UnauthorizedRestore),
        (None, "anything", UnauthorizedRestore),
    ],
)
def test_confirmation_rejections(expected, supplied, error):
    with pytest.raises(error):
        verify_confirmation(expected, supplied)


@pytest.mark.asyncio
async def test_wrong_secret_leaves_store_unchanged(
    test_config, engine_state, store_driver, seeded_users
):
    data = (await encode_artifact(make_artifact(users=RESTORED_USERS))).data

    with pytest.raises(UnauthorizedRestore):
        await run_restore(test_config, engine_state, data, "not-the-secret")

    users = await store_driver.read_all("users")
    assert [u["_id"] for u in users] == seeded_users

    async with aiosqlite.connect(test_config.history_db_path) as db:
        runs = await list_runs(db, kind="restore")
    assert runs[0]["status"] == "failed"
    assert "not-the-secret" not in (runs[0]["error"] or "")


@pytest.mark.asyncio
async def test_restore_refused_without_configured_secret(
    test_config, engine_state, store_driver, seeded_users
):
    config = test_config.with_updates(restore_secret=None)
    data = (await encode_artifact(make_artifact(users=RESTORED_USERS))).data

    with pytest.raises(UnauthorizedRestore):
        await run_restore(config, engine_state, data, "anything")

    assert await store_driver.count("users") == 3


@pytest.mark.asyncio
async def test_invalid_artifact_leaves_store_unchanged(
    test_config, engine_state, store_driver, seeded_users
):
    with pytest.raises(InvalidArtifact):
        await run_restore(
            test_config, engine_state, b"not a backup", test_config.restore_secret
        )

    assert await store_driver.count("users") == 3
    assert await store_driver.lock_holder(MAINTENANCE_LOCK_NAME) is None


# ============================================================================
# Replacement
# ============================================================================

@pytest.mark.asyncio
async def test_restore_replaces_contents_and_keeps_ids(
    test_config, engine_state, store_driver, seeded_users
):
    orders = [{"_id": {"$oid": "65a1"}, "user": "a1", "total": 12.5}]
    data = (await encode_artifact(make_artifact(users=RESTORED_USERS, orders=orders))).data

    result = await run_restore(test_config, engine_state, data, test_config.restore_secret)

    assert result.status == RestoreStatus.COMMITTED
    assert result.atomic is True
    assert result.replaced == ["users", "orders"]
    assert result.documents_restored == 3
    assert await store_driver.read_all("users") == RESTORED_USERS
    assert await store_driver.read_all("orders") == orders
    assert engine_state["total_restores"] == 1


@pytest.mark.asyncio
async def test_unknown_sets_are_skipped(store_driver, seeded_users):
    artifact = make_artifact(users=RESTORED_USERS, legacyAudit=[{"_id": "x"}])

    result = await restore_artifact(store_driver, artifact, "op-unknown")

    assert result.status == RestoreStatus.COMMITTED
    assert result.skipped == ["legacyAudit"]
    skipped = next(r for r in result.per_set if r.name == "legacyAudit")
    assert skipped.reason == UNKNOWN_SET
    assert "legacyAudit" not in await store_driver.list_set_names()


@pytest.mark.asyncio
async def test_sets_missing_from_artifact_are_untouched(store_driver, seeded_users):
    await store_driver.insert_one("orders", {"_id": "o1", "total": 3})

    result = await restore_artifact(store_driver, make_artifact(users=[]), "op-subset")

    assert result.replaced == ["users"]
    assert await store_driver.count("users") == 0
    assert await store_driver.count("orders") == 1


@pytest.mark.asyncio
async def test_restore_bypasses_hooks(store_driver, seeded_users):
    async def veto(name, document):
        raise RuntimeError(f"hook vetoed write to {name}")

    store_driver.add_hook("users", "before_insert", veto)
    store_driver.add_hook("users", "before_delete", veto)

    result = await restore_artifact(store_driver, make_artifact(users=RESTORED_USERS), "op-hooks")

    assert result.status == RestoreStatus.COMMITTED
    assert await store_driver.read_all("users") == RESTORED_USERS


@pytest.mark.asyncio
async def test_crud_delete_runs_hooks(store_driver, seeded_users):
    seen = []

    async def record(name, document):
        seen.append((name, document))

    async def veto(name, document):
        raise RuntimeError(f"hook vetoed delete from {name}")

    store_driver.add_hook("orders", "before_delete", veto)
    with pytest.raises(RuntimeError):
        await store_driver.delete_many("orders")

    store_driver.add_hook("users", "before_delete", record)
    deleted = await store_driver.delete_many("users")

    assert deleted == 3
    assert seen == [("users", None)]
    assert await store_driver.count("users") == 0


@pytest.mark.asyncio
async def test_store_without_transactions_falls_back(test_config, seeded_users):
    driver = SQLiteStoreDriver(test_config.database_path, supports_transactions=False)

    result = await restore_artifact(driver, make_artifact(users=RESTORED_USERS), "op-seq")

    assert result.status == RestoreStatus.COMMITTED
    assert result.atomic is False
    assert "without a transaction" in result.message
    assert await driver.read_all("users") == RESTORED_USERS


# ============================================================================
# Failure handling
# ============================================================================

@pytest.mark.asyncio
async def test_atomic_failure_rolls_back(store_driver, seeded_users):
    before = await store_driver.read_all("users")
    fail_on(store_driver, "orders")

    result = await restore_artifact(
        store_driver, make_artifact(users=RESTORED_USERS, orders=[]), "op-rollback"
    )

    assert result.status == RestoreStatus.ROLLED_BACK
    assert result.atomic is True
    assert result.replaced == []
    outcomes = {r.name: r.outcome for r in result.per_set}
    assert outcomes == {"users": SetOutcome.ROLLED_BACK, "orders": SetOutcome.FAILED}
    assert await store_driver.read_all("users") == before
    assert await store_driver.lock_holder(MAINTENANCE_LOCK_NAME) is None


@pytest.mark.asyncio
async def test_sequential_failure_reports_partial_apply(test_config, seeded_users):
    driver = SQLiteStoreDriver(test_config.database_path, supports_transactions=False)
    await driver.register_set("courses")
    fail_on(driver, "orders")

    artifact = make_artifact(
        users=RESTORED_USERS,
        orders=[{"_id": "o1"}],
        courses=[{"_id": "c1", "title": "Algebra"}],
    )
    result = await restore_artifact(driver, artifact, "op-partial")

    assert result.status == RestoreStatus.PARTIALLY_APPLIED
    assert result.atomic is False
    assert result.replaced == ["users"]
    assert result.failed == ["orders"]
    assert result.not_reached == ["courses"]
    assert "write conflict on orders" in result.error
    assert "Manual intervention required" in result.message

    assert await driver.read_all("users") == RESTORED_USERS
    assert await driver.count("courses") == 0
    assert await driver.lock_holder(MAINTENANCE_LOCK_NAME) is None


@pytest.mark.asyncio
async def test_partial_restore_is_recorded_in_history(
    test_config, engine_state, store_driver, seeded_users
):
    driver = SQLiteStoreDriver(test_config.database_path, supports_transactions=False)
    fail_on(driver, "orders")
    engine_state["driver"] = driver
    data = (await encode_artifact(make_artifact(users=RESTORED_USERS, orders=[]))).data

    result = await run_restore(test_config, engine_state, data, test_config.restore_secret)

    async with aiosqlite.connect(test_config.history_db_path) as db:
        runs = await list_runs(db, kind="restore")

    assert runs[0]["id"] == result.operation_id
    assert runs[0]["status"] == "partially_applied"
    per_set = {entry["name"]: entry["outcome"] for entry in runs[0]["details"]["per_set"]}
    assert per_set == {"users": "replaced", "orders": "failed"}


@pytest.mark.asyncio
async def test_atomic_timeout_rolls_back(store_driver, seeded_users):
    before = await store_driver.read_all("users")
    fail_on(store_driver, "orders", delay=5)

    result = await restore_artifact(
        store_driver,
        make_artifact(users=RESTORED_USERS, orders=[]),
        "op-timeout",
        timeout_seconds=0.2,
    )

    assert result.status == RestoreStatus.ROLLED_BACK
    assert result.error == TIMED_OUT
    assert await store_driver.read_all("users") == before
    assert await store_driver.lock_holder(MAINTENANCE_LOCK_NAME) is None


@pytest.mark.asyncio
async def test_sequential_timeout_reports_interrupted_set(test_config, seeded_users):
    driver = SQLiteStoreDriver(test_config.database_path, supports_transactions=False)
    fail_on(driver, "orders", delay=5)

    result = await restore_artifact(
        driver,
        make_artifact(users=RESTORED_USERS, orders=[]),
        "op-seq-timeout",
        timeout_seconds=0.2,
    )

    assert result.status == RestoreStatus.PARTIALLY_APPLIED
    assert result.replaced == ["users"]
    interrupted = next(r for r in result.per_set if r.name == "orders")
    assert interrupted.outcome == SetOutcome.FAILED
    assert interrupted.reason == TIMED_OUT
    assert await driver.lock_holder(MAINTENANCE_LOCK_NAME) is None


# ============================================================================
# Maintenance lock
# ============================================================================

@pytest.mark.asyncio
async def test_concurrent_restore_is_refused(store_driver, seeded_users):
    assert await store_driver.acquire_lock(MAINTENANCE_LOCK_NAME, "op-first", 60)

    with pytest.raises(RestoreInProgress) as exc_info:
        await restore_artifact(store_driver, make_artifact(users=[]), "op-second")

    assert exc_info.value.details["current_holder"] == "op-first"
    assert await store_driver.lock_holder(MAINTENANCE_LOCK_NAME) == "op-first"
    assert await store_driver.count("users") == 3


@pytest.mark.asyncio
async def test_expired_lock_is_reclaimed(store_driver):
    assert await store_driver.acquire_lock(MAINTENANCE_LOCK_NAME, "op-crashed", 0)

    result = await restore_artifact(store_driver, make_artifact(users=[]), "op-next")

    assert result.status == RestoreStatus.COMMITTED
    assert await store_driver.lock_holder(MAINTENANCE_LOCK_NAME) is None
