# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Restore Engine - Full replacement of the store from an artifact.

A restore moves through:

    Idle -> Validating -> Replacing -> Committed | RolledBack | PartiallyApplied

Validating checks the operator confirmation and decodes the artifact;
failures there leave the store untouched. Replacing clears each known
record set through the driver's raw path and re-inserts the artifact's
documents with their original identifiers.

All sets are first replaced inside one atomic unit. If the store cannot
provide one, the sets are replaced one at a time; a failure then leaves
the store partially restored and the result says exactly which sets were
replaced, which failed and which were never reached. Partial restores are
not reversed automatically.
"""

import asyncio
import hmac
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import List, Tuple

import structlog

from docvault.codec import decode_artifact
from docvault.errors import explain_missing_restore_secret
from docvault.exceptions import (
    AtomicUnsupported,
    MissingConfirmation,
    PartialRestoreFailure,
    UnauthorizedRestore,
)
from docvault.lock import maintenance_lock
from docvault.registry import list_set_names
from docvault.snapshot import BackupArtifact
from docvault.store import Document, StoreDriver

logger = structlog.get_logger()

UNKNOWN_SET = "UnknownSet"
TIMED_OUT = "Timeout"


class RestoreState(str, Enum):
    """Lifecycle of one restore."""

    IDLE = "idle"
    VALIDATING = "validating"
    REPLACING = "replacing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    PARTIALLY_APPLIED = "partially_applied"


class RestoreStatus(str, Enum):
    """Terminal outcome reported to the caller."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    PARTIALLY_APPLIED = "partially_applied"


class SetOutcome(str, Enum):
    """What happened to one record set."""

    REPLACED = "replaced"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_REACHED = "not_reached"
    ROLLED_BACK = "rolled_back"  # Replaced inside a unit that was reverted


@dataclass
class SetResult:
    """Per-set restore outcome."""

    name: str
    outcome: SetOutcome
    document_count: int = 0
    reason: str | None = None


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    operation_id: str  # ULID
    status: RestoreStatus
    message: str
    per_set: List[SetResult]
    atomic: bool
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    error: str | None = None

    def _names(self, outcome: SetOutcome) -> List[str]:
        return [result.name for result in self.per_set if result.outcome == outcome]

    @property
    def replaced(self) -> List[str]:
        return self._names(SetOutcome.REPLACED)

    @property
    def skipped(self) -> List[str]:
        return self._names(SetOutcome.SKIPPED)

    @property
    def failed(self) -> List[str]:
        return self._names(SetOutcome.FAILED)

    @property
    def not_reached(self) -> List[str]:
        return self._names(SetOutcome.NOT_REACHED)

    @property
    def documents_restored(self) -> int:
        return sum(
            result.document_count
            for result in self.per_set
            if result.outcome == SetOutcome.REPLACED
        )


@dataclass
class _RestoreRun:
    """Mutable bookkeeping for one restore in progress."""

    operation_id: str
    targets: List[Tuple[str, List[Document]]]
    skipped: List[SetResult] = field(default_factory=list)
    state: RestoreState = RestoreState.IDLE
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def enter(self, state: RestoreState) -> None:
        logger.info(
            "restore_state_changed",
            operation_id=self.operation_id,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state

    def finish(
        self,
        status: RestoreStatus,
        message: str,
        per_set: List[SetResult],
        atomic: bool,
        error: str | None = None,
    ) -> RestoreResult:
        self.enter(RestoreState(status.value))
        completed_at = datetime.now(UTC)
        return RestoreResult(
            operation_id=self.operation_id,
            status=status,
            message=message,
            per_set=self.skipped + per_set,
            atomic=atomic,
            started_at=self.started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - self.started_at).total_seconds(),
            error=error,
        )


def verify_confirmation(expected: str | None, supplied: str | None) -> None:
    """
    Check an operator-supplied restore confirmation.

    The comparison is constant-time. Neither value is logged.

    Args:
        expected: Configured restore secret
        supplied: Secret entered by the operator

    Raises:
        MissingConfirmation: If nothing was supplied
        UnauthorizedRestore: If the secret does not match, or none is configured
    """
    if not supplied:
        raise MissingConfirmation("Restore confirmation is required")

    if not expected:
        raise UnauthorizedRestore(explain_missing_restore_secret())

    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("restore_confirmation_rejected")
        raise UnauthorizedRestore("Invalid restore confirmation")


async def validate_restore(
    data: bytes,
    confirmation: str | None,
    expected_secret: str | None,
) -> BackupArtifact:
    """
    Validating phase: confirmation first, then artifact decoding.

    Nothing in the store is touched.

    Raises:
        UnauthorizedRestore: If the confirmation is missing or wrong
        InvalidArtifact: If the artifact cannot be decoded or is malformed
    """
    logger.info("restore_state_changed", to_state=RestoreState.VALIDATING.value)
    verify_confirmation(expected_secret, confirmation)
    return await decode_artifact(data)


async def _replace_atomic(
    driver: StoreDriver,
    run: _RestoreRun,
    progress: List[str],
) -> None:
    async with driver.atomic() as unit:
        for name, documents in run.targets:
            progress.append(name)
            await driver.replace_all_raw(name, documents, unit=unit)


async def _replace_sequential(
    driver: StoreDriver,
    run: _RestoreRun,
    replaced: List[str],
) -> None:
    """
    Replace each set in its own unit.

    Raises:
        PartialRestoreFailure: On the first set that fails
    """
    names = [name for name, _ in run.targets]

    for index, (name, documents) in enumerate(run.targets):
        try:
            await driver.replace_all_raw(name, documents)
        except Exception as e:
            raise PartialRestoreFailure(
                f"Record set {name} failed to restore: {e}",
                replaced=replaced,
                failed=name,
                not_reached=names[index + 1 :],
                details={"error_type": type(e).__name__},
            ) from e
        replaced.append(name)
        logger.info(
            "record_set_restored",
            operation_id=run.operation_id,
            record_set=name,
            count=len(documents),
        )


def _partial_result(
    run: _RestoreRun,
    replaced: List[str],
    failed: str | None,
    not_reached: List[str],
    reason: str,
) -> List[SetResult]:
    counts = {name: len(documents) for name, documents in run.targets}
    per_set = [
        SetResult(name=name, outcome=SetOutcome.REPLACED, document_count=counts[name])
        for name in replaced
    ]
    if failed is not None:
        per_set.append(
            SetResult(
                name=failed,
                outcome=SetOutcome.FAILED,
                document_count=counts[failed],
                reason=reason,
            )
        )
    per_set.extend(
        SetResult(name=name, outcome=SetOutcome.NOT_REACHED, document_count=counts[name])
        for name in not_reached
    )
    return per_set


async def restore_artifact(
    driver: StoreDriver,
    artifact: BackupArtifact,
    operation_id: str,
    *,
    timeout_seconds: float | None = None,
    lock_ttl_seconds: int = 3600,
) -> RestoreResult:
    """
    Replace the store's contents with an already validated artifact.

    Holds the maintenance lock from the start of replacement until a
    terminal state is reached.

    Args:
        driver: Store driver to restore into
        artifact: Validated artifact
        operation_id: Identifier of this restore (also the lock holder)
        timeout_seconds: Deadline for the whole replacement
        lock_ttl_seconds: Expiry of the maintenance lock

    Returns:
        RestoreResult with status committed, rolled_back or partially_applied

    Raises:
        RestoreInProgress: If another restore holds the lock
        RegistryUnavailable: If the registry cannot be queried
    """
    known = set(await list_set_names(driver))

    run = _RestoreRun(operation_id=operation_id, targets=[])
    for name, documents in artifact.record_sets.items():
        if name in known:
            run.targets.append((name, documents))
        else:
            run.skipped.append(
                SetResult(
                    name=name,
                    outcome=SetOutcome.SKIPPED,
                    document_count=len(documents),
                    reason=UNKNOWN_SET,
                )
            )
            logger.warning(
                "restore_set_skipped",
                operation_id=operation_id,
                record_set=name,
                reason=UNKNOWN_SET,
            )

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds if timeout_seconds is not None else None

    async with maintenance_lock(driver, operation_id, lock_ttl_seconds):
        run.enter(RestoreState.REPLACING)

        progress: List[str] = []
        try:
            async with asyncio.timeout_at(deadline):
                await _replace_atomic(driver, run, progress)

        except AtomicUnsupported:
            logger.warning("restore_atomic_unsupported", operation_id=operation_id)

        except TimeoutError:
            logger.error("restore_timed_out", operation_id=operation_id, atomic=True)
            return run.finish(
                RestoreStatus.ROLLED_BACK,
                "Restore timed out and was rolled back; no data was changed",
                _rolled_back_sets(run, progress, TIMED_OUT),
                atomic=True,
                error=TIMED_OUT,
            )

        except Exception as e:
            logger.error(
                "restore_rolled_back",
                operation_id=operation_id,
                record_set=progress[-1] if progress else None,
                error=str(e),
            )
            return run.finish(
                RestoreStatus.ROLLED_BACK,
                f"Restore failed and was rolled back; no data was changed: {e}",
                _rolled_back_sets(run, progress, str(e)),
                atomic=True,
                error=str(e),
            )

        else:
            logger.info(
                "restore_committed",
                operation_id=operation_id,
                record_sets=len(run.targets),
                skipped=len(run.skipped),
                atomic=True,
            )
            return run.finish(
                RestoreStatus.COMMITTED,
                "Restore completed successfully",
                _replaced_sets(run),
                atomic=True,
            )

        # Sequential fallback
        replaced: List[str] = []
        try:
            async with asyncio.timeout_at(deadline):
                await _replace_sequential(driver, run, replaced)

        except PartialRestoreFailure as e:
            cause = str(e.__cause__) if e.__cause__ else e.message
            logger.error(
                "restore_partially_applied",
                operation_id=operation_id,
                replaced=e.replaced,
                failed=e.failed,
                not_reached=e.not_reached,
                error=cause,
            )
            return run.finish(
                RestoreStatus.PARTIALLY_APPLIED,
                f"Restore partially applied: {e.message}. Manual intervention required.",
                _partial_result(run, e.replaced, e.failed, e.not_reached, cause),
                atomic=False,
                error=cause,
            )

        except TimeoutError:
            names = [name for name, _ in run.targets]
            interrupted = names[len(replaced)] if len(replaced) < len(names) else None
            not_reached = names[len(replaced) + 1 :]
            logger.error(
                "restore_partially_applied",
                operation_id=operation_id,
                replaced=replaced,
                failed=interrupted,
                not_reached=not_reached,
                error=TIMED_OUT,
            )
            return run.finish(
                RestoreStatus.PARTIALLY_APPLIED,
                "Restore timed out after some record sets were replaced. "
                "Manual intervention required.",
                _partial_result(run, list(replaced), interrupted, not_reached, TIMED_OUT),
                atomic=False,
                error=TIMED_OUT,
            )

        logger.info(
            "restore_committed",
            operation_id=operation_id,
            record_sets=len(run.targets),
            skipped=len(run.skipped),
            atomic=False,
        )
        return run.finish(
            RestoreStatus.COMMITTED,
            "Restore completed successfully (without a transaction)",
            _replaced_sets(run),
            atomic=False,
        )


def _replaced_sets(run: _RestoreRun) -> List[SetResult]:
    return [
        SetResult(name=name, outcome=SetOutcome.REPLACED, document_count=len(documents))
        for name, documents in run.targets
    ]


def _rolled_back_sets(
    run: _RestoreRun,
    progress: List[str],
    reason: str,
) -> List[SetResult]:
    """Per-set view of a reverted atomic unit; the last set touched is the one that failed."""
    failed = progress[-1] if progress else None
    per_set: List[SetResult] = []
    for name, documents in run.targets:
        if name == failed:
            outcome = SetOutcome.FAILED
        elif name in progress:
            outcome = SetOutcome.ROLLED_BACK
        else:
            outcome = SetOutcome.NOT_REACHED
        per_set.append(
            SetResult(
                name=name,
                outcome=outcome,
                document_count=len(documents),
                reason=reason if outcome == SetOutcome.FAILED else None,
            )
        )
    return per_set
