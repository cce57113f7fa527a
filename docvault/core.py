# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Core - Backup and restore orchestration.

This module wires the components together:

    backup:  snapshot -> encode -> plan delivery -> deliver
    restore: validate -> lock -> replace -> result

Both operations are recorded in the run history.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, TypedDict

import aiosqlite
import structlog

from docvault.config import BackupConfig, BackupTrigger
from docvault.errors import explain_missing_smtp_host
from docvault.exceptions import ConfigurationError, DeliveryFailure, NotificationError

logger = structlog.get_logger()


@dataclass
class BackupResult:
    """Result of a backup run."""

    operation_id: str  # ULID
    trigger: str
    size_bytes: int
    delivery_mode: str
    collection_names: List[str]
    collection_stats: List[Dict[str, Any]]
    filename: str
    compressed: bool
    generated_at: datetime
    duration_seconds: float
    download_url: str | None = None
    blob_location: str | None = None
    documents: int = 0


class EngineState(TypedDict):
    """Runtime state for backup and restore operations."""

    driver: Any  # StoreDriver
    channel: Any  # NotificationChannel or None
    blob_store: Any  # BlobStore
    history_db_path: Path
    owns_channel: bool
    last_backup_at: datetime | None
    last_backup_status: str | None
    last_backup_size: int | None
    last_backup_collections: int | None
    last_backup_error: str | None
    total_backups: int
    total_restores: int


async def initialize_engine_state(
    config: BackupConfig,
    driver: Any = None,
    channel: Any = None,
    blob_store: Any = None,
) -> EngineState:
    """
    Initialize runtime state for backup and restore.

    Collaborators not passed in are built from the configuration: the
    SQLite store driver, an SMTP channel when smtp_host is set, and an S3
    or local blob store.

    Args:
        config: DocVault configuration
        driver: Store driver to use instead of the SQLite driver
        channel: Notification channel to use instead of SMTP
        blob_store: Blob store to use instead of the configured one

    Returns:
        Initialized EngineState dictionary
    """
    from docvault.delivery import LocalBlobStore, S3BlobStore, SMTPNotificationChannel
    from docvault.history import init_history_db
    from docvault.store import SQLiteStoreDriver

    if driver is None:
        driver = SQLiteStoreDriver(
            config.database_path,
            timeout=config.store_timeout_seconds,
        )
        await driver.initialize()

    owns_channel = False
    if channel is None and config.smtp_host:
        channel = SMTPNotificationChannel(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            sender=config.smtp_from,
            starttls=config.smtp_starttls,
            timeout=config.smtp_timeout_seconds,
        )
        owns_channel = True

    if blob_store is None:
        if config.uses_s3:
            blob_store = S3BlobStore(
                bucket=config.backup_bucket,
                region=config.region,
                key_prefix=config.backup_key_prefix,
                url_expiry_seconds=config.presigned_url_expiry_seconds,
                connect_timeout=config.s3_connect_timeout_seconds,
                read_timeout=config.s3_read_timeout_seconds,
            )
        else:
            blob_store = LocalBlobStore(
                root=config.backup_storage_path,
                public_base_url=config.public_base_url,
                route=config.public_backup_route,
            )

    await init_history_db(config.history_db_path)

    logger.info(
        "engine_initialized",
        notification_channel=type(channel).__name__ if channel else None,
        blob_store=type(blob_store).__name__,
    )

    return EngineState(
        driver=driver,
        channel=channel,
        blob_store=blob_store,
        history_db_path=config.history_db_path,
        owns_channel=owns_channel,
        last_backup_at=None,
        last_backup_status=None,
        last_backup_size=None,
        last_backup_collections=None,
        last_backup_error=None,
        total_backups=0,
        total_restores=0,
    )


async def shutdown_engine_state(state: EngineState) -> None:
    """Close collaborators owned by the engine."""
    if state["owns_channel"] and state["channel"] is not None:
        await state["channel"].close()
    logger.info("engine_shutdown")


def require_delivery_configured(config: BackupConfig, state: EngineState) -> None:
    """Raise ConfigurationError unless backups have somewhere to go."""
    errors = []
    if not config.operator_address:
        errors.append("operator_address is not configured")
    if state["channel"] is None:
        errors.append(explain_missing_smtp_host())
    if errors:
        raise ConfigurationError(
            "Backups cannot be delivered",
            details={"errors": errors},
        )


async def run_backup(
    config: BackupConfig,
    state: EngineState,
    trigger: BackupTrigger = BackupTrigger.MANUAL,
    *,
    timeout_seconds: float | None = None,
    operation_id: str | None = None,
) -> BackupResult:
    """
    Run a full backup and deliver it to the operator.

    Args:
        config: DocVault configuration
        state: Runtime state
        trigger: What started the run
        timeout_seconds: Deadline for the whole run
        operation_id: Pre-assigned run ID (background runs hand one out early)

    Returns:
        BackupResult with operation details

    Raises:
        ConfigurationError: If there is no operator or notification channel
        RestoreInProgress: If a restore holds the maintenance lock
        RegistryUnavailable: If record sets cannot be listed
        SnapshotReadFailure: If any record set fails to read
        DeliveryFailure: If the artifact could not be handed over, including
            a deadline passing after it was stored
        TimeoutError: If the deadline passed before anything was stored
    """
    from ulid import ULID

    from docvault.codec import encode_artifact
    from docvault.delivery import deliver, plan_delivery
    from docvault.delivery.blobstore import StoredBlob
    from docvault.delivery.messages import BACKUP_SUBJECT, MANUAL_BACKUP_SUBJECT
    from docvault.history import RunKind, RunStatus, complete_run, record_run_started
    from docvault.lock import ensure_no_restore_running
    from docvault.snapshot import build_snapshot

    require_delivery_configured(config, state)

    operation_id = operation_id or str(ULID())
    start_time = datetime.now(UTC)

    logger.info("backup_started", operation_id=operation_id, trigger=trigger.value)

    stored_blobs: List[StoredBlob] = []

    async with aiosqlite.connect(state["history_db_path"]) as history_db:
        await record_run_started(history_db, operation_id, RunKind.BACKUP, trigger.value)

        try:
            async with asyncio.timeout(timeout_seconds):
                await ensure_no_restore_running(state["driver"])

                artifact = await build_snapshot(state["driver"], config.environment)

                encoded = await encode_artifact(
                    artifact,
                    compression_threshold_bytes=config.compression_threshold_bytes,
                    level=config.zstd_level,
                    filename_prefix=config.filename_prefix,
                )

                plan = plan_delivery(encoded, config.max_attachment_bytes)

                receipt = await deliver(
                    plan,
                    channel=state["channel"],
                    blob_store=state["blob_store"],
                    operator_address=config.operator_address,
                    generated_at=artifact.generated_at,
                    collection_stats=artifact.collection_stats(),
                    subject=(
                        BACKUP_SUBJECT
                        if trigger == BackupTrigger.SCHEDULED
                        else MANUAL_BACKUP_SUBJECT
                    ),
                    on_stored=stored_blobs.append,
                )

        except Exception as e:
            failure = e
            if isinstance(e, TimeoutError) and stored_blobs:
                # The deadline hit while notifying; the artifact is already stored
                failure = DeliveryFailure(
                    "Backup created but the operator was not notified before the deadline",
                    details={"timed_out": True},
                    blob_location=stored_blobs[-1].location,
                    download_url=stored_blobs[-1].url,
                )

            error = "Backup timed out" if isinstance(failure, TimeoutError) else str(failure)
            details: Dict[str, Any] = {"error_type": type(failure).__name__}
            if isinstance(failure, DeliveryFailure) and failure.blob_location:
                details["blob_location"] = failure.blob_location
                details["download_url"] = failure.download_url

            await complete_run(
                history_db,
                operation_id,
                RunStatus.FAILED,
                details=details,
                error=error,
            )
            state["last_backup_at"] = datetime.now(UTC)
            state["last_backup_status"] = RunStatus.FAILED.value
            state["last_backup_error"] = error

            logger.error(
                "backup_failed",
                operation_id=operation_id,
                trigger=trigger.value,
                error=error,
            )
            if failure is e:
                raise
            raise failure from e

        duration = (datetime.now(UTC) - start_time).total_seconds()

        result = BackupResult(
            operation_id=operation_id,
            trigger=trigger.value,
            size_bytes=receipt.size_bytes,
            delivery_mode=receipt.mode.value,
            collection_names=artifact.set_names,
            collection_stats=artifact.collection_stats(),
            filename=receipt.filename,
            compressed=encoded.compressed,
            generated_at=artifact.generated_at,
            duration_seconds=duration,
            download_url=receipt.download_url,
            blob_location=receipt.blob_location,
            documents=artifact.document_count,
        )

        await complete_run(
            history_db,
            operation_id,
            RunStatus.SUCCEEDED,
            size_bytes=result.size_bytes,
            set_count=len(result.collection_names),
            details={
                "filename": result.filename,
                "delivery_mode": result.delivery_mode,
                "compressed": result.compressed,
                "collection_stats": result.collection_stats,
                "blob_location": result.blob_location,
            },
        )

    # Update state
    state["last_backup_at"] = datetime.now(UTC)
    state["last_backup_status"] = RunStatus.SUCCEEDED.value
    state["last_backup_size"] = result.size_bytes
    state["last_backup_collections"] = len(result.collection_names)
    state["last_backup_error"] = None
    state["total_backups"] += 1

    logger.info(
        "backup_completed",
        operation_id=operation_id,
        size_bytes=result.size_bytes,
        delivery_mode=result.delivery_mode,
        record_sets=len(result.collection_names),
        duration=duration,
    )

    return result


async def send_failure_notice(
    config: BackupConfig,
    state: EngineState,
    error: str,
) -> bool:
    """
    Tell the operator a backup failed.

    A failure of the notice itself is logged, not raised.

    Returns:
        True if the notice was sent
    """
    from docvault.delivery import Notification
    from docvault.delivery.messages import FAILURE_SUBJECT, render_failure_html

    if state["channel"] is None or not config.operator_address:
        logger.warning("failure_notice_skipped", reason="no_channel_or_operator")
        return False

    try:
        await state["channel"].send(
            Notification(
                to=config.operator_address,
                subject=FAILURE_SUBJECT,
                html=render_failure_html(datetime.now(UTC), error),
                text=f"The backup failed: {error}",
            )
        )
    except NotificationError as e:
        logger.error("failure_notice_failed", error=str(e))
        return False

    return True


async def run_backup_with_failure_notice(
    config: BackupConfig,
    state: EngineState,
    trigger: BackupTrigger,
    *,
    operation_id: str | None = None,
    timeout_seconds: float | None = None,
) -> BackupResult | None:
    """
    Run a backup nobody is waiting on.

    The outcome reaches the operator through the notification channel: the
    backup itself on success, a failure notice otherwise.

    Returns:
        BackupResult, or None if the backup failed
    """
    from docvault.exceptions import DocVaultError

    try:
        return await run_backup(
            config,
            state,
            trigger,
            timeout_seconds=timeout_seconds,
            operation_id=operation_id,
        )
    except Exception as e:
        if isinstance(e, DocVaultError):
            error = e.message
        elif isinstance(e, TimeoutError):
            error = "Backup timed out"
        else:
            # Store, history or I/O errors outside the DocVault hierarchy
            logger.error(
                "backup_unexpected_error",
                trigger=trigger.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            error = f"{type(e).__name__}: {e}"
        if isinstance(e, DeliveryFailure) and e.download_url:
            error = f"{error} (backup file: {e.download_url})"
        await send_failure_notice(config, state, error)
        return None


async def run_restore(
    config: BackupConfig,
    state: EngineState,
    data: bytes,
    confirmation: str | None,
    *,
    timeout_seconds: float | None = None,
) -> Any:
    """
    Replace the store's contents from an artifact.

    Args:
        config: DocVault configuration
        state: Runtime state
        data: Raw artifact bytes (JSON, zstd or gzip)
        confirmation: Operator-supplied restore secret
        timeout_seconds: Deadline for the replacement phase

    Returns:
        RestoreResult with status committed, rolled_back or partially_applied

    Raises:
        UnauthorizedRestore: If the confirmation is missing or wrong
        InvalidArtifact: If the artifact is malformed
        RestoreInProgress: If another restore holds the maintenance lock
    """
    from ulid import ULID

    from docvault.history import RunKind, RunStatus, complete_run, record_run_started
    from docvault.restore import restore_artifact, validate_restore

    operation_id = str(ULID())

    logger.info("restore_requested", operation_id=operation_id, size_bytes=len(data))

    async with aiosqlite.connect(state["history_db_path"]) as history_db:
        await record_run_started(history_db, operation_id, RunKind.RESTORE, "manual")

        try:
            artifact = await validate_restore(data, confirmation, config.restore_secret)
            result = await restore_artifact(
                state["driver"],
                artifact,
                operation_id,
                timeout_seconds=timeout_seconds,
                lock_ttl_seconds=config.lock_ttl_seconds,
            )
        except Exception as e:
            await complete_run(
                history_db,
                operation_id,
                RunStatus.FAILED,
                details={"error_type": type(e).__name__},
                error=str(e),
            )
            raise

        await complete_run(
            history_db,
            operation_id,
            RunStatus(result.status.value),
            set_count=len(result.replaced),
            details={
                "atomic": result.atomic,
                "per_set": [
                    {
                        "name": r.name,
                        "outcome": r.outcome.value,
                        "document_count": r.document_count,
                        "reason": r.reason,
                    }
                    for r in result.per_set
                ],
                "artifact_generated_at": artifact.generated_at.isoformat(),
            },
            error=result.error,
        )

    state["total_restores"] += 1

    logger.info(
        "restore_finished",
        operation_id=operation_id,
        status=result.status.value,
        replaced=len(result.replaced),
        skipped=len(result.skipped),
        duration=result.duration_seconds,
    )

    return result


async def run_report(config: BackupConfig, state: EngineState) -> Dict[str, Any]:
    """
    Build the summary report and email it to the operator.

    Returns:
        Dict with operation_id, filename and per-set stats
    """
    from ulid import ULID

    from docvault.history import RunKind, RunStatus, complete_run, record_run_started
    from docvault.report import build_backup_report, send_backup_report

    require_delivery_configured(config, state)

    operation_id = str(ULID())

    async with aiosqlite.connect(state["history_db_path"]) as history_db:
        await record_run_started(history_db, operation_id, RunKind.REPORT, "manual")

        try:
            report = await build_backup_report(
                state["driver"], sample_size=config.report_sample_size
            )
            filename = await send_backup_report(
                report,
                state["channel"],
                config.operator_address,
                filename_prefix=config.filename_prefix,
            )
        except Exception as e:
            await complete_run(history_db, operation_id, RunStatus.FAILED, error=str(e))
            logger.error("backup_report_failed", operation_id=operation_id, error=str(e))
            raise

        await complete_run(
            history_db,
            operation_id,
            RunStatus.SUCCEEDED,
            set_count=len(report["stats"]),
            details={"filename": filename, "stats": report["stats"]},
        )

    return {
        "operation_id": operation_id,
        "filename": filename,
        "stats": report["stats"],
    }


@dataclass
class EngineStatus:
    """Snapshot of engine activity for the admin status endpoint."""

    last_backup_at: datetime | None
    last_backup_status: str | None
    last_backup_size: int | None
    last_backup_collections: int | None
    last_backup_error: str | None
    total_backups: int
    total_restores: int
    restore_in_progress: bool
    last_successful_backup: Dict[str, Any] | None = None
    config: Dict[str, Any] = field(default_factory=dict)


async def get_engine_status(config: BackupConfig, state: EngineState) -> EngineStatus:
    from docvault.history import RunKind, last_successful_run
    from docvault.lock import MAINTENANCE_LOCK_NAME

    async with aiosqlite.connect(state["history_db_path"]) as history_db:
        last_success = await last_successful_run(history_db, RunKind.BACKUP)

    holder = await state["driver"].lock_holder(MAINTENANCE_LOCK_NAME)

    return EngineStatus(
        last_backup_at=state["last_backup_at"],
        last_backup_status=state["last_backup_status"],
        last_backup_size=state["last_backup_size"],
        last_backup_collections=state["last_backup_collections"],
        last_backup_error=state["last_backup_error"],
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        restore_in_progress=holder is not None,
        last_successful_backup=dict(last_success) if last_success else None,
        config=config.redacted(),
    )
