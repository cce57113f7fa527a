# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault FastAPI Integration - Admin endpoints for backup and restore.

This module provides:
- Lifespan management (startup/shutdown)
- Protected admin endpoints
- Scheduled automatic backups
"""

import hmac
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, NoReturn

import aiosqlite
import structlog
from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    UploadFile,
)
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from docvault.config import BackupConfig, BackupTrigger
from docvault.core import (
    BackupResult,
    EngineState,
    get_engine_status,
    initialize_engine_state,
    require_delivery_configured,
    run_backup,
    run_backup_with_failure_notice,
    run_report,
    run_restore,
    shutdown_engine_state,
)
from docvault.exceptions import (
    DeliveryFailure,
    DocVaultError,
    InvalidArtifact,
    MissingConfirmation,
    RestoreInProgress,
    UnauthorizedRestore,
)
from docvault.history import list_runs
from docvault.lock import ensure_no_restore_running
from docvault.restore import RestoreResult, RestoreStatus
from docvault.scheduler import setup_autobackup, shutdown_autobackup

logger = structlog.get_logger()

API_KEY_ENV = "DOCVAULT_ADMIN_API_KEY"

# Security
security = HTTPBearer(auto_error=False)

# HTTP status for each terminal restore status
RESTORE_STATUS_CODES = {
    RestoreStatus.COMMITTED: 200,
    RestoreStatus.PARTIALLY_APPLIED: 207,
    RestoreStatus.ROLLED_BACK: 500,
}


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the DOCVAULT_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv(API_KEY_ENV)

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail=f"{API_KEY_ENV} environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if not hmac.compare_digest(credentials.credentials.encode(), api_key.encode()):
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def _error_body(error: DocVaultError) -> Dict[str, Any]:
    return {"message": error.message, "details": error.details}


def _raise_http(error: Exception) -> NoReturn:
    """Map an engine error to an HTTP error."""
    if isinstance(error, MissingConfirmation):
        raise HTTPException(status_code=400, detail=_error_body(error))
    if isinstance(error, UnauthorizedRestore):
        raise HTTPException(status_code=401, detail=_error_body(error))
    if isinstance(error, InvalidArtifact):
        raise HTTPException(status_code=400, detail=_error_body(error))
    if isinstance(error, RestoreInProgress):
        raise HTTPException(status_code=409, detail=_error_body(error))
    if isinstance(error, TimeoutError):
        raise HTTPException(status_code=504, detail={"message": "Operation timed out"})
    if isinstance(error, DocVaultError):
        raise HTTPException(status_code=500, detail=_error_body(error))
    raise error


def backup_response(result: BackupResult) -> Dict[str, Any]:
    return {
        "operationId": result.operation_id,
        "sizeBytes": result.size_bytes,
        "deliveryMode": result.delivery_mode,
        "collectionNames": result.collection_names,
        "filename": result.filename,
        "compressed": result.compressed,
        "downloadUrl": result.download_url,
    }


def restore_response(result: RestoreResult) -> Dict[str, Any]:
    return {
        "operationId": result.operation_id,
        "status": result.status.value,
        "message": result.message,
        "atomic": result.atomic,
        "perSetResult": [
            {
                "name": r.name,
                "outcome": r.outcome.value,
                "documentCount": r.document_count,
                "reason": r.reason,
            }
            for r in result.per_set
        ],
        "replaced": result.replaced,
        "skipped": result.skipped,
        "failed": result.failed,
        "notReached": result.not_reached,
        "error": result.error,
    }


def register_docvault_routes(
    app: FastAPI,
    config: BackupConfig,
    state: EngineState,
    prefix: str = "/admin/backup",
) -> None:
    """
    Register DocVault admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: DocVault configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/backup)
    """

    @app.post(f"{prefix}/run", dependencies=[Depends(verify_api_key)])
    async def trigger_backup(
        background_tasks: BackgroundTasks,
        background: bool = False,
    ) -> Any:
        """
        Run a full backup and deliver it to the operator.

        With background=true the request is acknowledged immediately and
        the outcome arrives by e-mail.
        """
        if background:
            from ulid import ULID

            try:
                require_delivery_configured(config, state)
                await ensure_no_restore_running(state["driver"])
            except DocVaultError as e:
                _raise_http(e)

            operation_id = str(ULID())
            background_tasks.add_task(
                run_backup_with_failure_notice,
                config,
                state,
                BackupTrigger.BACKGROUND,
                operation_id=operation_id,
                timeout_seconds=config.backup_timeout_seconds,
            )
            logger.info("backup_accepted", operation_id=operation_id)
            return JSONResponse(
                status_code=202,
                content={"status": "accepted", "operation_id": operation_id},
            )

        try:
            result = await run_backup(
                config,
                state,
                BackupTrigger.MANUAL,
                timeout_seconds=config.backup_timeout_seconds,
            )
        except DeliveryFailure as e:
            # The artifact may still be retrievable from the blob store
            raise HTTPException(
                status_code=500,
                detail={**_error_body(e), "downloadUrl": e.download_url},
            )
        except (DocVaultError, TimeoutError) as e:
            _raise_http(e)

        return backup_response(result)

    @app.post(f"{prefix}/restore", dependencies=[Depends(verify_api_key)])
    async def restore_backup(
        backup: UploadFile | None = File(None),
        password: str | None = Form(None),
    ) -> JSONResponse:
        """
        Replace all data with the contents of an uploaded backup.

        Requires the restore confirmation in the password field.
        """
        if backup is None:
            raise HTTPException(
                status_code=400,
                detail={"message": "No backup file uploaded"},
            )

        data = await backup.read()

        try:
            result = await run_restore(
                config,
                state,
                data,
                password,
                timeout_seconds=config.restore_timeout_seconds,
            )
        except (DocVaultError, TimeoutError) as e:
            _raise_http(e)

        return JSONResponse(
            status_code=RESTORE_STATUS_CODES[result.status],
            content=restore_response(result),
        )

    @app.post(f"{prefix}/report", dependencies=[Depends(verify_api_key)])
    async def send_report() -> dict:
        """
        E-mail a summary report (counts and recent documents, no secrets).
        """
        try:
            return await run_report(config, state)
        except DocVaultError as e:
            _raise_http(e)

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Get last backup information and the configuration summary.
        """
        status = await get_engine_status(config, state)
        return asdict(status)

    @app.get(f"{prefix}/runs", dependencies=[Depends(verify_api_key)])
    async def list_backup_runs(
        limit: int = 50,
        offset: int = 0,
        kind: str | None = None,
    ) -> list:
        """
        List backup, restore and report runs with pagination.

        Args:
            limit: Maximum number of runs to return
            offset: Number of runs to skip
            kind: Filter by kind (backup, restore, report)
        """
        async with aiosqlite.connect(state["history_db_path"]) as history_db:
            return await list_runs(history_db, limit, offset, kind)


@asynccontextmanager
async def docvault_lifespan(
    app: FastAPI,
    config: BackupConfig,
    prefix: str = "/admin/backup",
    **collaborators: Any,
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: docvault_lifespan(app, config))

    Args:
        app: FastAPI application
        config: DocVault configuration
        prefix: URL prefix for admin endpoints
        collaborators: driver, channel or blob_store overrides
    """
    logger.info("docvault_lifespan_starting", environment=config.environment)

    # Initialize
    state = await initialize_engine_state(config, **collaborators)
    app.state.docvault_state = state
    app.state.docvault_config = config

    # Register routes
    register_docvault_routes(app, config, state, prefix)

    # Setup scheduler
    scheduler = setup_autobackup(config, state)

    logger.info("docvault_lifespan_started")

    try:
        yield
    finally:
        # Cleanup
        logger.info("docvault_lifespan_stopping")
        shutdown_autobackup(scheduler)
        await shutdown_engine_state(state)
        logger.info("docvault_lifespan_stopped")


def setup_docvault_plugin(
    app: FastAPI,
    config: BackupConfig,
    prefix: str = "/admin/backup",
) -> None:
    """
    Set up DocVault on an existing FastAPI app.

    Wraps the app's own lifespan so DocVault starts before it and stops
    after it.

    Args:
        app: FastAPI application
        config: DocVault configuration
        prefix: URL prefix for admin endpoints
    """
    app.state.docvault_config = config
    app.state.docvault_state = None

    app_lifespan = app.router.lifespan_context

    @asynccontextmanager
    async def lifespan(app_: FastAPI):
        async with docvault_lifespan(app_, config, prefix):
            async with app_lifespan(app_) as app_state:
                yield app_state

    app.router.lifespan_context = lifespan


def get_docvault_state(app: FastAPI) -> EngineState:
    """
    Get DocVault state from a FastAPI app.

    Raises:
        RuntimeError: If DocVault is not initialized
    """
    state = getattr(app.state, "docvault_state", None)
    if not state:
        raise RuntimeError("DocVault not initialized. Call setup_docvault_plugin first.")
    return state


def get_docvault_config(app: FastAPI) -> BackupConfig:
    config = getattr(app.state, "docvault_config", None)
    if not config:
        raise RuntimeError("DocVault not initialized. Call setup_docvault_plugin first.")
    return config
