# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

create_config_from_env() is a thin wrapper around create_config() that
reads the well-known environment variables of the backup engine.
"""

from __future__ import annotations

import os
from pathlib import Path

from docvault.builder import create_config
from docvault.config import (
    BackupConfig,
    DEFAULT_COMPRESSION_THRESHOLD_BYTES,
    DEFAULT_MAX_ATTACHMENT_BYTES,
)
from docvault.errors import (
    explain_invalid_byte_size_env,
    explain_invalid_interval_days_env,
    explain_invalid_smtp_port_env,
    explain_invalid_timeout_env,
    explain_missing_operator_address,
)
from docvault.exceptions import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _first_env(*names: str) -> str | None:
    """Return the first non-empty value among several variable names."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _parse_byte_size(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        size = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_byte_size_env(name, value)) from exc
    if size < 1:
        raise ConfigurationError(explain_invalid_byte_size_env(name, value))
    return size


def _parse_interval_days(value: str | None) -> int:
    if not value:
        return 7
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_interval_days_env(value)) from exc
    if days < 1:
        raise ConfigurationError(explain_invalid_interval_days_env(value))
    return days


def _parse_port(value: str | None) -> int:
    if not value:
        return 587
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_smtp_port_env(value)) from exc
    if not 1 <= port <= 65535:
        raise ConfigurationError(explain_invalid_smtp_port_env(value))
    return port


def _parse_timeout(name: str, value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_timeout_env(name, value)) from exc
    if not seconds > 0:
        raise ConfigurationError(explain_invalid_timeout_env(name, value))
    return seconds


def _parse_bool(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in _TRUE_VALUES


def create_config_from_env(*, require_operator: bool = True) -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required:
        - DOCVAULT_OPERATOR_ADDRESS (or ADMIN_EMAIL): where backups are sent

    Optional environment variables:
        - DOCVAULT_DATABASE_PATH: SQLite store file (default: ./docvault.db)
        - DOCVAULT_HISTORY_DB_PATH: run history file (default: ./docvault_history.db)
        - DOCVAULT_MAX_ATTACHMENT_BYTES (or BACKUP_MAX_ATTACHMENT_BYTES):
          inline-vs-link threshold (default: 25 MiB)
        - DOCVAULT_COMPRESSION_THRESHOLD_BYTES: compression threshold (default: 5 MiB)
        - DOCVAULT_BACKUP_STORAGE_PATH: local directory for large artifacts
        - DOCVAULT_PUBLIC_BASE_URL: base URL the storage directory is served under
        - DOCVAULT_BACKUP_BUCKET / AWS_REGION: store large artifacts in S3 instead
        - DOCVAULT_RESTORE_SECRET: confirmation secret for restores
        - SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM: mail transport
        - ENABLE_AUTOBACKUP ('true' to enable), AUTOBACKUP_TIME (interval in days)
        - DOCVAULT_ENVIRONMENT (or NODE_ENV): recorded inside artifacts
        - DOCVAULT_BACKUP_TIMEOUT_SECONDS, DOCVAULT_RESTORE_TIMEOUT_SECONDS:
          deadlines for admin-triggered runs (default: none)

    Args:
        require_operator: Raise when no operator address is set
    """

    operator_address = _first_env("DOCVAULT_OPERATOR_ADDRESS", "ADMIN_EMAIL")
    if require_operator and not operator_address:
        raise ConfigurationError(explain_missing_operator_address())

    max_attachment_bytes = _parse_byte_size(
        "DOCVAULT_MAX_ATTACHMENT_BYTES",
        _first_env("DOCVAULT_MAX_ATTACHMENT_BYTES", "BACKUP_MAX_ATTACHMENT_BYTES"),
        DEFAULT_MAX_ATTACHMENT_BYTES,
    )
    compression_threshold_bytes = _parse_byte_size(
        "DOCVAULT_COMPRESSION_THRESHOLD_BYTES",
        os.getenv("DOCVAULT_COMPRESSION_THRESHOLD_BYTES"),
        DEFAULT_COMPRESSION_THRESHOLD_BYTES,
    )

    database_path = Path(os.getenv("DOCVAULT_DATABASE_PATH", "./docvault.db"))
    history_db_path = Path(
        os.getenv("DOCVAULT_HISTORY_DB_PATH", "./docvault_history.db")
    )
    storage_path = Path(os.getenv("DOCVAULT_BACKUP_STORAGE_PATH", "./backups"))

    smtp_user = os.getenv("SMTP_USER")

    autobackup_enabled = _parse_bool(os.getenv("ENABLE_AUTOBACKUP"))
    interval_days = _parse_interval_days(os.getenv("AUTOBACKUP_TIME"))

    return create_config(
        operator_address=operator_address,
        database_path=database_path,
        max_attachment_bytes=max_attachment_bytes,
        compression_threshold_bytes=compression_threshold_bytes,
        backup_storage_path=storage_path,
        public_base_url=os.getenv("DOCVAULT_PUBLIC_BASE_URL"),
        backup_bucket=os.getenv("DOCVAULT_BACKUP_BUCKET"),
        region=os.getenv("AWS_REGION"),
        restore_secret=os.getenv("DOCVAULT_RESTORE_SECRET"),
        autobackup_interval_days=interval_days if autobackup_enabled else None,
        history_db_path=history_db_path,
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=_parse_port(os.getenv("SMTP_PORT")),
        smtp_user=smtp_user,
        smtp_password=os.getenv("SMTP_PASS"),
        smtp_from=os.getenv("SMTP_FROM"),
        environment=_first_env("DOCVAULT_ENVIRONMENT", "NODE_ENV") or "development",
        backup_timeout_seconds=_parse_timeout(
            "DOCVAULT_BACKUP_TIMEOUT_SECONDS",
            os.getenv("DOCVAULT_BACKUP_TIMEOUT_SECONDS"),
        ),
        restore_timeout_seconds=_parse_timeout(
            "DOCVAULT_RESTORE_TIMEOUT_SECONDS",
            os.getenv("DOCVAULT_RESTORE_TIMEOUT_SECONDS"),
        ),
    )
