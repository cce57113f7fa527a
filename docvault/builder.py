# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Builder - Functional builder pattern for configuration.

This module provides pure functions for building BackupConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from docvault.config import (
    BackupConfig,
    DEFAULT_COMPRESSION_THRESHOLD_BYTES,
    DEFAULT_MAX_ATTACHMENT_BYTES,
    MAX_PRESIGNED_EXPIRY_SECONDS,
)


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "database_path": Path("./docvault.db"),
        "history_db_path": Path("./docvault_history.db"),
        "operator_address": None,
        "max_attachment_bytes": DEFAULT_MAX_ATTACHMENT_BYTES,
        "compression_threshold_bytes": DEFAULT_COMPRESSION_THRESHOLD_BYTES,
        "zstd_level": 10,
        "backup_storage_path": Path("./backups"),
        "public_base_url": "http://localhost:8000",
        "public_backup_route": "/uploads/backups",
        "backup_bucket": None,
        "region": "us-east-1",
        "backup_key_prefix": "backups/",
        "presigned_url_expiry_seconds": MAX_PRESIGNED_EXPIRY_SECONDS,
        "restore_secret": None,
        "smtp_host": None,
        "smtp_port": 587,
        "smtp_user": None,
        "smtp_password": None,
        "smtp_from": None,
        "smtp_starttls": True,
        "smtp_timeout_seconds": 30.0,
        "autobackup_enabled": False,
        "autobackup_interval_days": 7,
        "environment": "development",
        "filename_prefix": "docvault",
        "lock_ttl_seconds": 3600,
        "store_timeout_seconds": 30.0,
        "s3_connect_timeout_seconds": 10.0,
        "s3_read_timeout_seconds": 60.0,
        "report_sample_size": 100,
        "backup_timeout_seconds": None,
        "restore_timeout_seconds": None,
    }


def with_database(config: ConfigDict, database_path: Path | str) -> ConfigDict:
    """
    Set the SQLite file holding the record sets.

    Args:
        config: Current configuration dictionary
        database_path: Path to the store database

    Returns:
        New configuration dictionary with database path set
    """
    return {**config, "database_path": Path(database_path)}


def with_history_db(config: ConfigDict, history_db_path: Path | str) -> ConfigDict:
    """Set the SQLite file holding the run history."""
    return {**config, "history_db_path": Path(history_db_path)}


def with_operator_address(config: ConfigDict, address: str) -> ConfigDict:
    """
    Set the operator address that receives backups.

    Args:
        config: Current configuration dictionary
        address: E-mail address of the operator

    Returns:
        New configuration dictionary with operator address set
    """
    return {**config, "operator_address": address}


def with_attachment_limit(config: ConfigDict, max_bytes: int) -> ConfigDict:
    """
    Set the largest artifact that is still sent as an attachment.

    Larger artifacts are written to the blob store and sent as a link.

    Args:
        config: Current configuration dictionary
        max_bytes: Attachment ceiling in bytes

    Returns:
        New configuration dictionary with the limit set
    """
    if max_bytes < 1:
        raise ValueError(f"max_attachment_bytes must be >= 1, got {max_bytes}")
    return {**config, "max_attachment_bytes": max_bytes}


def with_compression_threshold(config: ConfigDict, threshold_bytes: int) -> ConfigDict:
    """
    Set the encoded size above which artifacts are compressed.

    Args:
        config: Current configuration dictionary
        threshold_bytes: Compression threshold in bytes

    Returns:
        New configuration dictionary with the threshold set
    """
    if threshold_bytes < 0:
        raise ValueError(
            f"compression_threshold_bytes must be >= 0, got {threshold_bytes}"
        )
    return {**config, "compression_threshold_bytes": threshold_bytes}


def with_storage_path(
    config: ConfigDict,
    storage_path: Path | str,
    public_base_url: str | None = None,
) -> ConfigDict:
    """
    Store link-delivered artifacts on local disk.

    Args:
        config: Current configuration dictionary
        storage_path: Directory the artifacts are written to
        public_base_url: Base URL the directory is served under

    Returns:
        New configuration dictionary with local storage configured
    """
    updated = {**config, "backup_storage_path": Path(storage_path)}
    if public_base_url:
        updated["public_base_url"] = public_base_url.rstrip("/")
    return updated


def with_s3_bucket(
    config: ConfigDict,
    bucket: str,
    region: str | None = None,
    key_prefix: str | None = None,
) -> ConfigDict:
    """
    Store link-delivered artifacts in S3 and hand out presigned URLs.

    Args:
        config: Current configuration dictionary
        bucket: S3 bucket name
        region: AWS region of the bucket
        key_prefix: Key prefix for artifacts (default: 'backups/')

    Returns:
        New configuration dictionary with S3 storage configured
    """
    updated = {**config, "backup_bucket": bucket}
    if region:
        updated["region"] = region
    if key_prefix is not None:
        updated["backup_key_prefix"] = key_prefix
    return updated


def with_smtp(
    config: ConfigDict,
    host: str,
    port: int = 587,
    user: str | None = None,
    password: str | None = None,
    sender: str | None = None,
    starttls: bool = True,
) -> ConfigDict:
    """
    Configure the SMTP notification channel.

    Args:
        config: Current configuration dictionary
        host: SMTP server host
        port: SMTP server port
        user: Login user (optional)
        password: Login password (optional)
        sender: From address (defaults to user)
        starttls: Upgrade the connection with STARTTLS

    Returns:
        New configuration dictionary with SMTP configured
    """
    return {
        **config,
        "smtp_host": host,
        "smtp_port": port,
        "smtp_user": user,
        "smtp_password": password,
        "smtp_from": sender,
        "smtp_starttls": starttls,
    }


def with_restore_secret(config: ConfigDict, secret: str) -> ConfigDict:
    """
    Set the secret an operator must re-enter to confirm a restore.

    Args:
        config: Current configuration dictionary
        secret: Confirmation secret

    Returns:
        New configuration dictionary with the secret set
    """
    if not secret:
        raise ValueError("restore secret must not be empty")
    return {**config, "restore_secret": secret}


def enable_autobackup(config: ConfigDict, interval_days: int = 7) -> ConfigDict:
    """
    Enable periodic backups.

    The scheduler checks once a day and runs a backup when the last
    successful scheduled backup is older than interval_days.

    Args:
        config: Current configuration dictionary
        interval_days: Minimum days between scheduled backups

    Returns:
        New configuration dictionary with autobackup enabled
    """
    if interval_days < 1:
        raise ValueError(f"interval_days must be >= 1, got {interval_days}")
    return {
        **config,
        "autobackup_enabled": True,
        "autobackup_interval_days": interval_days,
    }


def with_environment(config: ConfigDict, environment: str) -> ConfigDict:
    """Set the environment name recorded in every artifact."""
    return {**config, "environment": environment}


def with_timeouts(
    config: ConfigDict,
    backup_seconds: float | None = None,
    restore_seconds: float | None = None,
) -> ConfigDict:
    """
    Bound how long admin-triggered backups and restores may run.

    A backup past its deadline fails with TimeoutError (or DeliveryFailure
    when the artifact was already stored). A restore past its deadline ends
    rolled back or partially applied.
    """
    for name, value in (("backup_seconds", backup_seconds), ("restore_seconds", restore_seconds)):
        if value is not None and value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    return {
        **config,
        "backup_timeout_seconds": backup_seconds,
        "restore_timeout_seconds": restore_seconds,
    }


def build_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Validate and build an immutable BackupConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable BackupConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_operator_address(c, "ops@example.com"),
            lambda c: with_attachment_limit(c, 10 * 1024 * 1024),
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def create_config(
    *,
    operator_address: str | None = None,
    database_path: str | Path | None = None,
    max_attachment_bytes: int | None = None,
    compression_threshold_bytes: int | None = None,
    backup_storage_path: str | Path | None = None,
    public_base_url: str | None = None,
    backup_bucket: str | None = None,
    region: str | None = None,
    restore_secret: str | None = None,
    autobackup_interval_days: int | None = None,
    **kwargs: Any,
) -> BackupConfig:
    """
    Create DocVault configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Example:
        config = create_config(
            operator_address="ops@example.com",
            database_path="/var/lib/app/store.db",
            backup_storage_path="/var/lib/app/uploads/backups",
            public_base_url="https://app.example.com",
            restore_secret=os.environ["DOCVAULT_RESTORE_SECRET"],
        )

    Args:
        operator_address: Address receiving backups
        database_path: SQLite store file
        max_attachment_bytes: Inline-vs-link threshold (default 25 MiB)
        compression_threshold_bytes: Compression threshold (default 5 MiB)
        backup_storage_path: Local directory for link-delivered artifacts
        public_base_url: Base URL the storage directory is served under
        backup_bucket: S3 bucket for link-delivered artifacts (overrides local)
        region: AWS region of the bucket
        restore_secret: Confirmation secret for restores
        autobackup_interval_days: Enables periodic backups when set
        **kwargs: Any other BackupConfig field

    Returns:
        Validated, immutable BackupConfig instance
    """
    config_dict = create_empty_config()

    if database_path:
        config_dict = with_database(config_dict, database_path)

    if operator_address:
        config_dict = with_operator_address(config_dict, operator_address)

    if max_attachment_bytes is not None:
        config_dict = with_attachment_limit(config_dict, max_attachment_bytes)

    if compression_threshold_bytes is not None:
        config_dict = with_compression_threshold(config_dict, compression_threshold_bytes)

    if backup_storage_path or public_base_url:
        config_dict = with_storage_path(
            config_dict,
            backup_storage_path or config_dict["backup_storage_path"],
            public_base_url,
        )

    if backup_bucket:
        config_dict = with_s3_bucket(config_dict, backup_bucket, region)
    elif region:
        config_dict["region"] = region

    if restore_secret:
        config_dict = with_restore_secret(config_dict, restore_secret)

    if autobackup_interval_days is not None:
        config_dict = enable_autobackup(config_dict, autobackup_interval_days)

    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
