# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification during runtime.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
import re

MIB = 1024 * 1024

# Default thresholds
DEFAULT_MAX_ATTACHMENT_BYTES = 25 * MIB
DEFAULT_COMPRESSION_THRESHOLD_BYTES = 5 * MIB

# SigV4 presigned URLs cannot outlive 7 days
MAX_PRESIGNED_EXPIRY_SECONDS = 7 * 24 * 60 * 60


class BackupTrigger(str, Enum):
    """What started a backup run."""

    MANUAL = "manual"  # Admin endpoint, synchronous
    BACKGROUND = "background"  # Admin endpoint, acknowledged immediately
    SCHEDULED = "scheduled"  # Auto-backup scheduler


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_address(address: str) -> bool:
    """Loose e-mail address check: one '@' with a dotted domain."""
    return bool(re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", address))


def _validate_filename_prefix(prefix: str) -> bool:
    return bool(re.match(r"^[A-Za-z0-9][A-Za-z0-9_-]*$", prefix))


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup and restore engine.

    Frozen after creation so a backup or restore in flight always sees
    the settings it started with.
    """

    # SQLite file holding the record sets
    database_path: Path = field(default_factory=lambda: Path("./docvault.db"))

    # SQLite file holding the run history
    history_db_path: Path = field(default_factory=lambda: Path("./docvault_history.db"))

    # Operator address receiving backups and failure notices
    operator_address: str | None = None

    # Artifacts above this size are delivered as a link instead of an attachment
    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES

    # Encoded artifacts above this size are zstd-compressed
    compression_threshold_bytes: int = DEFAULT_COMPRESSION_THRESHOLD_BYTES

    # zstd level used for large artifacts
    zstd_level: int = 10

    # Local directory for link-delivered artifacts (used when no bucket is set)
    backup_storage_path: Path = field(default_factory=lambda: Path("./backups"))

    # Base URL under which backup_storage_path is served
    public_base_url: str = "http://localhost:8000"

    # URL path under public_base_url that maps to backup_storage_path
    public_backup_route: str = "/uploads/backups"

    # Optional S3 bucket for link-delivered artifacts
    backup_bucket: str | None = None

    # AWS region for the backup bucket
    region: str = "us-east-1"

    # Key prefix inside the backup bucket
    backup_key_prefix: str = "backups/"

    # Lifetime of presigned download URLs
    presigned_url_expiry_seconds: int = MAX_PRESIGNED_EXPIRY_SECONDS

    # Secret an operator must re-enter to confirm a restore
    restore_secret: str | None = None

    # SMTP transport
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_starttls: bool = True
    smtp_timeout_seconds: float = 30.0

    # Periodic backups
    autobackup_enabled: bool = False
    autobackup_interval_days: int = 7

    # Recorded inside every artifact
    environment: str = "development"

    # Artifact filename prefix: <prefix>-full-backup-<timestamp>.json
    filename_prefix: str = "docvault"

    # Maintenance lock lifetime; a crashed holder cannot keep it longer
    lock_ttl_seconds: int = 3600

    # SQLite busy timeout for each connection
    store_timeout_seconds: float = 30.0

    # Timeouts for the S3 client
    s3_connect_timeout_seconds: float = 10.0
    s3_read_timeout_seconds: float = 60.0

    # Deadlines for admin-triggered runs; None waits indefinitely
    backup_timeout_seconds: float | None = None
    restore_timeout_seconds: float | None = None

    # Number of recent documents per set in the summary report
    report_sample_size: int = 100

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.operator_address and not _validate_address(self.operator_address):
            errors.append(f"Invalid operator_address: {self.operator_address}")

        if self.max_attachment_bytes < 1:
            errors.append(
                f"max_attachment_bytes must be >= 1, got {self.max_attachment_bytes}"
            )

        if self.compression_threshold_bytes < 0:
            errors.append(
                "compression_threshold_bytes must be >= 0, "
                f"got {self.compression_threshold_bytes}"
            )

        if not 1 <= self.zstd_level <= 22:
            errors.append(f"zstd_level must be 1-22, got {self.zstd_level}")

        if self.backup_bucket and not _validate_bucket_name(self.backup_bucket):
            errors.append(f"Invalid backup_bucket name: {self.backup_bucket}")

        if not 1 <= self.presigned_url_expiry_seconds <= MAX_PRESIGNED_EXPIRY_SECONDS:
            errors.append(
                "presigned_url_expiry_seconds must be between 1 and "
                f"{MAX_PRESIGNED_EXPIRY_SECONDS}, got {self.presigned_url_expiry_seconds}"
            )

        if not 1 <= self.smtp_port <= 65535:
            errors.append(f"smtp_port must be 1-65535, got {self.smtp_port}")

        if self.smtp_from and not _validate_address(self.smtp_from):
            errors.append(f"Invalid smtp_from: {self.smtp_from}")

        if self.autobackup_interval_days < 1:
            errors.append(
                "autobackup_interval_days must be >= 1, "
                f"got {self.autobackup_interval_days}"
            )

        if self.autobackup_enabled and not self.operator_address:
            errors.append("operator_address required when autobackup is enabled")

        if not _validate_filename_prefix(self.filename_prefix):
            errors.append(f"Invalid filename_prefix: {self.filename_prefix}")

        if self.lock_ttl_seconds < 1:
            errors.append(f"lock_ttl_seconds must be >= 1, got {self.lock_ttl_seconds}")

        for name in ("backup_timeout_seconds", "restore_timeout_seconds"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        if self.report_sample_size < 0:
            errors.append(
                f"report_sample_size must be >= 0, got {self.report_sample_size}"
            )

        if errors:
            from docvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def uses_s3(self) -> bool:
        """True when link-delivered artifacts go to S3 instead of local disk."""
        return self.backup_bucket is not None

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)

    def redacted(self) -> dict:
        """Configuration summary safe to return from admin endpoints."""
        return {
            "operator_address": self.operator_address,
            "max_attachment_bytes": self.max_attachment_bytes,
            "compression_threshold_bytes": self.compression_threshold_bytes,
            "backup_storage_path": str(self.backup_storage_path),
            "backup_bucket": self.backup_bucket,
            "region": self.region,
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "restore_confirmation_configured": self.restore_secret is not None,
            "autobackup_enabled": self.autobackup_enabled,
            "autobackup_interval_days": self.autobackup_interval_days,
            "environment": self.environment,
            "backup_timeout_seconds": self.backup_timeout_seconds,
            "restore_timeout_seconds": self.restore_timeout_seconds,
        }
