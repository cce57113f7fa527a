# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Exceptions - Error taxonomy for backup and restore operations.
"""

from typing import List


class DocVaultError(Exception):
    """Base exception for all DocVault errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(DocVaultError):
    """Raised when configuration is invalid."""

    pass


class StoreError(DocVaultError):
    """Raised when a store driver operation fails."""

    pass


class AtomicUnsupported(StoreError):
    """
    Raised by a store driver when multi-set transactions are not available
    in the current deployment. Internal signal, never surfaced to callers.
    """

    pass


class RestoreInProgress(DocVaultError):
    """Raised when the maintenance lock is held by a running restore."""

    pass


class RegistryUnavailable(DocVaultError):
    """Raised when the record-set registry cannot be queried."""

    pass


class SnapshotReadFailure(DocVaultError):
    """Raised when any record set fails to read during a snapshot."""

    pass


class BlobStoreError(DocVaultError):
    """Raised when writing to the blob store fails."""

    pass


class NotificationError(DocVaultError):
    """Raised when the notification channel cannot deliver a message."""

    pass


class DeliveryFailure(DocVaultError):
    """
    Raised when a backup artifact could not be handed to the operator.

    If the artifact was already written to the blob store, its location
    and fetch URL are kept so it can be retrieved out-of-band.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        blob_location: str | None = None,
        download_url: str | None = None,
    ):
        self.blob_location = blob_location
        self.download_url = download_url
        details = dict(details or {})
        if blob_location:
            details["blob_location"] = blob_location
        if download_url:
            details["download_url"] = download_url
        super().__init__(message, details)


class InvalidArtifact(DocVaultError):
    """Raised when an artifact cannot be decoded or is structurally invalid."""

    pass


class UnauthorizedRestore(DocVaultError):
    """Raised when the restore confirmation is rejected."""

    pass


class MissingConfirmation(UnauthorizedRestore):
    """Raised when no restore confirmation was supplied at all."""

    pass


class PartialRestoreFailure(DocVaultError):
    """
    Raised inside the sequential restore path when a record set fails
    after earlier sets were already replaced.
    """

    def __init__(
        self,
        message: str,
        replaced: List[str],
        failed: str | None,
        not_reached: List[str],
        details: dict | None = None,
    ):
        self.replaced = list(replaced)
        self.failed = failed
        self.not_reached = list(not_reached)
        details = dict(details or {})
        details.update(
            {
                "replaced": self.replaced,
                "failed": self.failed,
                "not_reached": self.not_reached,
            }
        )
        super().__init__(message, details)


class HistoryError(DocVaultError):
    """Raised when the run history database cannot be used."""

    pass
