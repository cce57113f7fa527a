# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Snapshot Builder - Full-fidelity read of every record set.

The snapshot is an administrative view: every persisted field is kept,
including fields hidden from client-facing reads such as credential
hashes. It is not a point-in-time view across sets; each set is read in
its own statement.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List

import structlog

from docvault.exceptions import SnapshotReadFailure
from docvault.registry import list_set_names
from docvault.store import Document, StoreDriver

logger = structlog.get_logger()

# Artifact format revision written by this version
SCHEMA_VERSION = 1

# Revisions decode_artifact() accepts
SUPPORTED_SCHEMA_VERSIONS = frozenset({1})


@dataclass
class BackupArtifact:
    """In-memory document tree of one backup."""

    schema_version: int
    generated_at: datetime
    record_sets: Dict[str, List[Document]] = field(default_factory=dict)
    environment: str | None = None

    @property
    def set_names(self) -> List[str]:
        return list(self.record_sets)

    @property
    def document_count(self) -> int:
        return sum(len(docs) for docs in self.record_sets.values())

    def collection_stats(self) -> List[Dict[str, Any]]:
        """Per-set document counts, in artifact order."""
        return [
            {"name": name, "count": len(docs)}
            for name, docs in self.record_sets.items()
        ]

    def to_payload(self) -> Dict[str, Any]:
        """Top-level structure of the serialized artifact."""
        payload: Dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "generatedAt": self.generated_at.isoformat(),
        }
        if self.environment is not None:
            payload["environment"] = self.environment
        payload["recordSets"] = self.record_sets
        return payload


async def build_snapshot(
    driver: StoreDriver,
    environment: str | None = None,
) -> BackupArtifact:
    """
    Read every document of every registered record set.

    Args:
        driver: Store driver to read from
        environment: Deployment environment recorded in the artifact

    Returns:
        BackupArtifact owned exclusively by the caller

    Raises:
        RegistryUnavailable: If record sets cannot be listed
        SnapshotReadFailure: If any set fails to read
    """
    generated_at = datetime.now(UTC)
    names = await list_set_names(driver)

    record_sets: Dict[str, List[Document]] = {}
    for name in names:
        try:
            documents = await driver.read_all(name)
        except Exception as e:
            logger.error("record_set_read_failed", record_set=name, error=str(e))
            raise SnapshotReadFailure(
                f"Failed to read record set {name}: {e}",
                details={
                    "record_set": name,
                    "sets_read": list(record_sets),
                },
            ) from e

        record_sets[name] = documents
        logger.debug("record_set_read", record_set=name, count=len(documents))

    artifact = BackupArtifact(
        schema_version=SCHEMA_VERSION,
        generated_at=generated_at,
        record_sets=record_sets,
        environment=environment,
    )

    logger.info(
        "snapshot_built",
        record_sets=len(record_sets),
        documents=artifact.document_count,
    )

    return artifact
