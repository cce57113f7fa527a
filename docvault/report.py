# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Backup Report - Small, non-sensitive summary of the store.

Unlike a backup, the report is meant to be read by a person: it holds
per-set document counts and a sample of the most recent documents, with
credential-like fields removed.
"""

import json
from datetime import datetime, UTC
from typing import Any, Dict, List

import structlog

from docvault.codec import json_default
from docvault.delivery.channel import Attachment, Notification, NotificationChannel
from docvault.delivery.messages import REPORT_SUBJECT, render_report_html
from docvault.registry import list_set_names
from docvault.store import Document, StoreDriver

logger = structlog.get_logger()

# Field names containing any of these are dropped from report samples
SENSITIVE_FIELD_MARKERS = ("password", "token", "secret", "otp")

DEFAULT_SAMPLE_SIZE = 100


def _is_sensitive(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS)


def redact_document(value: Any) -> Any:
    """Drop sensitive fields at every nesting level."""
    if isinstance(value, dict):
        return {
            key: redact_document(item)
            for key, item in value.items()
            if not _is_sensitive(str(key))
        }
    if isinstance(value, list):
        return [redact_document(item) for item in value]
    return value


async def build_backup_report(
    driver: StoreDriver,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> Dict[str, Any]:
    """
    Summarize every record set.

    Args:
        driver: Store driver to read from
        sample_size: Number of most recent documents kept per set

    Returns:
        Report dict with generatedAt, stats and samples

    Raises:
        RegistryUnavailable: If record sets cannot be listed
    """
    names = await list_set_names(driver)

    stats: Dict[str, int] = {}
    samples: Dict[str, List[Document]] = {}

    for name in names:
        stats[name] = await driver.count(name)
        recent = await driver.read_recent(name, sample_size) if sample_size else []
        samples[name] = [redact_document(doc) for doc in recent]

    report = {
        "generatedAt": datetime.now(UTC).isoformat(),
        "stats": stats,
        "samples": samples,
    }

    logger.info("backup_report_built", record_sets=len(names), sample_size=sample_size)

    return report


def report_filename(prefix: str, generated_at: datetime) -> str:
    return f"{prefix}-backup-report-{generated_at.strftime('%Y-%m-%d')}.json"


async def send_backup_report(
    report: Dict[str, Any],
    channel: NotificationChannel,
    operator_address: str,
    filename_prefix: str = "docvault",
) -> str:
    """
    Email a report as a JSON attachment.

    Returns:
        The attachment filename

    Raises:
        NotificationError: If the notification could not be sent
    """
    generated_at = datetime.fromisoformat(report["generatedAt"])
    filename = report_filename(filename_prefix, generated_at)
    content = json.dumps(report, indent=2, ensure_ascii=False, default=json_default)

    await channel.send(
        Notification(
            to=operator_address,
            subject=REPORT_SUBJECT,
            html=render_report_html(generated_at, report["stats"]),
            attachments=[
                Attachment(
                    filename=filename,
                    content=content.encode("utf-8"),
                    content_type="application/json",
                )
            ],
        )
    )

    logger.info("backup_report_sent", recipient=operator_address, filename=filename)
    return filename
