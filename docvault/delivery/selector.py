# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Delivery Selector - Inline attachment or download link.

Mail servers reject or mangle very large attachments, so artifacts above
max_attachment_bytes are written to the blob store and the operator gets
a link instead. Every backup run sends exactly one notification and
writes at most one blob.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Callable, Dict, List

import structlog

from docvault.codec import EncodedArtifact
from docvault.delivery.blobstore import BlobStore, StoredBlob
from docvault.delivery.channel import Attachment, Notification, NotificationChannel
from docvault.delivery.messages import (
    MANUAL_BACKUP_SUBJECT,
    render_backup_html,
    render_backup_text,
)
from docvault.exceptions import BlobStoreError, DeliveryFailure, NotificationError

logger = structlog.get_logger()


class DeliveryMode(str, Enum):
    """How the artifact reaches the operator."""

    INLINE = "inline"  # Attached to the notification
    LINK = "link"  # Written to the blob store, URL in the notification


@dataclass
class DeliveryPlan:
    """Ephemeral per-run plan; consumed once by deliver()."""

    encoded_bytes: bytes
    size_bytes: int
    mode: DeliveryMode
    filename: str
    content_type: str


@dataclass
class DeliveryReceipt:
    """What was handed to the operator."""

    mode: DeliveryMode
    recipient: str
    filename: str
    size_bytes: int
    blob_location: str | None = None
    download_url: str | None = None
    delivered_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def plan_delivery(encoded: EncodedArtifact, max_attachment_bytes: int) -> DeliveryPlan:
    """
    Choose the delivery mode for an encoded artifact.

    Artifacts of exactly max_attachment_bytes are still attached.
    """
    mode = (
        DeliveryMode.INLINE
        if encoded.size_bytes <= max_attachment_bytes
        else DeliveryMode.LINK
    )
    return DeliveryPlan(
        encoded_bytes=encoded.data,
        size_bytes=encoded.size_bytes,
        mode=mode,
        filename=encoded.filename,
        content_type=encoded.content_type,
    )


async def deliver(
    plan: DeliveryPlan,
    *,
    channel: NotificationChannel,
    blob_store: BlobStore | None,
    operator_address: str,
    generated_at: datetime,
    collection_stats: List[Dict[str, Any]],
    subject: str = MANUAL_BACKUP_SUBJECT,
    on_stored: Callable[[StoredBlob], None] | None = None,
) -> DeliveryReceipt:
    """
    Hand an artifact to the operator.

    Args:
        plan: Delivery plan from plan_delivery()
        channel: Notification channel
        blob_store: Blob store used for link delivery
        operator_address: Recipient
        generated_at: Artifact generation time (shown in the message)
        collection_stats: Per-set document counts (shown in the message)
        subject: Notification subject line
        on_stored: Called with the blob as soon as it is written

    Returns:
        DeliveryReceipt

    Raises:
        DeliveryFailure: If the blob could not be written or the notification
            could not be sent. A blob written before the failure is kept and
            its location is carried on the exception.
    """
    blob_location: str | None = None
    download_url: str | None = None
    attachments: List[Attachment] = []

    if plan.mode == DeliveryMode.LINK:
        if blob_store is None:
            raise DeliveryFailure(
                "Artifact exceeds the attachment limit and no blob store is configured",
                details={"size_bytes": plan.size_bytes, "filename": plan.filename},
            )
        try:
            stored = await blob_store.put(plan.filename, plan.encoded_bytes, plan.content_type)
        except BlobStoreError as e:
            raise DeliveryFailure(
                f"Failed to store backup for link delivery: {e.message}",
                details={"filename": plan.filename, **e.details},
            ) from e

        blob_location = stored.location
        download_url = stored.url
        if on_stored is not None:
            on_stored(stored)
        logger.info(
            "delivery_link_written",
            filename=plan.filename,
            location=blob_location,
            size_bytes=plan.size_bytes,
        )
    else:
        attachments.append(
            Attachment(
                filename=plan.filename,
                content=plan.encoded_bytes,
                content_type=plan.content_type,
            )
        )

    notification = Notification(
        to=operator_address,
        subject=subject,
        html=render_backup_html(
            generated_at, plan.size_bytes, collection_stats, download_url
        ),
        text=render_backup_text(
            generated_at, plan.size_bytes, collection_stats, download_url
        ),
        attachments=attachments,
    )

    try:
        await channel.send(notification)
    except NotificationError as e:
        # The blob stays where it is; the operator can still fetch it.
        logger.error(
            "delivery_notification_failed",
            mode=plan.mode.value,
            blob_location=blob_location,
            error=str(e),
        )
        raise DeliveryFailure(
            f"Backup created but the operator was not notified: {e.message}",
            details={"filename": plan.filename, "mode": plan.mode.value},
            blob_location=blob_location,
            download_url=download_url,
        ) from e

    receipt = DeliveryReceipt(
        mode=plan.mode,
        recipient=operator_address,
        filename=plan.filename,
        size_bytes=plan.size_bytes,
        blob_location=blob_location,
        download_url=download_url,
    )

    logger.info(
        "backup_delivered",
        mode=plan.mode.value,
        recipient=operator_address,
        size_bytes=plan.size_bytes,
    )

    return receipt
