# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Delivery Layer - Notification channel, blob stores and the delivery selector.
"""

from docvault.delivery.blobstore import (
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    StoredBlob,
)

from docvault.delivery.channel import (
    Attachment,
    Notification,
    NotificationChannel,
    SMTPNotificationChannel,
)

from docvault.delivery.selector import (
    DeliveryMode,
    DeliveryPlan,
    DeliveryReceipt,
    deliver,
    plan_delivery,
)

__all__ = [
    # Blob stores
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "StoredBlob",
    # Channel
    "Attachment",
    "Notification",
    "NotificationChannel",
    "SMTPNotificationChannel",
    # Selector
    "DeliveryMode",
    "DeliveryPlan",
    "DeliveryReceipt",
    "deliver",
    "plan_delivery",
]
