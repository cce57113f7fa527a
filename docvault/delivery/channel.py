# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Notification Channel - Operator notifications over SMTP.

The channel is an explicitly owned object: callers open it, pass it to
whatever needs to notify, and close it on shutdown. Connection reuse,
liveness checks and reconnect-with-backoff all live inside it; there is
no module-level transport state.

smtplib is blocking, so every SMTP call runs on a single-worker thread
pool owned by the channel. One worker also serializes access to the
shared connection.
"""

import asyncio
import smtplib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Protocol

import structlog

from docvault.exceptions import NotificationError

logger = structlog.get_logger()

# Errors after which a fresh connection may succeed
_TRANSIENT_ERRORS = (
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
    ConnectionError,
    TimeoutError,
)


@dataclass
class Attachment:
    """Named binary payload attached to a notification."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class Notification:
    """One message to an operator."""

    to: str
    subject: str
    html: str
    text: str | None = None
    attachments: List[Attachment] = field(default_factory=list)


class NotificationChannel(Protocol):
    """Protocol for anything that can deliver a Notification."""

    async def send(self, notification: Notification) -> None:
        """
        Deliver a notification.

        Raises:
            NotificationError: If delivery failed
        """
        ...


def build_email_message(notification: Notification, sender: str) -> EmailMessage:
    """Render a Notification as a MIME message."""
    message = EmailMessage()
    message["Subject"] = notification.subject
    message["From"] = sender
    message["To"] = notification.to

    message.set_content(
        notification.text or "This message requires an HTML-capable mail client."
    )
    message.add_alternative(notification.html, subtype="html")

    for attachment in notification.attachments:
        maintype, _, subtype = attachment.content_type.partition("/")
        message.add_attachment(
            attachment.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )

    return message


class SMTPNotificationChannel:
    """
    SMTP-backed notification channel.

    Args:
        host: SMTP server host
        port: SMTP server port
        user: Login user (no login when None)
        password: Login password
        sender: From address (defaults to user)
        starttls: Upgrade the connection with STARTTLS
        timeout: Socket timeout for every SMTP call, in seconds
        max_attempts: Attempts per message on transient failures
        backoff_base_seconds: First retry delay; doubles on each retry
        verify_interval_seconds: Re-check an idle connection with NOOP after this long
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        starttls: bool = True,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        verify_interval_seconds: float = 300.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.sender = sender or user
        self.starttls = starttls
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base_seconds = backoff_base_seconds
        self.verify_interval_seconds = verify_interval_seconds

        self._executor = ThreadPoolExecutor(max_workers=1)
        self._smtp: smtplib.SMTP | None = None
        self._last_verified = 0.0
        self._closed = False

    async def __aenter__(self) -> "SMTPNotificationChannel":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def open(self) -> None:
        """Establish the connection eagerly."""
        try:
            await self._run(self._ensure_connected_sync)
        except _TRANSIENT_ERRORS + (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"Failed to connect to SMTP server: {e}",
                details={"host": self.host, "port": self.port},
            ) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._run(self._disconnect_sync)
        self._executor.shutdown(wait=False)
        logger.debug("smtp_channel_closed", host=self.host)

    async def send(self, notification: Notification) -> None:
        if self._closed:
            raise NotificationError("Notification channel is closed")
        if not self.sender:
            raise NotificationError(
                "No sender address configured for the SMTP channel",
                details={"host": self.host},
            )

        message = build_email_message(notification, self.sender)

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._run(self._send_sync, message)
                logger.info(
                    "notification_sent",
                    to=notification.to,
                    subject=notification.subject,
                    attachments=len(notification.attachments),
                    attempt=attempt,
                )
                return
            except _TRANSIENT_ERRORS as e:
                await self._run(self._disconnect_sync)
                if attempt == self.max_attempts:
                    raise NotificationError(
                        f"SMTP delivery failed after {attempt} attempts: {e}",
                        details={"to": notification.to, "host": self.host},
                    ) from e
                delay = self.backoff_base_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "notification_retry",
                    to=notification.to,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
            except (smtplib.SMTPException, OSError) as e:
                raise NotificationError(
                    f"SMTP delivery rejected: {e}",
                    details={"to": notification.to, "host": self.host},
                ) from e

    def _connect_sync(self) -> smtplib.SMTP:
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.starttls:
                smtp.starttls()
            if self.user and self._password:
                smtp.login(self.user, self._password)
        except Exception:
            smtp.close()
            raise
        logger.debug("smtp_connected", host=self.host, port=self.port)
        return smtp

    def _ensure_connected_sync(self) -> smtplib.SMTP:
        if self._smtp is not None:
            if time.monotonic() - self._last_verified < self.verify_interval_seconds:
                return self._smtp
            try:
                code, _ = self._smtp.noop()
            except _TRANSIENT_ERRORS + (smtplib.SMTPException, OSError) as e:
                code = None
                logger.debug("smtp_noop_failed", host=self.host, error=str(e))
            if code == 250:
                self._last_verified = time.monotonic()
                return self._smtp
            logger.info("smtp_connection_stale", host=self.host)
            self._disconnect_sync()

        self._smtp = self._connect_sync()
        self._last_verified = time.monotonic()
        return self._smtp

    def _send_sync(self, message: EmailMessage) -> None:
        smtp = self._ensure_connected_sync()
        smtp.send_message(message)

    def _disconnect_sync(self) -> None:
        smtp, self._smtp = self._smtp, None
        if smtp is None:
            return
        try:
            smtp.quit()
        except (smtplib.SMTPException, OSError):
            smtp.close()
