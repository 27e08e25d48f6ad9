"""
Notification delivery.

Delivery is pluggable: anything with an async send(recipient, subject, body)
works. The default sender only logs, which is what development and tests use.
"""

from typing import Protocol

import structlog

from tenancy.config import settings

logger = structlog.get_logger(__name__)


class NotificationDeliveryError(Exception):
    """Raised by senders when a message could not be delivered."""


class NotificationSender(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None:
        ...


class LoggingNotificationSender:
    """Writes messages to the log instead of delivering them."""

    async def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info(
            "notification_delivered",
            recipient=recipient,
            subject=subject,
            sender=f"{settings.email_from_name} <{settings.email_from}>",
        )
