"""
Notification outbox.

Every outbound message is recorded before it is handed to the sender,
so failed deliveries can be listed and retried.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import BaseModel


class NotificationKind(str, Enum):
    SIGNUP_STARTED = "SIGNUP_STARTED"
    SIGNUP_COMPLETED = "SIGNUP_COMPLETED"
    TRIAL_ENDED = "TRIAL_ENDED"
    USER_INVITED = "USER_INVITED"
    MOBILE_VERIFICATION = "MOBILE_VERIFICATION"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Notification(BaseModel):
    """One outbound message and its delivery state."""

    __tablename__ = "notifications"

    tenant_id: Mapped[str | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    kind: Mapped[NotificationKind] = mapped_column(String(50), nullable=False)

    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    template: Mapped[str] = mapped_column(String(100), nullable=False)

    variables: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Template variables, secret-bearing keys removed"
    )

    status: Mapped[NotificationStatus] = mapped_column(
        String(50),
        nullable=False,
        default=NotificationStatus.PENDING,
        index=True,
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, kind={self.kind}, status={self.status})>"
