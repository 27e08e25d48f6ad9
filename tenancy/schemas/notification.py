"""
Pydantic schemas for the notification outbox.
"""

from datetime import datetime
from typing import Any

from tenancy.models.notification import NotificationKind, NotificationStatus
from tenancy.schemas.common import BaseSchema


class NotificationRead(BaseSchema):
    id: str
    tenant_id: str | None = None
    kind: NotificationKind
    recipient: str
    subject: str
    template: str
    variables: dict[str, Any]
    status: NotificationStatus
    error_message: str | None = None
    attempts: int
    sent_at: datetime | None = None
    created_at: datetime
