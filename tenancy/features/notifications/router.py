"""
Administrative endpoints for the notification outbox.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from tenancy.core.rate_limit import rate_limit
from tenancy.features.auth.dependencies import AdminContext, DbSession
from tenancy.features.notifications.service import NotificationService, notification_service
from tenancy.models.notification import Notification
from tenancy.schemas.notification import NotificationRead

router = APIRouter(
    prefix="/admin/notifications",
    tags=["Admin"],
    dependencies=[Depends(rate_limit("admin"))],
)


def get_notification_service() -> NotificationService:
    return notification_service


Notifications = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("/failed", response_model=list[NotificationRead])
async def list_failed(context: AdminContext, db: DbSession, service: Notifications) -> list[Notification]:
    return await service.list_failed(db)


@router.get("/tenant/{tenant_id}", response_model=list[NotificationRead])
async def list_for_tenant(
    tenant_id: str,
    context: AdminContext,
    db: DbSession,
    service: Notifications,
) -> list[Notification]:
    """Notification history of one tenant, newest first."""
    return await service.list_for_tenant(db, tenant_id)


@router.post("/{notification_id}/retry", response_model=NotificationRead)
async def retry_notification(
    notification_id: str,
    context: AdminContext,
    db: DbSession,
    service: Notifications,
) -> Notification:
    """Re-send one FAILED notification."""
    return await service.retry_failed_notification(db, notification_id)
