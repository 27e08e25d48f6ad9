"""
Notification outbox service.

Every message is stored before delivery and marked SENT or FAILED after.
Secret template variables (temporary passwords, verification codes) are rendered into
the message at send time and never stored, so a retried message falls
back to the password-reset wording.
"""

import logging
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import settings
from tenancy.core.exceptions import TenancyError
from tenancy.core.metrics import notifications_total
from tenancy.features.notifications.sender import LoggingNotificationSender, NotificationSender
from tenancy.models.base import utcnow
from tenancy.models.notification import Notification, NotificationKind, NotificationStatus
from tenancy.models.tenant import Tenant
from tenancy.models.user import User

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
SECRET_MARKERS = ("password", "secret", "token", "verification_code")
MAX_DELIVERY_ATTEMPTS = 5

_templates = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def public_variables(variables: dict[str, Any]) -> dict[str, Any]:
    """Drop secret-bearing keys before variables are persisted."""
    return {
        key: value
        for key, value in variables.items()
        if not any(marker in key.lower() for marker in SECRET_MARKERS)
    }


def render(template: str, variables: dict[str, Any]) -> str:
    context = {"temporary_password": None, "verification_code": None, **variables}
    return _templates.get_template(f"{template}.txt").render(**context)


class NotificationService:
    """Records, renders and delivers outbound notifications."""

    def __init__(self, sender: NotificationSender | None = None):
        self.sender: NotificationSender = sender or LoggingNotificationSender()

    async def send(
        self,
        db: AsyncSession,
        kind: NotificationKind,
        recipient: str,
        subject: str,
        template: str,
        variables: dict[str, Any],
        tenant_id: str | None = None,
        secret_variables: dict[str, Any] | None = None,
    ) -> Notification:
        """
        Store a notification and attempt delivery once.

        Delivery failures are recorded on the row, not raised.
        """
        notification = Notification(
            tenant_id=tenant_id,
            kind=kind,
            recipient=recipient,
            subject=subject,
            template=template,
            variables=public_variables(variables),
            status=NotificationStatus.PENDING,
            attempts=0,
        )
        db.add(notification)
        await db.flush()

        await self._deliver(notification, {**variables, **(secret_variables or {})})
        await db.commit()
        return notification

    async def _deliver(self, notification: Notification, variables: dict[str, Any]) -> None:
        notification.attempts += 1
        try:
            body = render(notification.template, variables)
            await self.sender.send(notification.recipient, notification.subject, body)
        except Exception as e:
            notification.status = NotificationStatus.FAILED
            notification.error_message = str(e)[:1000]
            notifications_total.labels(kind=NotificationKind(notification.kind).value, status="failed").inc()
            logger.warning(f"Notification {notification.id} to {notification.recipient} failed: {e}")
            return

        notification.status = NotificationStatus.SENT
        notification.error_message = None
        notification.sent_at = utcnow()
        notifications_total.labels(kind=NotificationKind(notification.kind).value, status="sent").inc()
        logger.info(f"Notification {notification.id} sent to {notification.recipient}")

    # Domain messages

    @staticmethod
    def _tenant_variables(tenant: Tenant) -> dict[str, Any]:
        return {
            "tenant_name": tenant.display_name,
            "admin_email": tenant.admin_email,
            "login_url": f"{settings.public_base_url}/login",
            "base_url": settings.public_base_url,
        }

    async def send_signup_started(self, db: AsyncSession, tenant: Tenant, admin_first_name: str) -> Notification:
        return await self.send(
            db,
            NotificationKind.SIGNUP_STARTED,
            recipient=tenant.admin_email,
            subject=f"Welcome to {settings.app_name} - account setup in progress",
            template="signup_started",
            variables={**self._tenant_variables(tenant), "admin_first_name": admin_first_name},
            tenant_id=tenant.id,
        )

    async def send_signup_completed(
        self,
        db: AsyncSession,
        tenant: Tenant,
        admin_first_name: str,
        temporary_password: str | None,
    ) -> Notification:
        return await self.send(
            db,
            NotificationKind.SIGNUP_COMPLETED,
            recipient=tenant.admin_email,
            subject=f"Your {settings.app_name} organization is ready",
            template="signup_completed",
            variables={**self._tenant_variables(tenant), "admin_first_name": admin_first_name},
            tenant_id=tenant.id,
            secret_variables={"temporary_password": temporary_password},
        )

    async def send_trial_ended(self, db: AsyncSession, tenant: Tenant, plan_name: str) -> Notification:
        return await self.send(
            db,
            NotificationKind.TRIAL_ENDED,
            recipient=tenant.admin_email,
            subject="Your trial has ended",
            template="trial_ended",
            variables={**self._tenant_variables(tenant), "plan_name": plan_name},
            tenant_id=tenant.id,
        )

    async def send_user_invited(
        self,
        db: AsyncSession,
        tenant: Tenant,
        user: User,
        temporary_password: str,
    ) -> Notification:
        return await self.send(
            db,
            NotificationKind.USER_INVITED,
            recipient=user.email,
            subject=f"You have been added to {tenant.display_name}",
            template="user_invited",
            variables={
                **self._tenant_variables(tenant),
                "email": user.email,
                "first_name": user.first_name,
            },
            tenant_id=tenant.id,
            secret_variables={"temporary_password": temporary_password},
        )

    async def send_mobile_verification(
        self,
        db: AsyncSession,
        phone_number: str,
        verification_code: str,
        tenant_id: str | None = None,
    ) -> Notification:
        return await self.send(
            db,
            NotificationKind.MOBILE_VERIFICATION,
            recipient=phone_number,
            subject=f"{settings.app_name} verification code",
            template="mobile_verification",
            variables={"app_name": settings.app_name, "expiry_minutes": settings.otp_expiry_minutes},
            tenant_id=tenant_id,
            secret_variables={"verification_code": verification_code},
        )

    # Outbox administration

    @staticmethod
    async def list_for_tenant(db: AsyncSession, tenant_id: str) -> list[Notification]:
        result = await db.execute(
            select(Notification)
            .where(Notification.tenant_id == tenant_id)
            .order_by(Notification.created_at.desc())
        )
        return list(result.scalars())

    @staticmethod
    async def list_failed(db: AsyncSession) -> list[Notification]:
        result = await db.execute(
            select(Notification)
            .where(Notification.status == NotificationStatus.FAILED.value)
            .order_by(Notification.created_at)
        )
        return list(result.scalars())

    async def retry_failed_notification(self, db: AsyncSession, notification_id: str) -> Notification:
        """
        Re-send one FAILED notification.

        Raises:
            TenancyError: Unknown id (not_found) or the notification is not FAILED (validation)
        """
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise TenancyError.not_found(f"Notification '{notification_id}' not found")
        if notification.status != NotificationStatus.FAILED:
            raise TenancyError.validation(
                f"Only failed notifications can be retried (status is {notification.status})"
            )

        await self._deliver(notification, dict(notification.variables))
        await db.commit()
        return notification

    async def retry_failed_notifications(
        self,
        db: AsyncSession,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
    ) -> int:
        """Retry every FAILED notification below max_attempts. Returns how many were sent."""
        sent = 0
        for notification in await self.list_failed(db):
            if notification.attempts >= max_attempts:
                continue
            await self._deliver(notification, dict(notification.variables))
            await db.commit()
            if notification.status == NotificationStatus.SENT:
                sent += 1
        return sent


# Global instance
notification_service = NotificationService()
