"""
Integration tests for the notification outbox.
"""

import pytest

from tenancy.core.exceptions import ErrorKind, TenancyError
from tenancy.models import Notification, NotificationStatus
from tests.factories import TenantFactory


@pytest.mark.integration
class TestNotificationOutbox:

    async def test_sent_notification_recorded(self, db_session, notifications, sender):
        tenant = await TenantFactory.create(db_session)

        notification = await notifications.send_trial_ended(db_session, tenant, "Basic")

        assert notification.status == NotificationStatus.SENT
        assert notification.attempts == 1
        assert notification.sent_at is not None
        assert notification.variables["plan_name"] == "Basic"
        assert sender.messages[0].recipient == tenant.admin_email

    async def test_failed_delivery_recorded(self, db_session, notifications, sender):
        sender.fail = True
        tenant = await TenantFactory.create(db_session)

        notification = await notifications.send_signup_started(db_session, tenant, "Grace")

        assert notification.status == NotificationStatus.FAILED
        assert notification.error_message == "SMTP server unavailable"
        assert [n.id for n in await notifications.list_failed(db_session)] == [notification.id]

    async def test_unexpected_sender_error_recorded(self, db_session, notifications, sender):
        sender.error = RuntimeError("mail relay returned garbage")
        tenant = await TenantFactory.create(db_session)

        notification = await notifications.send_trial_ended(db_session, tenant, "Pro")

        assert notification.status == NotificationStatus.FAILED
        assert notification.error_message == "mail relay returned garbage"
        assert notification.attempts == 1

    async def test_retry_failed_notification(self, db_session, notifications, sender):
        sender.fail = True
        tenant = await TenantFactory.create(db_session)
        notification = await notifications.send_signup_completed(
            db_session, tenant, "Grace", temporary_password="Temp-Passw0rd!"
        )
        sender.fail = False

        retried = await notifications.retry_failed_notification(db_session, notification.id)

        assert retried.status == NotificationStatus.SENT
        assert retried.attempts == 2
        assert retried.error_message is None
        # The password is never stored, so the retry points at password reset
        [message] = sender.messages
        assert "Temp-Passw0rd!" not in message.body
        assert "Forgot password" in message.body

    async def test_retry_requires_failed_status(self, db_session, notifications):
        tenant = await TenantFactory.create(db_session)
        notification = await notifications.send_trial_ended(db_session, tenant, "Pro")

        with pytest.raises(TenancyError) as exc_info:
            await notifications.retry_failed_notification(db_session, notification.id)

        assert exc_info.value.kind == ErrorKind.VALIDATION

    async def test_retry_unknown_notification(self, db_session, notifications):
        with pytest.raises(TenancyError) as exc_info:
            await notifications.retry_failed_notification(db_session, "missing")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_bulk_retry_respects_attempt_limit(self, db_session, notifications, sender):
        sender.fail = True
        tenant = await TenantFactory.create(db_session)
        fresh = await notifications.send_trial_ended(db_session, tenant, "Pro")
        exhausted = await notifications.send_signup_started(db_session, tenant, "Grace")
        exhausted.attempts = 5
        await db_session.commit()
        sender.fail = False

        sent = await notifications.retry_failed_notifications(db_session, max_attempts=5)

        assert sent == 1
        assert (await db_session.get(Notification, fresh.id)).status == NotificationStatus.SENT
        assert (await db_session.get(Notification, exhausted.id)).status == NotificationStatus.FAILED

    async def test_listing_for_tenant(self, db_session, notifications):
        tenant = await TenantFactory.create(db_session)
        other = await TenantFactory.create(db_session)
        await notifications.send_trial_ended(db_session, tenant, "Pro")
        await notifications.send_trial_ended(db_session, other, "Pro")

        rows = await notifications.list_for_tenant(db_session, tenant.id)

        assert [row.tenant_id for row in rows] == [tenant.id]
