"""
Integration tests for renewals, trial expirations, plan changes and cancellations.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from tenancy.core.exceptions import ErrorKind, TenancyError
from tenancy.models import (
    BillingCycle,
    Notification,
    NotificationKind,
    NotificationStatus,
    Subscription,
    SubscriptionStatus,
    Tenant,
    utcnow,
)
from tests.factories import SubscriptionFactory, TenantFactory, get_plan


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


async def _reload(db, subscription_id: str) -> Subscription:
    return await db.get(Subscription, subscription_id, populate_existing=True)


@pytest.mark.integration
class TestRenewals:

    async def test_renews_from_previous_billing_date(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
            next_billing_date=datetime(2024, 1, 31, tzinfo=timezone.utc),
        )
        subscription_id = subscription.id

        processed = await lifecycle.process_renewals(db_session)

        assert processed == 1
        renewed = await _reload(db_session, subscription_id)
        assert renewed.status == SubscriptionStatus.ACTIVE
        assert _naive(renewed.start_date) == datetime(2024, 1, 31)
        assert _naive(renewed.end_date) == datetime(2024, 2, 29)
        assert _naive(renewed.next_billing_date) == datetime(2024, 2, 29)

    async def test_yearly_renewal(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            billing_cycle=BillingCycle.YEARLY,
            start_date=datetime(2023, 3, 1, tzinfo=timezone.utc),
            next_billing_date=datetime(2024, 3, 1, tzinfo=timezone.utc),
        )
        subscription_id = subscription.id

        await lifecycle.process_renewals(db_session)

        renewed = await _reload(db_session, subscription_id)
        assert _naive(renewed.next_billing_date) == datetime(2025, 3, 1)

    async def test_expires_without_auto_renew(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            auto_renew=False,
            next_billing_date=utcnow() - timedelta(hours=1),
        )
        subscription_id = subscription.id

        assert await lifecycle.process_renewals(db_session) == 1

        expired = await _reload(db_session, subscription_id)
        assert expired.status == SubscriptionStatus.EXPIRED

    async def test_rows_outside_criteria_untouched(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        future = await SubscriptionFactory.create(
            db_session, tenant, next_billing_date=utcnow() + timedelta(days=5)
        )
        other = await TenantFactory.create(db_session)
        cancelled = await SubscriptionFactory.create(
            db_session,
            other,
            status=SubscriptionStatus.CANCELLED,
            next_billing_date=utcnow() - timedelta(days=5),
        )
        future_id, cancelled_id = future.id, cancelled.id

        assert await lifecycle.process_renewals(db_session) == 0

        assert (await _reload(db_session, future_id)).status == SubscriptionStatus.ACTIVE
        assert (await _reload(db_session, cancelled_id)).status == SubscriptionStatus.CANCELLED

    async def test_one_failed_row_does_not_stop_the_sweep(self, db_session, lifecycle, monkeypatch):
        first_tenant = await TenantFactory.create(db_session)
        second_tenant = await TenantFactory.create(db_session)
        first = await SubscriptionFactory.create(
            db_session, first_tenant, next_billing_date=utcnow() - timedelta(days=1)
        )
        second = await SubscriptionFactory.create(
            db_session, second_tenant, next_billing_date=utcnow() - timedelta(days=1)
        )
        broken_id = min(first.id, second.id)
        healthy_id = max(first.id, second.id)

        renew = lifecycle._renew_row

        async def flaky_renew(db, subscription, now):
            if subscription.id == broken_id:
                raise TenancyError.internal("billing backend unavailable")
            return await renew(db, subscription, now)

        monkeypatch.setattr(lifecycle, "_renew_row", flaky_renew)

        assert await lifecycle.process_renewals(db_session) == 1

        broken = await _reload(db_session, broken_id)
        healthy = await _reload(db_session, healthy_id)
        assert _naive(broken.next_billing_date) < _naive(utcnow())
        assert _naive(healthy.next_billing_date) > _naive(utcnow())

    async def test_unexpected_row_error_does_not_stop_the_sweep(self, db_session, lifecycle, monkeypatch):
        ids = []
        for _ in range(2):
            tenant = await TenantFactory.create(db_session)
            subscription = await SubscriptionFactory.create(
                db_session, tenant, next_billing_date=utcnow() - timedelta(days=1)
            )
            ids.append(subscription.id)
        broken_id, healthy_id = sorted(ids)

        renew = lifecycle._renew_row

        async def crashing_renew(db, subscription, now):
            if subscription.id == broken_id:
                raise RuntimeError("unexpected state")
            return await renew(db, subscription, now)

        monkeypatch.setattr(lifecycle, "_renew_row", crashing_renew)

        assert await lifecycle.process_renewals(db_session) == 1
        assert _naive((await _reload(db_session, healthy_id)).next_billing_date) > _naive(utcnow())
        assert _naive((await _reload(db_session, broken_id)).next_billing_date) < _naive(utcnow())


@pytest.mark.integration
class TestTrialExpirations:

    async def test_auto_renew_trial_converts(self, db_session, lifecycle, sender):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            plan_code="PRO",
            status=SubscriptionStatus.TRIAL,
            trial_end_date=utcnow() - timedelta(minutes=5),
        )
        subscription_id, tenant_id = subscription.id, tenant.id

        assert await lifecycle.process_trial_expirations(db_session) == 1

        converted = await _reload(db_session, subscription_id)
        assert converted.status == SubscriptionStatus.ACTIVE
        assert converted.trial_end_date is None

        [message] = sender.messages
        assert "your Pro subscription" in message.body
        notification = await db_session.scalar(
            select(Notification).where(Notification.tenant_id == tenant_id)
        )
        assert notification.kind == NotificationKind.TRIAL_ENDED.value

    async def test_trial_without_auto_renew_cancelled(self, db_session, lifecycle, sender):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            status=SubscriptionStatus.TRIAL,
            auto_renew=False,
            trial_end_date=utcnow() - timedelta(minutes=5),
        )
        subscription_id = subscription.id

        assert await lifecycle.process_trial_expirations(db_session) == 1

        cancelled = await _reload(db_session, subscription_id)
        assert cancelled.status == SubscriptionStatus.CANCELLED
        assert cancelled.cancellation_reason == "Trial expired"
        assert cancelled.cancelled_at is not None
        assert sender.messages == []

    async def test_running_trial_untouched(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            status=SubscriptionStatus.TRIAL,
            trial_end_date=utcnow() + timedelta(days=3),
        )
        subscription_id = subscription.id

        assert await lifecycle.process_trial_expirations(db_session) == 0
        assert (await _reload(db_session, subscription_id)).status == SubscriptionStatus.TRIAL

    async def test_notification_failure_keeps_conversion(self, db_session, lifecycle, sender):
        sender.fail = True
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session,
            tenant,
            status=SubscriptionStatus.TRIAL,
            trial_end_date=utcnow() - timedelta(minutes=5),
        )
        subscription_id = subscription.id

        assert await lifecycle.process_trial_expirations(db_session) == 1
        assert (await _reload(db_session, subscription_id)).status == SubscriptionStatus.ACTIVE

    async def test_sender_crash_does_not_stop_the_sweep(self, db_session, lifecycle, sender):
        sender.error = RuntimeError("mail relay returned garbage")
        ids = []
        for _ in range(2):
            tenant = await TenantFactory.create(db_session)
            subscription = await SubscriptionFactory.create(
                db_session,
                tenant,
                status=SubscriptionStatus.TRIAL,
                trial_end_date=utcnow() - timedelta(minutes=5),
            )
            ids.append(subscription.id)

        assert await lifecycle.process_trial_expirations(db_session) == 2

        for subscription_id in ids:
            assert (await _reload(db_session, subscription_id)).status == SubscriptionStatus.ACTIVE
        failed = list(await db_session.scalars(
            select(Notification).where(Notification.status == NotificationStatus.FAILED.value)
        ))
        assert len(failed) == 2


@pytest.mark.integration
class TestChangeSubscription:

    async def test_upgrade_replaces_subscription(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        current = await SubscriptionFactory.create(db_session, tenant, plan_code="BASIC")
        current_id, tenant_id = current.id, tenant.id

        replacement = await lifecycle.change_subscription(db_session, tenant_id, "pro")

        assert replacement.id != current_id
        assert replacement.status == SubscriptionStatus.ACTIVE
        assert replacement.plan.code == "PRO"
        assert replacement.current_price == Decimal("29.99")

        previous = await _reload(db_session, current_id)
        assert previous.status == SubscriptionStatus.CANCELLED
        assert previous.cancellation_reason == "Upgraded to PRO"

        pro = await get_plan(db_session, "PRO")
        refreshed = await db_session.get(Tenant, tenant_id, populate_existing=True)
        assert refreshed.plan_id == pro.id

        current_rows = list(await db_session.scalars(
            select(Subscription).where(
                Subscription.tenant_id == tenant_id,
                Subscription.status.in_(["ACTIVE", "TRIAL"]),
            )
        ))
        assert [row.id for row in current_rows] == [replacement.id]

    async def test_billing_cycle_change(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        await SubscriptionFactory.create(db_session, tenant, plan_code="BASIC")

        replacement = await lifecycle.change_subscription(
            db_session, tenant.id, "BASIC", BillingCycle.YEARLY
        )

        assert replacement.billing_cycle == BillingCycle.YEARLY
        assert replacement.current_price == Decimal("95.90")

    async def test_no_changes(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        current = await SubscriptionFactory.create(db_session, tenant, plan_code="BASIC")
        current_id, version, tenant_id = current.id, current.version, tenant.id

        with pytest.raises(TenancyError) as exc_info:
            await lifecycle.change_subscription(db_session, tenant_id, "BASIC")

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.message == "No changes detected"

        unchanged = await _reload(db_session, current_id)
        assert unchanged.status == SubscriptionStatus.ACTIVE
        assert unchanged.version == version
        assert unchanged.cancelled_at is None
        assert unchanged.cancellation_reason is None
        rows = list(await db_session.scalars(
            select(Subscription).where(Subscription.tenant_id == tenant_id)
        ))
        assert [row.id for row in rows] == [current_id]

    async def test_stale_current_plan(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        await SubscriptionFactory.create(db_session, tenant, plan_code="BASIC")

        with pytest.raises(TenancyError) as exc_info:
            await lifecycle.change_subscription(
                db_session, tenant.id, "ENTERPRISE", expected_plan_code="pro"
            )

        assert exc_info.value.kind == ErrorKind.VALIDATION

    async def test_without_current_subscription(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)

        with pytest.raises(TenancyError) as exc_info:
            await lifecycle.change_subscription(db_session, tenant.id, "PRO")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_unknown_tenant(self, db_session, lifecycle):
        with pytest.raises(TenancyError) as exc_info:
            await lifecycle.change_subscription(db_session, "nobody", "PRO")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND


@pytest.mark.integration
class TestCancelSubscription:

    async def test_cancel(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(db_session, tenant)

        cancelled = await lifecycle.cancel_subscription(db_session, tenant.id, "Moving to a competitor")

        assert cancelled.id == subscription.id
        assert cancelled.status == SubscriptionStatus.CANCELLED
        assert cancelled.auto_renew is False
        assert cancelled.cancellation_reason == "Moving to a competitor"
        assert cancelled.cancelled_at is not None

    async def test_cancelled_subscription_not_renewed(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)
        subscription = await SubscriptionFactory.create(
            db_session, tenant, next_billing_date=utcnow() - timedelta(days=1)
        )
        subscription_id = subscription.id

        await lifecycle.cancel_subscription(db_session, tenant.id, "No longer needed")

        assert await lifecycle.process_renewals(db_session) == 0
        assert (await _reload(db_session, subscription_id)).status == SubscriptionStatus.CANCELLED

    async def test_nothing_to_cancel(self, db_session, lifecycle):
        tenant = await TenantFactory.create(db_session)

        with pytest.raises(TenancyError) as exc_info:
            await lifecycle.cancel_subscription(db_session, tenant.id, "whatever")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
