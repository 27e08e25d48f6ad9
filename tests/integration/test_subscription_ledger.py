"""
Integration tests for subscription creation, usage and plan limits.
"""

import pytest

from tenancy.core.exceptions import ErrorKind, TenancyError
from tenancy.features.identity.base import IdentityProviderError, RealmSettings
from tenancy.features.subscriptions.ledger import SubscriptionLedger
from tenancy.models import BillingCycle, SubscriptionStatus
from tests.factories import SubscriptionFactory, TenantFactory, get_plan


@pytest.mark.integration
class TestCreateSubscription:

    async def test_create(self, db_session):
        tenant = await TenantFactory.create(db_session)

        subscription = await SubscriptionLedger.create_subscription(
            db_session, tenant.id, "basic", BillingCycle.QUARTERLY
        )

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.plan.code == "BASIC"
        assert str(subscription.current_price) == "26.97"
        assert subscription.next_billing_date == subscription.end_date
        assert tenant.plan_id == subscription.plan_id

    async def test_create_trial(self, db_session):
        tenant = await TenantFactory.create(db_session)

        subscription = await SubscriptionLedger.create_subscription(
            db_session, tenant.id, "PRO", start_trial=True
        )

        assert subscription.status == SubscriptionStatus.TRIAL
        assert (subscription.trial_end_date - subscription.start_date).days == 14

    async def test_conflict_when_current_exists(self, db_session):
        tenant = await TenantFactory.create(db_session)
        await SubscriptionFactory.create(db_session, tenant)

        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.create_subscription(db_session, tenant.id, "PRO")

        assert exc_info.value.kind == ErrorKind.CONFLICT

    async def test_after_cancellation(self, db_session):
        tenant = await TenantFactory.create(db_session)
        await SubscriptionFactory.create(db_session, tenant, status=SubscriptionStatus.CANCELLED)

        subscription = await SubscriptionLedger.create_subscription(db_session, tenant.id, "PRO")

        assert subscription.status == SubscriptionStatus.ACTIVE

    async def test_unknown_tenant(self, db_session):
        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.create_subscription(db_session, "ghost", "PRO")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_unknown_plan(self, db_session):
        tenant = await TenantFactory.create(db_session)

        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.create_subscription(db_session, tenant.id, "GOLD")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_inactive_plan(self, db_session):
        tenant = await TenantFactory.create(db_session)
        plan = await get_plan(db_session, "BASIC")
        plan.is_active = False
        await db_session.commit()

        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.create_subscription(db_session, tenant.id, "BASIC")

        assert exc_info.value.kind == ErrorKind.VALIDATION


@pytest.mark.integration
class TestUsage:

    async def test_usage_of_new_tenant(self, db_session, identity_provider, active_tenant):
        usage = await SubscriptionLedger.get_subscription_usage(
            db_session, identity_provider, active_tenant.tenant_id
        )

        assert usage.plan_code == "FREE"
        assert usage.current_users == 1
        assert usage.max_users == 2
        assert usage.usage_percentage == 50.0
        assert usage.over_limit is False
        assert 27 <= usage.days_until_renewal <= 31

    async def test_unlimited_plan(self, db_session, identity_provider):
        tenant = await TenantFactory.create(db_session)
        await identity_provider.create_realm(tenant.realm_name, "Unlimited", RealmSettings())
        plan = await get_plan(db_session, "ENTERPRISE")
        plan.max_users = -1
        await db_session.commit()
        await SubscriptionFactory.create(db_session, tenant, plan_code="ENTERPRISE")

        usage = await SubscriptionLedger.get_subscription_usage(db_session, identity_provider, tenant.id)

        assert usage.usage_percentage == 0.0
        assert usage.over_limit is False
        assert usage.has_priority_support is True

    async def test_identity_provider_unavailable(self, db_session, identity_provider, active_tenant):
        identity_provider.fail_on["get_user_count"] = IdentityProviderError("connection refused")

        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.get_subscription_usage(
                db_session, identity_provider, active_tenant.tenant_id
            )

        assert exc_info.value.kind == ErrorKind.PROVISIONING_FAILED

    async def test_without_subscription(self, db_session, identity_provider):
        tenant = await TenantFactory.create(db_session)

        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.get_subscription_usage(db_session, identity_provider, tenant.id)

        assert exc_info.value.kind == ErrorKind.NOT_FOUND


@pytest.mark.integration
class TestUserLimit:

    async def test_within_limit(self, db_session, identity_provider, active_tenant):
        await SubscriptionLedger.check_user_limit(db_session, identity_provider, active_tenant.tenant_id)

    async def test_limit_exceeded_suggests_plan(self, db_session, identity_provider, active_tenant):
        with pytest.raises(TenancyError) as exc_info:
            await SubscriptionLedger.check_user_limit(
                db_session, identity_provider, active_tenant.tenant_id, additional_users=2
            )

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.violations == [
            "User limit reached for plan FREE (2 users)",
            "Upgrade to BASIC to allow 3 users",
        ]
