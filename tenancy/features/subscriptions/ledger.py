"""
Subscription ledger.

Creates and reads Subscription rows and applies status transitions.
A tenant has at most one current (ACTIVE or TRIAL) subscription; that rule
is enforced here by query, not by the schema.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import settings
from tenancy.core.exceptions import TenancyError
from tenancy.core.metrics import subscription_transitions_total
from tenancy.core.security import tenant_verifiers
from tenancy.features.identity.base import IdentityProviderError, IdentityProviderGateway
from tenancy.features.subscriptions.pricing import add_billing_cycle, cycle_price, trial_end
from tenancy.models.base import utcnow
from tenancy.models.subscription import (
    CURRENT_STATUSES,
    BillingCycle,
    Subscription,
    SubscriptionStatus,
)
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.models.tenant import Tenant
from tenancy.schemas.subscription import SubscriptionUsage

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.TRIAL: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
        SubscriptionStatus.SUSPENDED,
    }),
    SubscriptionStatus.PAST_DUE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
        SubscriptionStatus.SUSPENDED,
    }),
    SubscriptionStatus.SUSPENDED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class SubscriptionLedger:
    """Subscription persistence and state transitions."""

    @staticmethod
    def transition(
        subscription: Subscription,
        new_status: SubscriptionStatus,
        trigger: str,
    ) -> None:
        """
        Move a subscription to new_status.

        Raises:
            TenancyError: The transition is not allowed (validation)
        """
        current = SubscriptionStatus(subscription.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise TenancyError.validation(
                f"Subscription cannot move from {current.value} to {new_status.value}"
            )

        subscription.status = new_status
        subscription_transitions_total.labels(
            from_status=current.value,
            to_status=new_status.value,
            trigger=trigger,
        ).inc()

    @staticmethod
    def cancel(subscription: Subscription, reason: str, trigger: str, now: datetime | None = None) -> None:
        SubscriptionLedger.transition(subscription, SubscriptionStatus.CANCELLED, trigger)
        subscription.cancelled_at = now or utcnow()
        subscription.cancellation_reason = reason

    @staticmethod
    async def get_plan(db: AsyncSession, code: str, require_active: bool = True) -> SubscriptionPlan:
        """
        Load a plan by code (case-insensitive).

        Raises:
            TenancyError: Unknown plan (not_found) or inactive plan (validation)
        """
        plan = await db.scalar(
            select(SubscriptionPlan).where(SubscriptionPlan.code == code.upper())
        )
        if plan is None:
            raise TenancyError.not_found(f"Subscription plan '{code}' not found")
        if require_active and not plan.is_active:
            raise TenancyError.validation(f"Subscription plan '{plan.code}' is not available")
        return plan

    @staticmethod
    def open_subscription(
        db: AsyncSession,
        tenant: Tenant,
        plan: SubscriptionPlan,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        start_trial: bool = False,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Add a new current subscription to the session without committing.

        Trials keep the regular billing period; trial_end_date marks when the
        trial sweep converts or cancels them.
        """
        start = now or utcnow()
        end = add_billing_cycle(start, billing_cycle)

        subscription = Subscription(
            tenant_id=tenant.id,
            plan=plan,
            plan_id=plan.id,
            status=SubscriptionStatus.TRIAL if start_trial else SubscriptionStatus.ACTIVE,
            billing_cycle=billing_cycle,
            current_price=cycle_price(plan.monthly_price, billing_cycle),
            start_date=start,
            end_date=end,
            next_billing_date=end,
            trial_end_date=trial_end(start, settings.trial_period_days) if start_trial else None,
            auto_renew=True,
        )
        db.add(subscription)
        tenant.plan_id = plan.id
        return subscription

    @staticmethod
    async def get_active_subscription(db: AsyncSession, tenant_id: str) -> Subscription | None:
        """The tenant's ACTIVE or TRIAL subscription, if any."""
        result = await db.execute(
            select(Subscription)
            .where(
                Subscription.tenant_id == tenant_id,
                Subscription.status.in_([status.value for status in CURRENT_STATUSES]),
            )
            .order_by(Subscription.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_active_subscription(db: AsyncSession, tenant_id: str) -> Subscription:
        subscription = await SubscriptionLedger.get_active_subscription(db, tenant_id)
        if subscription is None:
            raise TenancyError.not_found(f"No active subscription found for tenant '{tenant_id}'")
        return subscription

    @staticmethod
    async def create_subscription(
        db: AsyncSession,
        tenant_id: str,
        plan_code: str,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        start_trial: bool = False,
    ) -> Subscription:
        """
        Start a subscription for a tenant that has none.

        Raises:
            TenancyError: Unknown tenant or plan (not_found), a current
                subscription already exists (conflict)
        """
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenancyError.not_found(f"Tenant '{tenant_id}' not found")

        plan = await SubscriptionLedger.get_plan(db, plan_code)

        if await SubscriptionLedger.get_active_subscription(db, tenant_id) is not None:
            raise TenancyError.conflict("Tenant already has an active subscription")

        subscription = SubscriptionLedger.open_subscription(
            db, tenant, plan, billing_cycle=billing_cycle, start_trial=start_trial
        )
        await db.commit()
        tenant_verifiers.invalidate(tenant_id)

        logger.info(f"Subscription created for tenant {tenant_id}: {plan.code} plan")
        return subscription

    @staticmethod
    async def get_subscription_usage(
        db: AsyncSession,
        gateway: IdentityProviderGateway,
        tenant_id: str,
    ) -> SubscriptionUsage:
        """
        Current user count from the identity provider measured against the plan.

        Raises:
            TenancyError: No current subscription (not_found) or the identity
                provider could not be reached (provisioning_failed)
        """
        subscription = await SubscriptionLedger.require_active_subscription(db, tenant_id)
        tenant = await db.get(Tenant, tenant_id)
        plan = subscription.plan

        try:
            user_count = await gateway.get_user_count(tenant.realm_name)
        except IdentityProviderError as e:
            raise TenancyError.provisioning_failed(
                f"Could not read user count from identity provider: {e.message}"
            ) from e

        if plan.has_unlimited_users:
            percentage = 0.0
        else:
            percentage = round(user_count * 100 / plan.max_users, 2) if plan.max_users else 100.0

        days_until_renewal = None
        if subscription.next_billing_date is not None:
            next_billing = subscription.next_billing_date
            now = utcnow() if next_billing.tzinfo else utcnow().replace(tzinfo=None)
            days_until_renewal = (next_billing - now).days

        return SubscriptionUsage(
            tenant_id=tenant_id,
            plan_code=plan.code,
            current_users=user_count,
            max_users=plan.max_users,
            usage_percentage=percentage,
            over_limit=not plan.allows_users(user_count),
            days_until_renewal=days_until_renewal,
            has_advanced_analytics=plan.has_advanced_analytics,
            has_priority_support=plan.has_priority_support,
        )

    @staticmethod
    async def check_user_limit(
        db: AsyncSession,
        gateway: IdentityProviderGateway,
        tenant_id: str,
        additional_users: int = 1,
    ) -> None:
        """
        Ensure the tenant may add more users.

        Raises:
            TenancyError: The plan limit would be exceeded (validation); the
                message names the cheapest plan that fits
        """
        usage = await SubscriptionLedger.get_subscription_usage(db, gateway, tenant_id)
        required = usage.current_users + additional_users
        if usage.max_users == -1 or required <= usage.max_users:
            return

        result = await db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.monthly_price)
        )
        suggestion = next((plan for plan in result.scalars() if plan.allows_users(required)), None)

        message = f"User limit reached for plan {usage.plan_code} ({usage.max_users} users)"
        violations = [message]
        if suggestion is not None:
            violations.append(f"Upgrade to {suggestion.code} to allow {required} users")
        raise TenancyError.validation(message, violations)


# Global instance
subscription_ledger = SubscriptionLedger()
