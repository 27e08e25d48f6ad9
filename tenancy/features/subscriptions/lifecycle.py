"""
Subscription lifecycle manager.

Time-driven transitions (renewals, trial expirations) and tenant-initiated
plan changes and cancellations.

Sweeps commit one row at a time: each row is re-read under a row lock with
its selection criteria re-applied, so a row already moved by a concurrent
cancel or change is skipped, and one row failing never undoes another.
The version column turns a lost race into StaleDataError, which is logged
and skipped the same way.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tenancy.core.error_tracking import error_tracker
from tenancy.core.exceptions import TenancyError
from tenancy.core.metrics import sweep_rows_total
from tenancy.core.security import tenant_verifiers
from tenancy.features.notifications.service import NotificationService, notification_service
from tenancy.features.subscriptions.ledger import SubscriptionLedger
from tenancy.features.subscriptions.pricing import add_billing_cycle, prorated_change_price
from tenancy.models.base import utcnow
from tenancy.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from tenancy.models.tenant import Tenant

logger = logging.getLogger(__name__)

RowHandler = Callable[[AsyncSession, Subscription, datetime], Awaitable[bool]]


class SubscriptionLifecycleManager:
    """Applies lifecycle rules to stored subscriptions."""

    def __init__(self, notifications: NotificationService | None = None):
        self.notifications = notifications or notification_service

    # Sweeps

    async def process_renewals(self, db: AsyncSession, now: datetime | None = None) -> int:
        """
        Renew or expire ACTIVE subscriptions whose next billing date has passed.

        Auto-renewing rows get a new period starting at the previous
        next_billing_date; the others become EXPIRED.

        Returns:
            Number of rows renewed or expired
        """
        now = now or utcnow()
        criteria = (
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.next_billing_date.is_not(None),
            Subscription.next_billing_date < now,
        )
        processed = await self._sweep(db, "renewals", criteria, self._renew_row, now)
        logger.info(f"Processed {processed} subscription renewals")
        return processed

    async def process_trial_expirations(self, db: AsyncSession, now: datetime | None = None) -> int:
        """
        Convert or cancel TRIAL subscriptions whose trial has ended.

        Returns:
            Number of trials converted or cancelled
        """
        now = now or utcnow()
        criteria = (
            Subscription.status == SubscriptionStatus.TRIAL.value,
            Subscription.trial_end_date.is_not(None),
            Subscription.trial_end_date < now,
        )
        processed = await self._sweep(db, "trial_expirations", criteria, self._expire_trial_row, now)
        logger.info(f"Processed {processed} trial expirations")
        return processed

    async def _sweep(
        self,
        db: AsyncSession,
        sweep: str,
        criteria: tuple,
        handler: RowHandler,
        now: datetime,
    ) -> int:
        ids = list(await db.scalars(select(Subscription.id).where(*criteria).order_by(Subscription.id)))
        await db.rollback()  # release the read snapshot before per-row transactions

        processed = 0
        for subscription_id in ids:
            try:
                subscription = await db.scalar(
                    select(Subscription)
                    .where(Subscription.id == subscription_id, *criteria)
                    .with_for_update(skip_locked=True)
                    .execution_options(populate_existing=True)
                )
                if subscription is None:
                    await db.rollback()
                    sweep_rows_total.labels(sweep=sweep, outcome="skipped").inc()
                    logger.info(f"Sweep {sweep}: subscription {subscription_id} changed or locked, skipped")
                    continue

                notify = await handler(db, subscription, now)
                await db.commit()

            except StaleDataError as e:
                await db.rollback()
                sweep_rows_total.labels(sweep=sweep, outcome="skipped").inc()
                logger.warning(f"Sweep {sweep}: subscription {subscription_id} modified concurrently: {e}")
                continue

            except Exception as e:
                await db.rollback()
                sweep_rows_total.labels(sweep=sweep, outcome="failed").inc()
                logger.error(f"Sweep {sweep}: subscription {subscription_id} failed: {e}")
                error_tracker.capture_exception(
                    e, context={"sweep": sweep, "subscription_id": subscription_id}
                )
                continue

            processed += 1
            sweep_rows_total.labels(sweep=sweep, outcome="applied").inc()
            if notify:
                await self._notify_trial_ended(db, subscription)

        return processed

    @staticmethod
    async def _renew_row(db: AsyncSession, subscription: Subscription, now: datetime) -> bool:
        if subscription.auto_renew:
            new_start = subscription.next_billing_date
            new_end = add_billing_cycle(new_start, BillingCycle(subscription.billing_cycle))
            subscription.start_date = new_start
            subscription.end_date = new_end
            subscription.next_billing_date = new_end
            logger.info(f"Renewed subscription {subscription.id} for tenant {subscription.tenant_id}")
        else:
            SubscriptionLedger.transition(subscription, SubscriptionStatus.EXPIRED, trigger="renewal_sweep")
            logger.info(f"Expired subscription {subscription.id} for tenant {subscription.tenant_id}")
        return False

    @staticmethod
    async def _expire_trial_row(db: AsyncSession, subscription: Subscription, now: datetime) -> bool:
        if subscription.auto_renew:
            SubscriptionLedger.transition(subscription, SubscriptionStatus.ACTIVE, trigger="trial_sweep")
            subscription.trial_end_date = None
            return True

        SubscriptionLedger.cancel(subscription, "Trial expired", trigger="trial_sweep", now=now)
        return False

    async def _notify_trial_ended(self, db: AsyncSession, subscription: Subscription) -> None:
        """Best effort; a failed notification never affects the converted trial or the sweep."""
        try:
            tenant = await db.get(Tenant, subscription.tenant_id)
            if tenant is not None:
                await self.notifications.send_trial_ended(db, tenant, subscription.plan.name)
        except Exception as e:
            await db.rollback()
            logger.warning(f"Failed to send trial ended notification for {subscription.tenant_id}: {e}")

    # Tenant-initiated changes

    async def change_subscription(
        self,
        db: AsyncSession,
        tenant_id: str,
        new_plan_code: str,
        new_billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        expected_plan_code: str | None = None,
    ) -> Subscription:
        """
        Switch the tenant to another plan or billing cycle.

        The current subscription is cancelled and a new ACTIVE one inserted
        in the same transaction.

        Raises:
            TenancyError: Nothing would change or the caller's view of the
                current plan is stale (validation); unknown tenant, plan or
                no current subscription (not_found)
        """
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenancyError.not_found(f"Tenant '{tenant_id}' not found")

        new_plan = await SubscriptionLedger.get_plan(db, new_plan_code)
        current = await SubscriptionLedger.require_active_subscription(db, tenant_id)

        if expected_plan_code and current.plan.code != expected_plan_code.upper():
            raise TenancyError.validation(
                f"Current plan is {current.plan.code}, not {expected_plan_code.upper()}"
            )

        new_billing_cycle = BillingCycle(new_billing_cycle)
        if current.plan.code == new_plan.code and current.billing_cycle == new_billing_cycle:
            raise TenancyError.validation("No changes detected")

        now = utcnow()
        previous_code = current.plan.code
        SubscriptionLedger.cancel(current, f"Upgraded to {new_plan.code}", trigger="plan_change", now=now)

        replacement = SubscriptionLedger.open_subscription(
            db, tenant, new_plan, billing_cycle=new_billing_cycle, now=now
        )
        replacement.current_price = prorated_change_price(new_plan.monthly_price, new_billing_cycle)

        try:
            await db.commit()
        except StaleDataError as e:
            await db.rollback()
            raise TenancyError.conflict("Subscription was modified concurrently, retry the change") from e

        tenant_verifiers.invalidate(tenant_id)
        logger.info(f"Subscription changed for tenant {tenant_id}: {previous_code} -> {new_plan.code}")
        return replacement

    async def cancel_subscription(self, db: AsyncSession, tenant_id: str, reason: str) -> Subscription:
        """
        Cancel the tenant's current subscription and stop auto-renewal.

        Raises:
            TenancyError: No current subscription (not_found)
        """
        subscription = await SubscriptionLedger.require_active_subscription(db, tenant_id)
        SubscriptionLedger.cancel(subscription, reason, trigger="tenant_cancel")
        subscription.auto_renew = False

        try:
            await db.commit()
        except StaleDataError as e:
            await db.rollback()
            raise TenancyError.conflict("Subscription was modified concurrently, retry the cancellation") from e

        logger.info(f"Subscription cancelled for tenant {tenant_id}: {reason}")
        return subscription


# Global instance
lifecycle_manager = SubscriptionLifecycleManager()
