"""
Subscription plan catalog.

The catalog is read far more often than it changes, so listings are cached
in Redis and the namespace is dropped on every write.
"""

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.cache import cache_manager, cached
from tenancy.core.exceptions import TenancyError
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.schemas.subscription import PlanCreate, PlanRead, PlanUpdate

logger = logging.getLogger(__name__)

PLAN_CACHE_NAMESPACE = "plans"

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "code": "FREE",
        "name": "Free",
        "description": "Basic access with limited features",
        "max_users": 2,
        "monthly_price": Decimal("0.00"),
        "max_storage_gb": 1,
    },
    {
        "code": "BASIC",
        "name": "Basic",
        "description": "Standard features for individuals",
        "max_users": 10,
        "monthly_price": Decimal("9.99"),
        "max_storage_gb": 10,
    },
    {
        "code": "PRO",
        "name": "Pro",
        "description": "Advanced features for small teams",
        "max_users": 100,
        "monthly_price": Decimal("29.99"),
        "has_advanced_analytics": True,
        "max_storage_gb": 50,
    },
    {
        "code": "ENTERPRISE",
        "name": "Enterprise",
        "description": "All features with priority support",
        "max_users": 20000,
        "monthly_price": Decimal("99.99"),
        "has_advanced_analytics": True,
        "has_priority_support": True,
        "max_storage_gb": 500,
    },
]


class PlanCatalog:
    """Plan listing and administration."""

    @staticmethod
    async def seed_plans(db: AsyncSession) -> int:
        """Insert the default plans when the catalog is empty. Returns rows inserted."""
        existing = await db.scalar(select(func.count()).select_from(SubscriptionPlan))
        if existing:
            return 0

        for values in DEFAULT_PLANS:
            db.add(SubscriptionPlan(**values))
        await db.commit()
        await cache_manager.invalidate_namespace(PLAN_CACHE_NAMESPACE)

        logger.info(f"Seeded {len(DEFAULT_PLANS)} subscription plans")
        return len(DEFAULT_PLANS)

    @staticmethod
    @cached(
        namespace=PLAN_CACHE_NAMESPACE,
        ttl=300,
        key_builder=lambda db, include_inactive=False: "all" if include_inactive else "active",
    )
    async def list_plans(db: AsyncSession, include_inactive: bool = False) -> list[dict[str, Any]]:
        """Plans ordered by monthly price, cheapest first."""
        query = select(SubscriptionPlan).order_by(SubscriptionPlan.monthly_price, SubscriptionPlan.code)
        if not include_inactive:
            query = query.where(SubscriptionPlan.is_active.is_(True))

        result = await db.execute(query)
        return [PlanRead.model_validate(plan).model_dump(mode="json") for plan in result.scalars()]

    @staticmethod
    async def create_plan(db: AsyncSession, data: PlanCreate) -> SubscriptionPlan:
        """
        Add a plan to the catalog.

        Raises:
            TenancyError: A plan with the same code exists (conflict)
        """
        if await db.scalar(select(SubscriptionPlan.id).where(SubscriptionPlan.code == data.code)):
            raise TenancyError.conflict(f"Subscription plan '{data.code}' already exists")

        plan = SubscriptionPlan(**data.model_dump())
        db.add(plan)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise TenancyError.conflict(f"Subscription plan '{data.code}' already exists") from e

        await cache_manager.invalidate_namespace(PLAN_CACHE_NAMESPACE)
        logger.info(f"Subscription plan created: {plan.code}")
        return plan

    @staticmethod
    async def update_plan(db: AsyncSession, code: str, data: PlanUpdate) -> SubscriptionPlan:
        """
        Update plan attributes. Existing subscriptions keep their price.

        Raises:
            TenancyError: Unknown plan (not_found)
        """
        plan = await db.scalar(select(SubscriptionPlan).where(SubscriptionPlan.code == code.upper()))
        if plan is None:
            raise TenancyError.not_found(f"Subscription plan '{code}' not found")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(plan, field, value)
        await db.commit()

        await cache_manager.invalidate_namespace(PLAN_CACHE_NAMESPACE)
        logger.info(f"Subscription plan updated: {plan.code}")
        return plan


# Global instance
plan_catalog = PlanCatalog()
