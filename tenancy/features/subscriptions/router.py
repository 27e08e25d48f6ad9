"""
Plan catalog and subscription endpoints.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from tenancy.core.rate_limit import rate_limit
from tenancy.features.auth.dependencies import AdminContext, DbSession, IdentityGateway, TenantContext
from tenancy.features.subscriptions.ledger import SubscriptionLedger
from tenancy.features.subscriptions.lifecycle import SubscriptionLifecycleManager, lifecycle_manager
from tenancy.features.subscriptions.plans import PlanCatalog
from tenancy.models.subscription import Subscription
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.schemas.common import ProcessedCount
from tenancy.schemas.subscription import (
    PlanCreate,
    PlanRead,
    PlanUpdate,
    SubscriptionCancelRequest,
    SubscriptionChangeRequest,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUsage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])
admin_router = APIRouter(
    prefix="/admin/subscriptions",
    tags=["Admin"],
    dependencies=[Depends(rate_limit("admin"))],
)


def get_lifecycle_manager() -> SubscriptionLifecycleManager:
    return lifecycle_manager


Lifecycle = Annotated[SubscriptionLifecycleManager, Depends(get_lifecycle_manager)]


# Plan catalog

@router.get("/plans", response_model=list[PlanRead])
async def list_plans(db: DbSession) -> list[dict]:
    """Available plans, cheapest first."""
    return await PlanCatalog.list_plans(db)


@router.post("/plans", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
async def create_plan(data: PlanCreate, db: DbSession, context: AdminContext) -> SubscriptionPlan:
    return await PlanCatalog.create_plan(db, data)


@router.patch("/plans/{code}", response_model=PlanRead)
async def update_plan(code: str, data: PlanUpdate, db: DbSession, context: AdminContext) -> SubscriptionPlan:
    return await PlanCatalog.update_plan(db, code, data)


# Tenant subscriptions

@router.post("/{tenant_id}", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    tenant_id: str,
    data: SubscriptionCreate,
    context: TenantContext,
    db: DbSession,
) -> Subscription:
    """Start a subscription for a tenant without a current one."""
    return await SubscriptionLedger.create_subscription(
        db,
        tenant_id,
        data.plan_code,
        billing_cycle=data.billing_cycle,
        start_trial=data.start_trial,
    )


@router.get("/{tenant_id}", response_model=SubscriptionRead)
async def get_subscription(tenant_id: str, context: TenantContext, db: DbSession) -> Subscription:
    """The tenant's ACTIVE or TRIAL subscription."""
    return await SubscriptionLedger.require_active_subscription(db, tenant_id)


@router.get("/{tenant_id}/usage", response_model=SubscriptionUsage)
async def get_usage(
    tenant_id: str,
    context: TenantContext,
    db: DbSession,
    gateway: IdentityGateway,
) -> SubscriptionUsage:
    """Current user count against the plan limit."""
    return await SubscriptionLedger.get_subscription_usage(db, gateway, tenant_id)


@router.put("/{tenant_id}/change", response_model=SubscriptionRead)
async def change_subscription(
    tenant_id: str,
    data: SubscriptionChangeRequest,
    context: TenantContext,
    db: DbSession,
    lifecycle: Lifecycle,
) -> Subscription:
    """Move to another plan or billing cycle."""
    if data.reason:
        logger.info(f"Plan change requested by {context.subject} for tenant {tenant_id}: {data.reason}")
    return await lifecycle.change_subscription(
        db,
        tenant_id,
        data.new_plan,
        new_billing_cycle=data.billing_cycle,
        expected_plan_code=data.current_plan,
    )


@router.post("/{tenant_id}/cancel", response_model=SubscriptionRead)
async def cancel_subscription(
    tenant_id: str,
    data: SubscriptionCancelRequest,
    context: TenantContext,
    db: DbSession,
    lifecycle: Lifecycle,
) -> Subscription:
    return await lifecycle.cancel_subscription(db, tenant_id, data.reason)


# Administrative sweeps

@admin_router.post("/process-renewals", response_model=ProcessedCount)
async def run_renewals(context: AdminContext, db: DbSession, lifecycle: Lifecycle) -> ProcessedCount:
    """Run the renewal sweep now instead of waiting for the scheduler."""
    return ProcessedCount(processed=await lifecycle.process_renewals(db))


@admin_router.post("/process-trial-expirations", response_model=ProcessedCount)
async def run_trial_expirations(context: AdminContext, db: DbSession, lifecycle: Lifecycle) -> ProcessedCount:
    """Run the trial expiration sweep now."""
    return ProcessedCount(processed=await lifecycle.process_trial_expirations(db))
