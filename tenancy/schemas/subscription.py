"""
Pydantic schemas for plans and subscriptions.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator

from tenancy.models.subscription import BillingCycle, SubscriptionStatus
from tenancy.schemas.common import BaseSchema


class PlanBase(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    max_users: int = Field(..., ge=-1, description="-1 for unlimited")
    monthly_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    has_advanced_analytics: bool = False
    has_priority_support: bool = False
    max_storage_gb: int = Field(1, ge=-1)


class PlanCreate(PlanBase):
    code: str = Field(..., min_length=2, max_length=50, pattern=r"^[A-Za-z0-9_]+$")

    @field_validator("code")
    @classmethod
    def uppercase_code(cls, v: str) -> str:
        return v.upper()


class PlanUpdate(BaseSchema):
    """Administrative plan update (all fields optional)."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    max_users: int | None = Field(None, ge=-1)
    monthly_price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    has_advanced_analytics: bool | None = None
    has_priority_support: bool | None = None
    max_storage_gb: int | None = Field(None, ge=-1)
    is_active: bool | None = None


class PlanRead(PlanBase):
    id: str
    code: str
    is_active: bool


class SubscriptionCreate(BaseSchema):
    plan_code: str = Field(..., min_length=2, max_length=50)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    start_trial: bool = False


class SubscriptionChangeRequest(BaseSchema):
    current_plan: str | None = Field(None, description="Plan code the caller believes is current")
    new_plan: str = Field(..., min_length=2, max_length=50)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    reason: str | None = Field(None, max_length=500)


class SubscriptionCancelRequest(BaseSchema):
    reason: str = Field("Cancelled by tenant", min_length=1, max_length=500)


class SubscriptionRead(BaseSchema):
    id: str
    tenant_id: str
    plan: PlanRead
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    current_price: Decimal
    start_date: datetime
    end_date: datetime | None = None
    next_billing_date: datetime | None = None
    trial_end_date: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    auto_renew: bool


class SubscriptionUsage(BaseSchema):
    """Identity provider user count measured against the plan limit."""

    tenant_id: str
    plan_code: str
    current_users: int
    max_users: int
    usage_percentage: float
    over_limit: bool
    days_until_renewal: int | None = None
    has_advanced_analytics: bool
    has_priority_support: bool
