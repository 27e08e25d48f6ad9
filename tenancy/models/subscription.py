"""
Subscription model and its lifecycle enums.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenancy.models.base import BaseModel


class SubscriptionStatus(str, Enum):
    """Subscription status. Transitions only move forward; nothing returns to TRIAL."""
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"


CURRENT_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class BillingCycle(str, Enum):
    """Billing cycle length."""
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class Subscription(BaseModel):
    """
    A tenant's subscription to a plan.

    At most one ACTIVE or TRIAL row exists per tenant; plan changes cancel
    the current row and insert a new one. The version column is an
    optimistic lock shared by sweeps and user-initiated changes.
    """

    __tablename__ = "subscriptions"

    tenant_id: Mapped[str] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    plan_id: Mapped[str] = mapped_column(
        ForeignKey("subscription_plans.id"),
        nullable=False,
    )

    status: Mapped[SubscriptionStatus] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Lifecycle status"
    )

    billing_cycle: Mapped[BillingCycle] = mapped_column(
        String(50),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )

    current_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Price for one billing cycle"
    )

    # Billing period
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_billing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    trial_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic lock counter"
    )

    # Relationships
    plan: Mapped["SubscriptionPlan"] = relationship(lazy="selectin")
    tenant: Mapped["Tenant"] = relationship(back_populates="subscriptions", lazy="noload")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_subscriptions_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_current(self) -> bool:
        return self.status in CURRENT_STATUSES

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"
