"""
Subscription plan catalog.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import BaseModel

UNLIMITED = -1


class SubscriptionPlan(BaseModel):
    """A purchasable plan. max_users of -1 means unlimited."""

    __tablename__ = "subscription_plans"

    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Plan code (FREE, BASIC, PRO, ENTERPRISE)"
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    max_users: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Maximum users, -1 for unlimited"
    )

    monthly_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Base monthly price"
    )

    has_advanced_analytics: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_priority_support: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    max_storage_gb: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Storage quota in GB, -1 for unlimited"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Inactive plans cannot be subscribed to"
    )

    @property
    def has_unlimited_users(self) -> bool:
        return self.max_users == UNLIMITED

    def allows_users(self, user_count: int) -> bool:
        """True if user_count fits within this plan."""
        return self.has_unlimited_users or user_count <= self.max_users

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(code={self.code})>"
