"""
Tenant model.

A tenant is an organization with its own realm in the identity provider.
The tenant id doubles as the realm name.
"""

from enum import Enum

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenancy.models.base import BaseModel


class TenantStatus(str, Enum):
    """Provisioning status of a tenant."""
    PROVISIONING = "PROVISIONING"                # Local rows written, identity provider work pending
    ACTIVE = "ACTIVE"                            # Fully provisioned, may authenticate
    PROVISIONING_FAILED = "PROVISIONING_FAILED"  # Identity provider call failed
    INCOMPLETE = "INCOMPLETE"                    # Identity provider done, local reconciliation failed


class Tenant(BaseModel):
    """
    Tenant (organization) model.

    Client secrets are only ever written in the same commit that sets
    status ACTIVE.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Tenant id, also the realm name"
    )

    # Organization
    company_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Company name as submitted"
    )

    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human-friendly display name"
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    admin_email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Administrator email (unique across tenants)"
    )

    locale: Mapped[str] = mapped_column(String(20), nullable=False, default="en-GB")
    country: Mapped[str] = mapped_column(String(10), nullable=False, default="IN")
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Status
    status: Mapped[TenantStatus] = mapped_column(
        String(50),
        nullable=False,
        default=TenantStatus.PROVISIONING,
        index=True,
        comment="Provisioning status"
    )

    failure_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Why provisioning or reconciliation failed"
    )

    # Identity provider
    identity_provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Identity provider registry key"
    )

    realm_name: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        comment="Realm created for this tenant"
    )

    admin_user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Identity provider id of the administrator"
    )

    api_client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_client_secret: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Confidential API client secret (set only when ACTIVE)"
    )
    ui_client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ui_client_secret: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="UI client secret, empty for public clients (set only when ACTIVE)"
    )

    # Current plan
    plan_id: Mapped[str | None] = mapped_column(
        ForeignKey("subscription_plans.id"),
        nullable=True,
        comment="Plan of the current subscription"
    )

    # Relationships
    plan: Mapped["SubscriptionPlan | None"] = relationship(lazy="selectin")
    subscriptions: Mapped[list["Subscription"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, status={self.status})>"
