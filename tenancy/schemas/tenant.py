"""
Pydantic schemas for tenant signup and tenant reads.
"""

from datetime import datetime

from pydantic import EmailStr, Field

from tenancy.models.tenant import TenantStatus
from tenancy.schemas.common import BaseSchema


class SignupRequest(BaseSchema):
    """Self-service organization signup."""

    company_name: str = Field(..., min_length=3, max_length=30, description="Company name, source of the tenant id")
    display_name: str = Field(..., min_length=3, max_length=100)
    admin_email: EmailStr
    admin_first_name: str = Field(..., min_length=2, max_length=50)
    admin_last_name: str = Field(..., min_length=2, max_length=50)
    admin_password: str | None = Field(
        None,
        min_length=12,
        max_length=128,
        description="Initial administrator password; generated when omitted",
    )
    description: str | None = Field(None, max_length=255)
    accept_terms: bool = False
    default_roles: list[str] = Field(default_factory=list)
    mobile_number: str | None = Field(None, max_length=50)
    country: str = Field("IN", min_length=2, max_length=10)
    locale: str = Field("en-GB", min_length=2, max_length=20)
    subscription_plan: str | None = Field(None, description="Plan code, FREE when omitted")
    start_trial: bool = False


class SignupResult(BaseSchema):
    """
    Outcome of a successful signup.

    Carries no client secrets and no password.
    """

    tenant_id: str
    realm_name: str
    admin_email: str
    api_client_id: str
    ui_client_id: str
    status: TenantStatus
    message: str
    login_url: str
    admin_console_url: str
    realm_url: str


class TenantRead(BaseSchema):
    """Tenant as seen by its own administrators."""

    id: str
    company_name: str
    display_name: str
    description: str | None = None
    admin_email: str
    locale: str
    country: str
    status: TenantStatus
    identity_provider: str
    realm_name: str
    api_client_id: str | None = None
    ui_client_id: str | None = None
    plan_code: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class TenantUserCreate(BaseSchema):
    """A user added to an existing tenant by its administrators."""

    email: EmailStr
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    roles: list[str] = Field(default_factory=lambda: ["user"])


class TenantUserRead(BaseSchema):
    id: str
    tenant_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    status: str
    created_at: datetime
