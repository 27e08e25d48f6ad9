"""
Tenant signup and tenant lookup endpoints.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from tenancy.core.exceptions import TenancyError
from tenancy.core.rate_limit import rate_limit
from tenancy.features.auth.dependencies import DbSession, IdentityGateway, PublicContext, TenantContext
from tenancy.features.notifications.router import Notifications
from tenancy.features.tenants.saga import TenantProvisioningSaga
from tenancy.features.tenants.users import TenantUserService
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.models.tenant import Tenant
from tenancy.schemas.common import ErrorResponse
from tenancy.schemas.tenant import SignupRequest, SignupResult, TenantRead, TenantUserCreate, TenantUserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["Tenants"])


def get_signup_saga(gateway: IdentityGateway) -> TenantProvisioningSaga:
    return TenantProvisioningSaga(gateway)


@router.post(
    "/signup",
    response_model=SignupResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("signup"))],
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def signup(
    request: SignupRequest,
    db: DbSession,
    context: PublicContext,
    saga: Annotated[TenantProvisioningSaga, Depends(get_signup_saga)],
) -> SignupResult:
    """
    Register a new organization.

    Creates the tenant, its realm, an administrator and the API/UI clients.
    The administrator receives sign-in instructions by email.
    """
    return await saga.signup(db, request, context)


@router.get("/{tenant_id}", response_model=TenantRead)
async def get_tenant(
    tenant_id: str,
    context: TenantContext,
    db: DbSession,
) -> TenantRead:
    """Tenant details, for tokens issued by the tenant's own realm."""
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise TenancyError.not_found(f"Tenant '{tenant_id}' not found")

    plan = await db.get(SubscriptionPlan, tenant.plan_id) if tenant.plan_id else None

    result = TenantRead.model_validate(tenant)
    result.plan_code = plan.code if plan is not None else None
    return result


def get_tenant_user_service(gateway: IdentityGateway, notifications: Notifications) -> TenantUserService:
    return TenantUserService(gateway, notifications=notifications)


TenantUsers = Annotated[TenantUserService, Depends(get_tenant_user_service)]


@router.post(
    "/{tenant_id}/users",
    response_model=TenantUserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("default"))],
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def create_tenant_user(
    tenant_id: str,
    request: TenantUserCreate,
    context: TenantContext,
    db: DbSession,
    service: TenantUsers,
) -> TenantUserRead:
    """
    Add a user to the tenant's realm.

    Refused once the plan's user limit is reached. The user receives a
    temporary password by email and must change it at first sign-in.
    """
    return await service.create_user(db, tenant_id, request)


@router.get("/{tenant_id}/users", response_model=list[TenantUserRead])
async def list_tenant_users(
    tenant_id: str,
    context: TenantContext,
    db: DbSession,
) -> list[TenantUserRead]:
    return await TenantUserService.list_users(db, tenant_id)
