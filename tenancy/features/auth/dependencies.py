"""
Authentication dependencies for dependency injection.

Two callers exist:

- Tenants, who present a bearer token issued by their own realm. The token
  is checked against a verifier built from the tenant's signing keys.
- Operators, who present the administrative API token in X-Admin-Token.
"""

import logging
from typing import Annotated

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.core.context import RequestContext, tenant_id_var
from tenancy.core.database import get_db
from tenancy.core.exceptions import forbidden, unauthorized
from tenancy.core.security import (
    TenantTokenVerifier,
    TokenVerificationError,
    tenant_verifiers,
    verify_admin_token,
)
from tenancy.features.identity.base import IdentityProviderError, IdentityProviderGateway
from tenancy.features.identity.registry import get_identity_gateway
from tenancy.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]
IdentityGateway = Annotated[IdentityProviderGateway, Depends(get_identity_gateway)]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def get_request_context(request: Request) -> RequestContext:
    """Context for unauthenticated endpoints such as signup."""
    return RequestContext(request_id=_request_id(request))


async def require_admin(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Require the administrative API token."""
    if not x_admin_token:
        raise unauthorized("Admin token required")
    if not verify_admin_token(x_admin_token):
        logger.warning(f"Rejected admin token on {request.url.path}")
        raise forbidden("Invalid admin token")
    return RequestContext(request_id=_request_id(request), is_admin=True)


async def require_tenant(
    tenant_id: str,
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: DbSession,
    gateway: IdentityGateway,
) -> RequestContext:
    """
    Require a bearer token issued by the realm of the tenant in the path.

    Only ACTIVE tenants can authenticate; their verifier is built on first
    use and cached until the tenant changes.
    """
    if not credentials:
        raise unauthorized("Authentication required")

    async def load_verifier(key: str) -> TenantTokenVerifier | None:
        tenant = await db.get(Tenant, key)
        if tenant is None or tenant.status != TenantStatus.ACTIVE:
            return None
        try:
            jwks = await gateway.get_signing_keys(tenant.realm_name)
        except IdentityProviderError as e:
            logger.error(f"Could not load signing keys for tenant {key}: {e.message}")
            return None
        return TenantTokenVerifier(
            tenant_id=key,
            issuer=gateway.realm_url(tenant.realm_name),
            jwks=jwks,
            algorithms=list(gateway.token_algorithms),
        )

    verifier = await tenant_verifiers.get(tenant_id, load_verifier)
    if verifier is None:
        raise unauthorized("Tenant is not available for authentication")

    try:
        claims = verifier.verify(credentials.credentials)
    except TokenVerificationError as e:
        logger.warning(f"Token verification failed for tenant {tenant_id}: {e}")
        raise unauthorized("Invalid or expired token")

    request.state.tenant_id = tenant_id
    tenant_id_var.set(tenant_id)

    return RequestContext(
        request_id=_request_id(request),
        tenant_id=tenant_id,
        subject=claims.get("sub"),
    )


# Type aliases for cleaner code
PublicContext = Annotated[RequestContext, Depends(get_request_context)]
AdminContext = Annotated[RequestContext, Depends(require_admin)]
TenantContext = Annotated[RequestContext, Depends(require_tenant)]
