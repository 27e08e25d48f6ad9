"""
Tenant user management.

New users are created in the tenant's realm only while the plan has room
for them. The identity provider is authoritative; a local mirror row and an
invitation email follow the creation.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import Settings, settings as default_settings
from tenancy.core.exceptions import TenancyError
from tenancy.core.security import generate_temporary_password
from tenancy.features.identity.base import (
    IdentityProviderConflict,
    IdentityProviderError,
    IdentityProviderGateway,
    RealmSettings,
)
from tenancy.features.notifications.service import NotificationService, notification_service
from tenancy.features.subscriptions.ledger import SubscriptionLedger
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.models.user import User
from tenancy.schemas.tenant import TenantUserCreate

logger = logging.getLogger(__name__)


class TenantUserService:
    """Creates and lists the users of an active tenant."""

    def __init__(
        self,
        gateway: IdentityProviderGateway,
        notifications: NotificationService | None = None,
        config: Settings | None = None,
    ):
        self.gateway = gateway
        self.notifications = notifications or notification_service
        self.config = config or default_settings

    async def create_user(self, db: AsyncSession, tenant_id: str, request: TenantUserCreate) -> User:
        """
        Create a user in the tenant's realm.

        Raises:
            TenancyError: Unknown or inactive tenant (not_found), forbidden role
                or plan user limit reached (validation), email already used in
                the realm (conflict), identity provider failure (provisioning_failed)
        """
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None or tenant.status != TenantStatus.ACTIVE:
            raise TenancyError.not_found(f"Tenant '{tenant_id}' not found")

        roles = [role.lower() for role in request.roles]
        forbidden = [role for role in roles if role in self.config.signup_forbidden_roles]
        if forbidden:
            raise TenancyError.validation(
                "User roles are invalid",
                [f"Cannot assign '{role}' role" for role in forbidden],
            )

        await SubscriptionLedger.check_user_limit(db, self.gateway, tenant_id)

        password = generate_temporary_password()
        try:
            handle = await asyncio.wait_for(
                self.gateway.create_user(
                    tenant.realm_name,
                    request.email,
                    password,
                    request.first_name,
                    request.last_name,
                    RealmSettings.from_settings(self.config, locale=tenant.locale),
                    force_password_reset=True,
                    roles=roles,
                ),
                timeout=self.config.identity_provider_timeout_seconds,
            )
        except IdentityProviderConflict as e:
            raise TenancyError.conflict(f"User '{request.email}' already exists") from e
        except IdentityProviderError as e:
            raise TenancyError.provisioning_failed(f"Could not create user: {e.message}") from e
        except asyncio.TimeoutError as e:
            raise TenancyError.provisioning_failed("Identity provider timed out creating the user") from e

        user = User(
            id=handle.id,
            tenant_id=tenant_id,
            email=handle.email,
            first_name=request.first_name,
            last_name=request.last_name,
        )
        db.add(user)
        await db.commit()
        logger.info(f"User {handle.id} created in tenant {tenant_id}")

        try:
            await self.notifications.send_user_invited(db, tenant, user, password)
        except Exception as e:
            await db.rollback()
            logger.warning(f"Invitation for user {handle.id} not sent: {e}")
            user = await db.get(User, handle.id, populate_existing=True)

        return user

    @staticmethod
    async def list_users(db: AsyncSession, tenant_id: str) -> list[User]:
        result = await db.execute(
            select(User).where(User.tenant_id == tenant_id).order_by(User.created_at)
        )
        return list(result.scalars())
