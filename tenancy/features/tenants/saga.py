"""
Tenant provisioning saga.

Signup runs in three phases:

1. Validate, allocate the tenant id and write Tenant(PROVISIONING) plus its
   Subscription in one transaction.
2. With no transaction open, create the realm, roles, admin user, API
   client and UI client in the identity provider, one call at a time, each
   bounded by a timeout. Any failure marks the tenant PROVISIONING_FAILED.
   Whatever was created in the identity provider is left in place for
   manual recovery.
3. Store client ids and secrets and flip the tenant to ACTIVE in one
   commit. If that commit fails the tenant is marked INCOMPLETE.

After phase 3 the local admin user row, the signup notifications and the
mobile verification code are best effort.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import Settings, settings as default_settings
from tenancy.core.context import RequestContext
from tenancy.core.error_tracking import error_tracker
from tenancy.core.exceptions import ErrorKind, TenancyError
from tenancy.core.metrics import identity_provider_step_duration_seconds, tenant_signups_total
from tenancy.core.performance import PerformanceMonitor
from tenancy.core.security import generate_temporary_password, tenant_verifiers
from tenancy.features.account.verification import MobileVerificationService
from tenancy.features.identity.base import (
    ClientHandle,
    IdentityProviderError,
    IdentityProviderGateway,
    RealmSettings,
    UserHandle,
)
from tenancy.features.notifications.service import NotificationService, notification_service
from tenancy.features.subscriptions.ledger import SubscriptionLedger
from tenancy.features.tenants.id_allocator import TenantIdAllocator
from tenancy.features.tenants.validation import (
    Violation,
    check_allocated_id,
    check_existing,
    check_request,
    raise_for_violations,
)
from tenancy.models.subscription_plan import SubscriptionPlan
from tenancy.models.tenant import Tenant, TenantStatus
from tenancy.models.user import User
from tenancy.schemas.tenant import SignupRequest, SignupResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Inserts tried when a concurrent signup takes the allocated tenant id
INSERT_ATTEMPTS = 2


@dataclass
class ProvisionedIdentity:
    """What phase 2 created in the identity provider."""

    admin_user: UserHandle
    api_client: ClientHandle
    ui_client: ClientHandle


class TenantProvisioningSaga:
    """Owns every failure and compensation decision of a signup."""

    def __init__(
        self,
        gateway: IdentityProviderGateway,
        notifications: NotificationService | None = None,
        allocator: TenantIdAllocator | None = None,
        config: Settings | None = None,
        verification: MobileVerificationService | None = None,
    ):
        self.gateway = gateway
        self.notifications = notifications or notification_service
        self.allocator = allocator or TenantIdAllocator()
        self.config = config or default_settings
        self.verification = verification or MobileVerificationService(self.notifications, self.config)

    async def signup(
        self,
        db: AsyncSession,
        request: SignupRequest,
        context: RequestContext,
    ) -> SignupResult:
        """
        Provision a new tenant.

        Raises:
            TenancyError: validation or conflict before anything is written;
                provisioning_failed when the identity provider failed (tenant
                left PROVISIONING_FAILED); reconciliation_incomplete when the
                final commit failed (tenant left INCOMPLETE)
        """
        log = logger.bind(request_id=context.request_id, company_name=request.company_name)

        try:
            tenant, plan, password = await self._prepare(db, request, log)
        except TenancyError as e:
            tenant_signups_total.labels(outcome=e.kind.value).inc()
            log.info("signup_rejected", kind=e.kind.value, violations=e.violations)
            raise

        tenant_id = tenant.id
        log = log.bind(tenant_id=tenant_id)
        log.info("signup_tenant_recorded", plan=plan.code, trial=request.start_trial)

        realm_settings = RealmSettings.from_settings(self.config, locale=request.locale)
        try:
            identity = await self._provision_identity(tenant_id, request, password, realm_settings)
        except Exception as e:
            reason = _describe(e)
            log.error("signup_identity_provisioning_failed", reason=reason)
            await self._mark_failed(db, tenant_id, TenantStatus.PROVISIONING_FAILED, reason, log)
            tenant_signups_total.labels(outcome=ErrorKind.PROVISIONING_FAILED.value).inc()
            raise TenancyError.provisioning_failed(
                f"Failed to provision identity for '{tenant_id}': {reason}",
                tenant_id=tenant_id,
            ) from e

        try:
            await self._reconcile(db, tenant, identity)
        except SQLAlchemyError as e:
            await db.rollback()
            reason = f"Reconciliation failed: {e.__class__.__name__}"
            log.error("signup_reconciliation_failed", reason=str(e))
            await self._mark_failed(db, tenant_id, TenantStatus.INCOMPLETE, reason, log)
            error_tracker.capture_exception(e, context={"tenant_id": tenant_id, "phase": "reconciliation"})
            tenant_signups_total.labels(outcome=ErrorKind.RECONCILIATION_INCOMPLETE.value).inc()
            raise TenancyError.reconciliation_incomplete(
                f"Tenant '{tenant_id}' was provisioned but could not be activated",
                tenant_id=tenant_id,
            ) from e

        tenant_verifiers.invalidate(tenant_id)
        tenant_signups_total.labels(outcome="active").inc()
        log.info("signup_completed")

        result = SignupResult(
            tenant_id=tenant_id,
            realm_name=tenant.realm_name,
            admin_email=tenant.admin_email,
            api_client_id=identity.api_client.client_id,
            ui_client_id=identity.ui_client.client_id,
            status=TenantStatus.ACTIVE,
            message=(
                f"Organization {tenant.display_name} is ready. "
                f"Sign-in instructions were sent to {tenant.admin_email}."
            ),
            login_url=f"{self.config.public_base_url}/login",
            admin_console_url=self.gateway.admin_console_url(tenant.realm_name),
            realm_url=self.gateway.realm_url(tenant.realm_name),
        )

        await self._after_activation(db, tenant_id, request, identity, password, log)
        return result

    # Phase 1

    async def _prepare(
        self,
        db: AsyncSession,
        request: SignupRequest,
        log: Any,
    ) -> tuple[Tenant, SubscriptionPlan, str]:
        violations = check_request(request, self.config)
        violations.extend(await check_existing(db, request))

        plan = None
        plan_code = request.subscription_plan or self.config.signup_default_plan
        try:
            plan = await SubscriptionLedger.get_plan(db, plan_code)
        except TenancyError as e:
            violations.append(Violation(e.message))

        raise_for_violations(violations)

        password = request.admin_password or generate_temporary_password()
        candidate = self.allocator.allocate(request.company_name)

        for attempt in range(1, INSERT_ATTEMPTS + 1):
            tenant_id = await self.allocator.ensure_unique(candidate, lambda c: self._id_taken(db, c))
            raise_for_violations(await check_allocated_id(db, tenant_id))

            tenant = Tenant(
                id=tenant_id,
                company_name=request.company_name,
                display_name=request.display_name,
                description=request.description,
                admin_email=request.admin_email.lower(),
                locale=request.locale,
                country=request.country,
                phone=request.mobile_number,
                status=TenantStatus.PROVISIONING,
                identity_provider=self.gateway.name,
                realm_name=tenant_id,
            )
            db.add(tenant)
            SubscriptionLedger.open_subscription(db, tenant, plan, start_trial=request.start_trial)

            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                # A concurrent signup took the admin email: nothing to retry
                email_taken = await check_existing(db, request)
                if email_taken or attempt == INSERT_ATTEMPTS:
                    raise TenancyError.conflict(
                        "Organization or admin email was registered concurrently",
                        [f"Tenant ID '{tenant_id}' or email '{request.admin_email}' is already taken"],
                    ) from e
                log.info("signup_tenant_id_race_lost", tenant_id=tenant_id, attempt=attempt)
                plan = await SubscriptionLedger.get_plan(db, plan_code)
                continue

            return tenant, plan, password

    async def _id_taken(self, db: AsyncSession, candidate: str) -> bool:
        if await db.get(Tenant, candidate) is not None:
            return True
        try:
            return await self._call("realm_exists", self.gateway.realm_exists(candidate))
        except (IdentityProviderError, asyncio.TimeoutError) as e:
            raise TenancyError.provisioning_failed(
                f"Identity provider unavailable while allocating tenant id: {_describe(e)}"
            ) from e

    # Phase 2

    async def _provision_identity(
        self,
        realm: str,
        request: SignupRequest,
        password: str,
        realm_settings: RealmSettings,
    ) -> ProvisionedIdentity:
        await self._call(
            "create_realm",
            self.gateway.create_realm(realm, request.display_name, realm_settings),
        )
        await self._call(
            "create_realm_roles",
            self.gateway.create_realm_roles(realm, self._realm_roles(request), realm_settings),
        )
        admin_user = await self._call(
            "create_admin_user",
            self.gateway.create_admin_user(
                realm,
                request.admin_email.lower(),
                password,
                request.admin_first_name,
                request.admin_last_name,
                realm_settings,
                force_password_reset=request.admin_password is None,
            ),
        )
        api_client = await self._call(
            "create_api_client",
            self.gateway.create_client(
                realm,
                self.config.api_client_id,
                f"{request.display_name} API",
                True,
                realm_settings,
            ),
        )
        ui_client = await self._call(
            "create_ui_client",
            self.gateway.create_client(
                realm,
                self.config.ui_client_id,
                f"{request.display_name} UI",
                False,
                realm_settings,
            ),
        )
        return ProvisionedIdentity(admin_user=admin_user, api_client=api_client, ui_client=ui_client)

    def _realm_roles(self, request: SignupRequest) -> list[str]:
        roles = list(self.config.signup_realm_roles)
        for role in request.default_roles:
            if role.lower() not in roles:
                roles.append(role.lower())
        return roles

    async def _call(self, step: str, operation: Awaitable[T]) -> T:
        """Run one identity provider call under the configured timeout."""
        async with PerformanceMonitor(
            f"identity_provider.{step}",
            histogram=identity_provider_step_duration_seconds,
            labels={"step": step},
        ):
            return await asyncio.wait_for(operation, timeout=self.config.identity_provider_timeout_seconds)

    # Phase 3

    async def _reconcile(self, db: AsyncSession, tenant: Tenant, identity: ProvisionedIdentity) -> None:
        tenant.admin_user_id = identity.admin_user.id
        tenant.api_client_id = identity.api_client.client_id
        tenant.api_client_secret = identity.api_client.secret
        tenant.ui_client_id = identity.ui_client.client_id
        tenant.ui_client_secret = identity.ui_client.secret
        tenant.failure_reason = None
        tenant.status = TenantStatus.ACTIVE
        await db.commit()

    async def _mark_failed(
        self,
        db: AsyncSession,
        tenant_id: str,
        status: TenantStatus,
        reason: str,
        log: Any,
    ) -> None:
        try:
            tenant = await db.get(Tenant, tenant_id, populate_existing=True)
            tenant.status = status
            tenant.failure_reason = reason[:2000]
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            log.error("signup_status_write_failed", status=status.value, error=str(e))
            error_tracker.capture_exception(e, context={"tenant_id": tenant_id, "status": status.value})
            return
        log.warning("signup_tenant_marked", status=status.value, reason=reason)

    async def _after_activation(
        self,
        db: AsyncSession,
        tenant_id: str,
        request: SignupRequest,
        identity: ProvisionedIdentity,
        password: str,
        log: Any,
    ) -> None:
        """Best effort: failures here are logged and never undo the activation."""
        try:
            db.add(
                User(
                    id=identity.admin_user.id,
                    tenant_id=tenant_id,
                    email=identity.admin_user.email,
                    first_name=request.admin_first_name,
                    last_name=request.admin_last_name,
                )
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            log.warning("signup_local_user_failed", error=str(e))

        try:
            tenant = await db.get(Tenant, tenant_id, populate_existing=True)
            await self.notifications.send_signup_started(db, tenant, request.admin_first_name)
            await self.notifications.send_signup_completed(
                db,
                tenant,
                request.admin_first_name,
                temporary_password=None if request.admin_password else password,
            )
        except Exception as e:
            await db.rollback()
            log.warning("signup_notification_failed", error=str(e))

        if request.mobile_number:
            try:
                await self.verification.send_code(
                    db, request.mobile_number, tenant_id=tenant_id, user_id=identity.admin_user.id
                )
            except Exception as e:
                await db.rollback()
                log.warning("signup_mobile_verification_failed", error=str(e))


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "identity provider call timed out"
    if isinstance(error, IdentityProviderError):
        return error.message
    if isinstance(error, TenancyError):
        return error.message
    return str(error) or error.__class__.__name__
