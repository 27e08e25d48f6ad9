"""
Signup request validation.

Every rule runs and every violation is reported together. Rules that
detect a clash with existing data are conflicts; when only conflicts were
found the error kind is CONFLICT, otherwise VALIDATION.
"""

import re
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenancy.config import Settings
from tenancy.core.exceptions import TenancyError
from tenancy.features.account.verification import normalize_phone_number
from tenancy.features.identity.base import REALM_NAME_PATTERN
from tenancy.features.tenants.id_allocator import RESERVED_IDS, normalize
from tenancy.models.tenant import Tenant
from tenancy.schemas.tenant import SignupRequest


@dataclass(frozen=True)
class Violation:
    message: str
    conflict: bool = False


def check_request(request: SignupRequest, config: Settings) -> list[Violation]:
    """Rules that only look at the request itself."""
    violations: list[Violation] = []

    if not request.accept_terms:
        violations.append(Violation("Terms and conditions must be accepted"))

    company = request.company_name.strip().lower()
    if company in RESERVED_IDS or normalize(company) in RESERVED_IDS:
        violations.append(Violation(f"Company name '{request.company_name}' is reserved"))

    domain = request.admin_email.rsplit("@", 1)[-1].lower()
    allowed = config.signup_allowed_email_domains
    if allowed and domain not in allowed:
        violations.append(
            Violation("Only corporate email addresses from approved domains are allowed")
        )

    display_name = request.display_name.lower()
    if any(term.lower() in display_name for term in config.signup_blocked_terms):
        violations.append(Violation("Display name contains inappropriate content"))

    forbidden = {role.lower() for role in request.default_roles} & set(config.signup_forbidden_roles)
    for role in sorted(forbidden):
        violations.append(Violation(f"Cannot create tenant with '{role}' role"))

    if request.mobile_number:
        try:
            normalize_phone_number(request.mobile_number, config.default_phone_country_code)
        except TenancyError:
            violations.append(Violation("Invalid mobile number"))

    return violations


async def check_existing(db: AsyncSession, request: SignupRequest) -> list[Violation]:
    """Rules that compare the request with stored tenants."""
    violations: list[Violation] = []

    taken = await db.scalar(
        select(func.count())
        .select_from(Tenant)
        .where(func.lower(Tenant.admin_email) == request.admin_email.lower())
    )
    if taken:
        violations.append(
            Violation(f"Email '{request.admin_email}' is already registered as an admin", conflict=True)
        )

    return violations


async def check_allocated_id(db: AsyncSession, tenant_id: str) -> list[Violation]:
    """Rules for the id chosen by the allocator (it is also the realm name)."""
    violations: list[Violation] = []

    if not re.match(REALM_NAME_PATTERN, tenant_id):
        violations.append(
            Violation("Tenant ID can only contain letters, numbers, hyphens and underscores")
        )

    if await db.get(Tenant, tenant_id) is not None:
        violations.append(Violation(f"Tenant ID '{tenant_id}' is already taken", conflict=True))

    return violations


def raise_for_violations(violations: list[Violation]) -> None:
    """
    Raise one TenancyError carrying every violation.

    Raises:
        TenancyError: CONFLICT when every violation is a conflict, otherwise VALIDATION
    """
    if not violations:
        return

    messages = [violation.message for violation in violations]
    if all(violation.conflict for violation in violations):
        raise TenancyError.conflict("Signup conflicts with an existing organization", messages)
    raise TenancyError.validation("Signup request is invalid", messages)
