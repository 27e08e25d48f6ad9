"""
Tenant id allocation.

Turns a company name into a tenant id that is safe to use as a realm name:
lowercase alphanumerics with single interior hyphens, 3 to 20 characters,
never a reserved word. Allocation itself has no side effects; uniqueness is
checked through a caller-supplied async predicate.
"""

import logging
import re
import secrets
import string
from typing import Awaitable, Callable

from tenancy.core.exceptions import TenancyError

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[a-z0-9](?:-?[a-z0-9]){2,19}$")
RESERVED_IDS = frozenset({"admin", "system", "master", "keycloak", "auth", "api", "www", "support"})
MAX_ATTEMPTS = 5
SUFFIX_LENGTH = 3
MAX_LENGTH = 20

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

ExistsPredicate = Callable[[str], Awaitable[bool]]


def normalize(company_name: str | None) -> str:
    """
    Lowercase, turn every run of non-alphanumerics into one hyphen and trim hyphens.

    >>> normalize("  Acme Corp!! ")
    'acme-corp'
    """
    if not company_name:
        return ""
    lowered = company_name.strip().lower()
    hyphenated = re.sub(r"[^a-z0-9]+", "-", lowered)
    return hyphenated.strip("-")


def is_valid_tenant_id(candidate: str | None) -> bool:
    return bool(candidate) and TENANT_ID_PATTERN.match(candidate) is not None and candidate not in RESERVED_IDS


def random_suffix() -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def random_tenant_id() -> str:
    """Fallback id: 't' followed by 10 hex digits. Always valid."""
    return "t" + secrets.token_hex(5)


class TenantIdAllocator:
    """Proposes tenant ids and resolves collisions with a bounded number of retries."""

    def __init__(self, max_attempts: int = MAX_ATTEMPTS):
        self.max_attempts = max_attempts

    def allocate(self, company_name: str | None) -> str:
        """
        Propose a candidate id for a company name.

        Tries the normalized name, then the normalized name with a random
        suffix, then a fully random id.
        """
        normalized = normalize(company_name)
        if is_valid_tenant_id(normalized):
            return normalized

        suffixed = self._with_suffix(normalized)
        if is_valid_tenant_id(suffixed):
            return suffixed

        return random_tenant_id()

    async def ensure_unique(self, candidate: str, exists: ExistsPredicate) -> str:
        """
        Return candidate if nobody uses it, otherwise a suffixed or random variant.

        Args:
            candidate: Id proposed by allocate()
            exists: Async predicate, True when an id is already taken

        Raises:
            TenancyError: Even random ids kept colliding (conflict)
        """
        if not await exists(candidate):
            return candidate

        base = candidate
        for attempt in range(1, self.max_attempts + 1):
            suffixed = self._with_suffix(base)
            if is_valid_tenant_id(suffixed) and not await exists(suffixed):
                logger.info(f"Tenant id {candidate} taken, using {suffixed} (attempt {attempt})")
                return suffixed

        for _ in range(self.max_attempts):
            fallback = random_tenant_id()
            if not await exists(fallback):
                logger.info(f"Tenant id {candidate} exhausted suffixes, using {fallback}")
                return fallback

        raise TenancyError.conflict(f"Could not allocate a unique tenant id for '{candidate}'")

    @staticmethod
    def _with_suffix(base: str) -> str:
        # Leave room for "-" and the suffix within MAX_LENGTH
        trimmed = base[: MAX_LENGTH - SUFFIX_LENGTH - 1].rstrip("-")
        return f"{trimmed}-{random_suffix()}" if trimmed else random_suffix()
