"""
Security utilities.

Provides:
- Temporary administrator password generation
- Administrative token comparison
- Per-tenant access token verification (JWT signed by the tenant's realm)
"""

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from cachetools import LRUCache
from jose import JWTError, jwt

from tenancy.config import settings

logger = logging.getLogger(__name__)

PASSWORD_SPECIALS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
PASSWORD_CLASSES = (
    string.ascii_lowercase,
    string.ascii_uppercase,
    string.digits,
    PASSWORD_SPECIALS,
)
TEMPORARY_PASSWORD_LENGTH = 16

_random = secrets.SystemRandom()


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """
    Generate a temporary password from a cryptographically secure source.

    The result holds at least one lowercase letter, one uppercase letter,
    one digit and one symbol, in shuffled order.

    Args:
        length: Total length, at least one character per class

    Returns:
        The generated password
    """
    if length < len(PASSWORD_CLASSES):
        raise ValueError(f"Password length must be at least {len(PASSWORD_CLASSES)}")

    alphabet = "".join(PASSWORD_CLASSES)
    chars = [secrets.choice(charset) for charset in PASSWORD_CLASSES]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    _random.shuffle(chars)
    return "".join(chars)


def verify_admin_token(candidate: str | None) -> bool:
    """Constant-time comparison against the configured administrative token."""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode(), settings.admin_api_token.encode())


class TokenVerificationError(Exception):
    """Raised when a tenant access token cannot be verified."""


@dataclass
class TenantTokenVerifier:
    """Verifies access tokens issued by one tenant's realm."""

    tenant_id: str
    issuer: str
    jwks: dict[str, Any]
    algorithms: list[str] = field(default_factory=lambda: ["RS256", "HS256"])

    def verify(self, token: str) -> dict[str, Any]:
        """
        Decode and verify a bearer token.

        Returns:
            The token claims

        Raises:
            TokenVerificationError: Bad signature, wrong issuer or expired
        """
        try:
            return jwt.decode(
                token,
                self.jwks,
                algorithms=self.algorithms,
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except JWTError as e:
            raise TokenVerificationError(str(e)) from e


VerifierLoader = Callable[[str], Awaitable[TenantTokenVerifier | None]]


class TenantVerifierCache:
    """
    Bounded LRU of per-tenant verifiers.

    Verifiers are built lazily by a loader (which returns None for tenants
    that may not authenticate). Entries are dropped explicitly through
    invalidate() whenever a tenant's configuration changes.
    """

    def __init__(self, maxsize: int):
        self._verifiers: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str, loader: VerifierLoader) -> TenantTokenVerifier | None:
        verifier = self._verifiers.get(tenant_id)
        if verifier is not None:
            return verifier

        async with self._lock:
            verifier = self._verifiers.get(tenant_id)
            if verifier is None:
                verifier = await loader(tenant_id)
                if verifier is not None:
                    self._verifiers[tenant_id] = verifier
                    logger.debug(f"Token verifier cached for tenant {tenant_id}")
        return verifier

    def invalidate(self, tenant_id: str) -> None:
        if self._verifiers.pop(tenant_id, None) is not None:
            logger.info(f"Token verifier invalidated for tenant {tenant_id}")

    def clear(self) -> None:
        self._verifiers.clear()

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._verifiers

    def __len__(self) -> int:
        return len(self._verifiers)


# Global instance
tenant_verifiers = TenantVerifierCache(maxsize=settings.tenant_verifier_cache_size)
