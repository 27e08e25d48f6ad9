"""
Identity provider gateway contract.

Every provider (Keycloak, the in-memory provider used in development and
tests) implements IdentityProviderGateway. Calls never retry; callers
decide what a failure means.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

from pydantic import BaseModel, Field

from tenancy.config import Settings

REALM_NAME_PATTERN = r"^[a-zA-Z0-9-_]+$"


class IdentityProviderError(Exception):
    """Raised when an identity provider call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class IdentityProviderConflict(IdentityProviderError):
    """Raised when the object being created already exists."""


class RealmSettings(BaseModel):
    """Realm defaults passed through to the identity provider unmodified."""

    access_token_lifespan: int = 300
    sso_session_idle_timeout: int = 1800
    sso_session_max_lifespan: int = 36000
    password_policy: str | None = None
    otp_policy_type: str = "totp"
    otp_policy_digits: int = 6
    otp_policy_period: int = 30
    login_with_email_allowed: bool = True
    verify_email: bool = True
    registration_allowed: bool = False
    remember_me: bool = True
    default_locale: str = "en"
    social_logins: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings, locale: str | None = None) -> "RealmSettings":
        return cls(
            access_token_lifespan=settings.realm_access_token_lifespan,
            sso_session_idle_timeout=settings.realm_sso_session_idle_timeout,
            sso_session_max_lifespan=settings.realm_sso_session_max_lifespan,
            password_policy=settings.realm_password_policy,
            otp_policy_type=settings.realm_otp_policy_type,
            otp_policy_digits=settings.realm_otp_policy_digits,
            otp_policy_period=settings.realm_otp_policy_period,
            login_with_email_allowed=settings.realm_allow_email_as_username,
            verify_email=settings.realm_email_verification_required,
            registration_allowed=settings.realm_registration_allowed,
            remember_me=settings.realm_remember_me,
            default_locale=(locale or "en").split("-")[0],
            social_logins=dict(settings.realm_social_logins),
        )


@dataclass(frozen=True)
class RealmHandle:
    name: str
    issuer: str


@dataclass(frozen=True)
class UserHandle:
    id: str
    username: str
    email: str


@dataclass(frozen=True)
class ClientHandle:
    client_id: str
    internal_id: str
    confidential: bool
    secret: str | None = None

    def __repr__(self) -> str:
        # Secrets stay out of reprs and therefore out of logs
        return f"ClientHandle(client_id={self.client_id!r}, confidential={self.confidential})"


class IdentityProviderGateway(ABC):
    """Operations the provisioning saga and subscription services need."""

    name: str = "abstract"
    token_algorithms: list[str] = ["RS256"]

    @abstractmethod
    async def create_realm(
        self,
        realm: str,
        display_name: str,
        realm_settings: RealmSettings,
    ) -> RealmHandle:
        """
        Create an isolated realm.

        Raises:
            IdentityProviderConflict: The realm already exists
            IdentityProviderError: Any other failure
        """

    @abstractmethod
    async def create_realm_roles(
        self,
        realm: str,
        role_names: Sequence[str],
        realm_settings: RealmSettings,
    ) -> None:
        """Create realm roles; roles that already exist are left alone."""

    @abstractmethod
    async def create_user(
        self,
        realm: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        realm_settings: RealmSettings,
        force_password_reset: bool = True,
        roles: Sequence[str] = (),
    ) -> UserHandle:
        """Create a user with the email as username and assign realm roles."""

    async def create_admin_user(
        self,
        realm: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        realm_settings: RealmSettings,
        force_password_reset: bool = True,
    ) -> UserHandle:
        """Create the realm administrator (a user holding the admin role)."""
        return await self.create_user(
            realm,
            email,
            password,
            first_name,
            last_name,
            realm_settings,
            force_password_reset=force_password_reset,
            roles=("admin",),
        )

    @abstractmethod
    async def create_client(
        self,
        realm: str,
        client_id: str,
        display_name: str,
        confidential: bool,
        realm_settings: RealmSettings,
    ) -> ClientHandle:
        """Create an OIDC client. Confidential clients get a generated secret."""

    @abstractmethod
    async def realm_exists(self, realm: str) -> bool:
        ...

    @abstractmethod
    async def get_user_count(self, realm: str) -> int:
        ...

    @abstractmethod
    async def get_signing_keys(self, realm: str) -> dict[str, Any]:
        """JWKS used to verify tokens issued by the realm."""

    @abstractmethod
    def realm_url(self, realm: str) -> str:
        """Issuer URL of the realm."""

    @abstractmethod
    def admin_console_url(self, realm: str) -> str:
        ...

    async def aclose(self) -> None:
        """Release network resources."""
