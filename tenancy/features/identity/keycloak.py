"""
Keycloak implementation of the identity provider gateway.

Talks to the Keycloak Admin REST API with httpx. The admin access token is
obtained from the admin realm (client credentials when a client secret is
configured, password grant otherwise) and reused until shortly before it
expires.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Sequence

import httpx

from tenancy.config import Settings
from tenancy.features.identity.base import (
    ClientHandle,
    IdentityProviderConflict,
    IdentityProviderError,
    IdentityProviderGateway,
    RealmHandle,
    RealmSettings,
    UserHandle,
)

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 30


class KeycloakIdentityProvider(IdentityProviderGateway):
    """Keycloak Admin REST client."""

    name = "keycloak"
    token_algorithms = ["RS256"]

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.server_url = settings.keycloak_server_url.rstrip("/")
        self.admin_realm = settings.keycloak_admin_realm
        self.admin_client_id = settings.keycloak_admin_client_id
        self.admin_client_secret = settings.keycloak_admin_client_secret
        self.admin_username = settings.keycloak_admin_username
        self.admin_password = settings.keycloak_admin_password

        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            timeout=settings.identity_provider_timeout_seconds,
            transport=transport,
        )
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._client.aclose()

    # Admin token

    async def _admin_token(self) -> str:
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            if self.admin_client_secret:
                data = {
                    "grant_type": "client_credentials",
                    "client_id": self.admin_client_id,
                    "client_secret": self.admin_client_secret,
                }
            else:
                data = {
                    "grant_type": "password",
                    "client_id": self.admin_client_id,
                    "username": self.admin_username or "",
                    "password": self.admin_password or "",
                }

            response = await self._send(
                "POST",
                f"/realms/{self.admin_realm}/protocol/openid-connect/token",
                data=data,
                authenticated=False,
            )
            payload = response.json()
            self._access_token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 60))
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            logger.debug("Keycloak admin token refreshed")
            return self._access_token

    async def _send(
        self,
        method: str,
        path: str,
        authenticated: bool = True,
        allowed: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one request and translate failures into IdentityProviderError.

        Args:
            allowed: Error status codes the caller handles itself
        """
        headers = kwargs.pop("headers", {})
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._admin_token()}"

        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Keycloak request {method} {path} failed: {e}") from e

        if response.status_code in allowed or response.is_success:
            return response

        detail = _error_detail(response)
        if response.status_code == 409:
            raise IdentityProviderConflict(detail, status_code=409)
        raise IdentityProviderError(
            f"Keycloak {method} {path} returned {response.status_code}: {detail}",
            status_code=response.status_code,
        )

    # Gateway operations

    async def create_realm(
        self,
        realm: str,
        display_name: str,
        realm_settings: RealmSettings,
    ) -> RealmHandle:
        representation = {
            "realm": realm,
            "displayName": display_name,
            "enabled": True,
            "resetPasswordAllowed": True,
            "loginWithEmailAllowed": realm_settings.login_with_email_allowed,
            "registrationEmailAsUsername": realm_settings.login_with_email_allowed,
            "duplicateEmailsAllowed": False,
            "verifyEmail": realm_settings.verify_email,
            "registrationAllowed": realm_settings.registration_allowed,
            "rememberMe": realm_settings.remember_me,
            "accessTokenLifespan": realm_settings.access_token_lifespan,
            "ssoSessionIdleTimeout": realm_settings.sso_session_idle_timeout,
            "ssoSessionMaxLifespan": realm_settings.sso_session_max_lifespan,
            "otpPolicyType": realm_settings.otp_policy_type,
            "otpPolicyDigits": realm_settings.otp_policy_digits,
            "otpPolicyPeriod": realm_settings.otp_policy_period,
            "internationalizationEnabled": True,
            "defaultLocale": realm_settings.default_locale,
            "supportedLocales": [realm_settings.default_locale],
        }
        if realm_settings.password_policy:
            representation["passwordPolicy"] = realm_settings.password_policy

        await self._send("POST", "/admin/realms", json=representation)
        logger.info(f"Keycloak realm created: {realm}")
        return RealmHandle(name=realm, issuer=self.realm_url(realm))

    async def create_realm_roles(
        self,
        realm: str,
        role_names: Sequence[str],
        realm_settings: RealmSettings,
    ) -> None:
        for role_name in role_names:
            await self._send(
                "POST",
                f"/admin/realms/{realm}/roles",
                json={"name": role_name},
                allowed=(409,),
            )

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
        required_actions = []
        if force_password_reset:
            required_actions.append("UPDATE_PASSWORD")
        if realm_settings.verify_email:
            required_actions.append("VERIFY_EMAIL")

        response = await self._send(
            "POST",
            f"/admin/realms/{realm}/users",
            json={
                "username": email,
                "email": email,
                "firstName": first_name,
                "lastName": last_name,
                "enabled": True,
                "emailVerified": False,
                "requiredActions": required_actions,
                "credentials": [
                    {"type": "password", "value": password, "temporary": force_password_reset}
                ],
            },
        )
        user_id = _created_id(response)

        if roles:
            representations = []
            for role_name in roles:
                role = await self._send("GET", f"/admin/realms/{realm}/roles/{role_name}")
                representations.append(role.json())
            await self._send(
                "POST",
                f"/admin/realms/{realm}/users/{user_id}/role-mappings/realm",
                json=representations,
            )

        logger.info(f"Keycloak user created in realm {realm}: {user_id}")
        return UserHandle(id=user_id, username=email, email=email)

    async def create_client(
        self,
        realm: str,
        client_id: str,
        display_name: str,
        confidential: bool,
        realm_settings: RealmSettings,
    ) -> ClientHandle:
        secret = str(uuid.uuid4()) if confidential else None
        representation: dict[str, Any] = {
            "clientId": client_id,
            "name": display_name,
            "enabled": True,
            "protocol": "openid-connect",
            "publicClient": not confidential,
            "redirectUris": ["*"],
            "webOrigins": ["*"],
            "standardFlowEnabled": True,
            "directAccessGrantsEnabled": True,
            "serviceAccountsEnabled": confidential,
        }
        if secret:
            representation["secret"] = secret

        response = await self._send("POST", f"/admin/realms/{realm}/clients", json=representation)
        return ClientHandle(
            client_id=client_id,
            internal_id=_created_id(response),
            confidential=confidential,
            secret=secret,
        )

    async def realm_exists(self, realm: str) -> bool:
        response = await self._send("GET", f"/admin/realms/{realm}", allowed=(404,))
        return response.status_code != 404

    async def get_user_count(self, realm: str) -> int:
        response = await self._send("GET", f"/admin/realms/{realm}/users/count")
        return int(response.json())

    async def get_signing_keys(self, realm: str) -> dict[str, Any]:
        response = await self._send(
            "GET",
            f"/realms/{realm}/protocol/openid-connect/certs",
            authenticated=False,
        )
        return response.json()

    def realm_url(self, realm: str) -> str:
        return f"{self.server_url}/realms/{realm}"

    def admin_console_url(self, realm: str) -> str:
        return f"{self.server_url}/admin/{realm}/console"


def _created_id(response: httpx.Response) -> str:
    """Keycloak returns the new object's id as the last segment of Location."""
    location = response.headers.get("Location")
    if not location:
        raise IdentityProviderError("Keycloak response is missing the Location header")
    return location.rstrip("/").rsplit("/", 1)[-1]


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return body.get("errorMessage") or body.get("error_description") or body.get("error") or str(body)
    return str(body)
