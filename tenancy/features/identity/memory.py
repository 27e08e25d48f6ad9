"""
In-memory identity provider.

Backs local development and the test suite. Behaves like a real provider
(conflicts, role assignment, generated client secrets, signed tokens) and
lets callers inject failures or delays per operation.
"""

import asyncio
import base64
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from jose import jwt

from tenancy.features.identity.base import (
    ClientHandle,
    IdentityProviderConflict,
    IdentityProviderError,
    IdentityProviderGateway,
    RealmHandle,
    RealmSettings,
    UserHandle,
)


@dataclass
class MemoryUser:
    id: str
    email: str
    first_name: str
    last_name: str
    password: str
    roles: set[str]
    required_actions: list[str]


@dataclass
class MemoryRealm:
    name: str
    display_name: str
    settings: RealmSettings
    signing_key: bytes = field(default_factory=lambda: secrets.token_bytes(32))
    key_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    roles: set[str] = field(default_factory=set)
    users: dict[str, MemoryUser] = field(default_factory=dict)
    clients: dict[str, ClientHandle] = field(default_factory=dict)


class InMemoryIdentityProvider(IdentityProviderGateway):
    """
    Identity provider that keeps realms in a dict.

    Failure injection:
        provider.fail_on["create_admin_user"] = IdentityProviderError("down")
        provider.delays["create_realm"] = 5.0
    """

    name = "memory"
    token_algorithms = ["HS256"]

    def __init__(self, base_url: str = "http://identity.local"):
        self.base_url = base_url.rstrip("/")
        self.realms: dict[str, MemoryRealm] = {}
        self.fail_on: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[str] = []

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        delay = self.delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    def _realm(self, realm: str) -> MemoryRealm:
        try:
            return self.realms[realm]
        except KeyError:
            raise IdentityProviderError(f"Realm {realm} not found", status_code=404) from None

    async def create_realm(
        self,
        realm: str,
        display_name: str,
        realm_settings: RealmSettings,
    ) -> RealmHandle:
        await self._enter("create_realm")
        if realm in self.realms:
            raise IdentityProviderConflict(f"Realm {realm} already exists", status_code=409)
        self.realms[realm] = MemoryRealm(name=realm, display_name=display_name, settings=realm_settings)
        return RealmHandle(name=realm, issuer=self.realm_url(realm))

    async def create_realm_roles(
        self,
        realm: str,
        role_names: Sequence[str],
        realm_settings: RealmSettings,
    ) -> None:
        await self._enter("create_realm_roles")
        self._realm(realm).roles.update(role_names)

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
        await self._enter("create_user")
        target = self._realm(realm)
        if any(user.email == email for user in target.users.values()):
            raise IdentityProviderConflict(f"User {email} already exists", status_code=409)

        missing = set(roles) - target.roles
        if missing:
            raise IdentityProviderError(f"Unknown roles: {', '.join(sorted(missing))}", status_code=404)

        required_actions = []
        if force_password_reset:
            required_actions.append("UPDATE_PASSWORD")
        if realm_settings.verify_email:
            required_actions.append("VERIFY_EMAIL")

        user = MemoryUser(
            id=str(uuid.uuid4()),
            email=email,
            first_name=first_name,
            last_name=last_name,
            password=password,
            roles=set(roles),
            required_actions=required_actions,
        )
        target.users[user.id] = user
        return UserHandle(id=user.id, username=email, email=email)

    async def create_admin_user(self, realm: str, *args: Any, **kwargs: Any) -> UserHandle:
        await self._enter("create_admin_user")
        return await super().create_admin_user(realm, *args, **kwargs)

    async def create_client(
        self,
        realm: str,
        client_id: str,
        display_name: str,
        confidential: bool,
        realm_settings: RealmSettings,
    ) -> ClientHandle:
        await self._enter("create_client")
        target = self._realm(realm)
        if client_id in target.clients:
            raise IdentityProviderConflict(f"Client {client_id} already exists", status_code=409)

        handle = ClientHandle(
            client_id=client_id,
            internal_id=str(uuid.uuid4()),
            confidential=confidential,
            secret=str(uuid.uuid4()) if confidential else None,
        )
        target.clients[client_id] = handle
        return handle

    async def realm_exists(self, realm: str) -> bool:
        await self._enter("realm_exists")
        return realm in self.realms

    async def get_user_count(self, realm: str) -> int:
        await self._enter("get_user_count")
        return len(self._realm(realm).users)

    async def get_signing_keys(self, realm: str) -> dict[str, Any]:
        await self._enter("get_signing_keys")
        target = self._realm(realm)
        encoded = base64.urlsafe_b64encode(target.signing_key).rstrip(b"=").decode()
        return {"keys": [{"kty": "oct", "kid": target.key_id, "alg": "HS256", "k": encoded}]}

    def realm_url(self, realm: str) -> str:
        return f"{self.base_url}/realms/{realm}"

    def admin_console_url(self, realm: str) -> str:
        return f"{self.base_url}/admin/{realm}/console"

    def issue_token(self, realm: str, subject: str, expires_in: int = 300, **claims: Any) -> str:
        """Sign an access token the way the realm would."""
        target = self._realm(realm)
        now = int(time.time())
        payload = {
            "iss": self.realm_url(realm),
            "sub": subject,
            "iat": now,
            "exp": now + expires_in,
            **claims,
        }
        return jwt.encode(payload, target.signing_key, algorithm="HS256", headers={"kid": target.key_id})
