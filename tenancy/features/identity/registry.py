"""
Identity provider registry.

Providers register a factory under a name; the configured one is built
once per process and shared.
"""

import logging
from functools import lru_cache
from typing import Callable

from tenancy.config import Settings, settings
from tenancy.features.identity.base import IdentityProviderGateway
from tenancy.features.identity.keycloak import KeycloakIdentityProvider
from tenancy.features.identity.memory import InMemoryIdentityProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], IdentityProviderGateway]

_PROVIDERS: dict[str, ProviderFactory] = {
    "keycloak": KeycloakIdentityProvider,
    "memory": lambda s: InMemoryIdentityProvider(base_url=s.keycloak_server_url),
}


def register_provider(name: str, factory: ProviderFactory) -> None:
    """Register an additional provider under a registry key."""
    _PROVIDERS[name.lower()] = factory


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)


def build_provider(name: str, config: Settings) -> IdentityProviderGateway:
    """
    Build the provider registered under name.

    Raises:
        ValueError: No provider is registered under that name
    """
    try:
        factory = _PROVIDERS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown identity provider '{name}'. Available: {', '.join(available_providers())}"
        ) from None
    return factory(config)


@lru_cache()
def get_identity_gateway() -> IdentityProviderGateway:
    """
    The configured gateway, built on first use.

    Also usable as a FastAPI dependency; tests override it.
    """
    gateway = build_provider(settings.identity_provider, settings)
    logger.info(f"Identity provider resolved: {gateway.name}")
    return gateway
