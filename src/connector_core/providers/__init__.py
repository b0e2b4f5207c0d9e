"""Concrete connector definitions.

Provides the factory that builds the startup registry from configuration.
"""

from typing import TYPE_CHECKING

import httpx

from connector_core.exceptions import ConfigurationError
from connector_core.registry import ConnectorRegistry

if TYPE_CHECKING:
    from connector_core.config import Config, ProviderConfig


def _personal_factories() -> dict:
    from connector_core.providers.personal import (
        AtlassianConnector,
        ElevenLabsConnector,
        LinearConnector,
        NotionConnector,
    )

    return {
        "NOTION": NotionConnector,
        "LINEAR": LinearConnector,
        "ATLASSIAN": AtlassianConnector,
        "ELEVENLABS": ElevenLabsConnector,
    }


def _shared_factories() -> dict:
    from connector_core.providers.shared import (
        ResendConnector,
        StripeConnector,
        SupabaseConnector,
    )

    return {"STRIPE": StripeConnector, "RESEND": ResendConnector, "SUPABASE": SupabaseConnector}


def _check_client_credentials(key: str, provider: "ProviderConfig") -> None:
    if not provider.client_id or not provider.client_secret:
        raise ConfigurationError(
            f"Personal connector {key} needs client_id and client_secret"
        )


def build_registry(
    config: "Config",
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConnectorRegistry:
    """Register every enabled connector from configuration, then freeze.

    Args:
        config: Application configuration
        transport: HTTP transport shared by all adapters (tests)

    Returns:
        Frozen registry

    Raises:
        ConfigurationError: If a connector key is unknown or a personal
            OAuth connector has no client credentials
    """
    registry = ConnectorRegistry()
    personal = _personal_factories()
    shared = _shared_factories()

    for key, provider in config.connectors.personal.items():
        if not provider.enabled:
            continue
        if key not in personal:
            raise ConfigurationError(f"Unknown personal connector: {key}")
        factory = personal[key]
        # API-key connectors are authorized with the user's own key
        if getattr(factory, "auth_type", "oauth2") != "api_key":
            _check_client_credentials(key, provider)
        registry.register_personal(factory.from_config(provider, transport=transport))

    for key, provider in config.connectors.shared.items():
        if not provider.enabled:
            continue
        if key not in shared:
            raise ConfigurationError(f"Unknown shared connector: {key}")
        registry.register_shared(shared[key].from_config(provider, transport=transport))

    return registry.freeze()


__all__ = ["build_registry"]
