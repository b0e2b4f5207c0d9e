"""Wires configuration into a ready-to-use set of services."""

from dataclasses import dataclass
from pathlib import Path

import httpx

from connector_core.config import Config
from connector_core.connections.manager import ConnectionManager
from connector_core.connections.oauth import OAuthStateStore
from connector_core.connections.storage import ConnectionStorage
from connector_core.crypto import EncryptionService
from connector_core.exceptions import ConfigurationError
from connector_core.gateway import ResourceGateway
from connector_core.observability import LogLevel, configure_logging, get_logger
from connector_core.plugins import create_kv_store
from connector_core.protocols import KVStore
from connector_core.providers import build_registry
from connector_core.registry import ConnectorRegistry

logger = get_logger(__name__)


@dataclass
class ConnectorCore:
    """All services of one process, built once at startup."""

    config: Config
    encryption: EncryptionService
    kv: KVStore
    registry: ConnectorRegistry
    manager: ConnectionManager
    gateway: ResourceGateway

    @classmethod
    def from_config(
        cls,
        config: Config,
        kv: KVStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ConnectorCore":
        """Build services from configuration.

        Args:
            config: Application configuration
            kv: KV store to use instead of the configured backend
            transport: HTTP transport for provider adapters (tests)

        Raises:
            EncryptionError: If the master secret is missing or too short
            ConfigurationError: If the storage backend or a connector is misconfigured
        """
        try:
            level = LogLevel(config.logging.level.upper())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown log level {config.logging.level!r}; expected one of "
                f"{', '.join(member.value for member in LogLevel)}"
            ) from e
        configure_logging(level=level, format=config.logging.format)

        encryption = EncryptionService(config.encryption.master_secret)

        if kv is None:
            kv_config = config.storage.kv
            options = {"path": kv_config.path} if kv_config.path else {}
            kv = create_kv_store(kv_config.backend, **options)

        registry = build_registry(config, transport=transport)
        state_store = OAuthStateStore(kv, state_ttl=config.oauth.state_ttl_seconds)
        manager = ConnectionManager(
            registry,
            ConnectionStorage(kv),
            encryption,
            state_store,
            refresh_margin=config.oauth.refresh_margin_seconds,
            use_pkce=config.oauth.use_pkce,
        )

        logger.info(
            "Connector core started",
            context={
                "kv_backend": config.storage.kv.backend,
                "personal_connectors": [c.key for c in registry.list_personal()],
                "shared_connectors": [c.key for c in registry.list_shared()],
            },
        )
        return cls(
            config=config,
            encryption=encryption,
            kv=kv,
            registry=registry,
            manager=manager,
            gateway=ResourceGateway(registry, manager),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ConnectorCore":
        """Build services from a YAML or JSON configuration file."""
        return cls.from_config(Config.from_file(path))
