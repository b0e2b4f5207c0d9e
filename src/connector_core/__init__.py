"""Connector Core - connector registry and credential lifecycle for
third-party integrations."""

from connector_core.app import ConnectorCore
from connector_core.caching import SingleFlight
from connector_core.config import Config
from connector_core.connections import (
    AuthorizationRequest,
    ConnectionManager,
    ConnectionState,
    PersonalConnection,
    SharedConnection,
)
from connector_core.crypto import EncryptionService
from connector_core.gateway import ResourceGateway, ResourceStream
from connector_core.observability import (
    LogLevel,
    RequestContext,
    StructuredLogger,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)
from connector_core.protocols import (
    PersonalConnectorDefinition,
    Resource,
    ResourcePage,
    ResourceQuery,
    SharedConnectorDefinition,
    TokenResponse,
)
from connector_core.registry import ConnectorRegistry

__version__ = "0.1.0"
__all__ = [
    # Core
    "Config",
    "ConnectorCore",
    "EncryptionService",
    # Registry
    "ConnectorRegistry",
    "PersonalConnectorDefinition",
    "SharedConnectorDefinition",
    # Connections
    "AuthorizationRequest",
    "ConnectionManager",
    "ConnectionState",
    "PersonalConnection",
    "SharedConnection",
    "TokenResponse",
    # Resources
    "Resource",
    "ResourceGateway",
    "ResourcePage",
    "ResourceQuery",
    "ResourceStream",
    # Caching
    "SingleFlight",
    # Observability
    "LogLevel",
    "RequestContext",
    "StructuredLogger",
    "Timer",
    "configure_logging",
    "emit_counter",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
