"""Protocol interfaces for connectors and pluggable backends."""

from connector_core.protocols.connector import (
    ApiKeyConnector,
    ConnectionValidator,
    CredentialField,
    CredentialValidation,
    PersonalConnectorDefinition,
    Resource,
    ResourcePage,
    ResourceQuery,
    SetupInstructions,
    SharedConnectorDefinition,
    TokenResponse,
)
from connector_core.protocols.kv_store import KVStore

__all__ = [
    "ApiKeyConnector",
    "ConnectionValidator",
    "CredentialField",
    "CredentialValidation",
    "KVStore",
    "PersonalConnectorDefinition",
    "Resource",
    "ResourcePage",
    "ResourceQuery",
    "SetupInstructions",
    "SharedConnectorDefinition",
    "TokenResponse",
]
