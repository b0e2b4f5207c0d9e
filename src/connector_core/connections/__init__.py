"""Connection records, OAuth state and lifecycle management."""

from connector_core.connections.manager import ConnectionManager, check_required_credentials
from connector_core.connections.models import (
    AuthorizationRequest,
    ConnectionState,
    PersonalConnection,
    SharedConnection,
)
from connector_core.connections.oauth import OAuthState, OAuthStateStore
from connector_core.connections.storage import ConnectionStorage

__all__ = [
    "AuthorizationRequest",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStorage",
    "OAuthState",
    "OAuthStateStore",
    "PersonalConnection",
    "SharedConnection",
    "check_required_credentials",
]
