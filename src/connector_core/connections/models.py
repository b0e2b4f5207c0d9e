"""Persisted connection records and lifecycle states."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    """Lifecycle of a personal connection.

    Only ``AUTHORIZED`` permits resource access. ``UNAUTHORIZED`` and
    ``REVOKED`` both mean no record is stored.
    """

    UNAUTHORIZED = "unauthorized"
    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"
    REFRESHING = "refreshing"
    REVOKED = "revoked"


@dataclass
class AuthorizationRequest:
    """Where to send the user to start an OAuth flow."""

    url: str
    state: str
    connector_key: str
    expires_at: float


@dataclass
class PersonalConnection:
    """One user's authorization with one personal connector."""

    user_id: str
    connector_key: str
    encrypted_token: str = field(repr=False)
    expires_at: float | None
    scope: str | None
    created_at: float
    updated_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float, margin_seconds: float = 0) -> bool:
        """Check if the token is expired or expires within the margin."""
        if self.expires_at is None:
            return False  # Provider issued a non-expiring token
        return now + margin_seconds >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "connector_key": self.connector_key,
            "encrypted_token": self.encrypted_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersonalConnection":
        """Create from dictionary."""
        return cls(
            user_id=data["user_id"],
            connector_key=data["connector_key"],
            encrypted_token=data["encrypted_token"],
            expires_at=data.get("expires_at"),
            scope=data.get("scope"),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            metadata=data.get("metadata", {}),
        )


@dataclass
class SharedConnection:
    """One project's credential for one shared connector."""

    project_id: str
    connector_key: str
    encrypted_credential: str = field(repr=False)
    created_at: float
    updated_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "project_id": self.project_id,
            "connector_key": self.connector_key,
            "encrypted_credential": self.encrypted_credential,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SharedConnection":
        """Create from dictionary."""
        return cls(
            project_id=data["project_id"],
            connector_key=data["connector_key"],
            encrypted_credential=data["encrypted_credential"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            metadata=data.get("metadata", {}),
        )
