"""Connector protocols for external service integrations.

Two disjoint capability contracts:

- ``PersonalConnectorDefinition``: authorized by an individual user through
  an OAuth-style flow (Notion, Linear, Atlassian) or their own API key
  (ElevenLabs).
- ``SharedConnectorDefinition``: configured once per project with a service
  credential and used on behalf of all of that app's users (Stripe, Resend).
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class TokenResponse:
    """Result of an OAuth code exchange or refresh."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: float | None = None  # epoch seconds, None = does not expire
    scope: str | None = None
    token_type: str = "Bearer"
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "token_type": self.token_type,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenResponse":
        """Create from dictionary."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            scope=data.get("scope"),
            token_type=data.get("token_type", "Bearer"),
            metadata=data.get("metadata", {}),
        )


@dataclass
class ResourceQuery:
    """Provider-agnostic resource query."""

    search: str | None = None
    cursor: str | None = None
    limit: int | None = None
    filters: dict[str, Any] = field(default_factory=dict)
    resource_type: str | None = None  # e.g. "issues", "pages"


@dataclass
class Resource:
    """Normalized item returned by a connector."""

    id: str
    title: str
    type: str
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourcePage:
    """One page of resources plus the opaque cursor of the next page."""

    resources: list[Resource] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class CredentialField:
    """Describes one field of a shared connector credential."""

    key: str
    label: str
    placeholder: str | None = None
    pattern: str | None = None  # regex the value must fully match
    help_url: str | None = None
    optional: bool = False


@dataclass
class CredentialValidation:
    """Outcome of checking a shared credential against the provider."""

    valid: bool
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SetupInstructions:
    """How a generated app consumes a shared credential."""

    env_vars: dict[str, str] = field(default_factory=dict, repr=False)
    packages: list[str] = field(default_factory=list)


@runtime_checkable
class PersonalConnectorDefinition(Protocol):
    """Protocol for user-authorized (OAuth) connectors."""

    key: str
    display_name: str
    description: str

    @abstractmethod
    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        """Get OAuth authorization URL.

        Args:
            redirect_uri: Callback URL
            state: CSRF protection state the caller validates on callback
            code_challenge: PKCE S256 challenge, if the flow uses PKCE
            extra_scopes: Scopes requested on top of the connector defaults

        Returns:
            Authorization URL to redirect the user to
        """
        ...

    @abstractmethod
    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Exchange authorization code for tokens.

        Raises:
            ProviderError: If the provider rejects the code or is unreachable
        """
        ...

    @abstractmethod
    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        """Refresh an expired access token.

        Args:
            refresh_token: Refresh token from the stored connection
            metadata: Provider metadata saved with the connection

        Raises:
            ProviderError: If the provider rejects the refresh token
        """
        ...

    @abstractmethod
    async def list_resources(
        self,
        access_token: str,
        query: ResourceQuery,
    ) -> ResourcePage:
        """Browse resources without a search term."""
        ...

    @abstractmethod
    async def query_resources(
        self,
        access_token: str,
        query: ResourceQuery,
    ) -> ResourcePage:
        """Search resources matching ``query.search``."""
        ...


@runtime_checkable
class ConnectionValidator(Protocol):
    """Optional capability: check that a stored token is still accepted."""

    @abstractmethod
    async def validate_connection(self, access_token: str) -> bool:
        """Return False if the provider rejects the token.

        Raises:
            ProviderError: If the provider cannot be reached
        """
        ...


@runtime_checkable
class ApiKeyConnector(Protocol):
    """Optional capability of personal connectors that take a user's API key
    instead of an OAuth redirect. Such connectors set ``auth_type = "api_key"``.
    """

    @abstractmethod
    async def verify_api_key(self, api_key: str) -> TokenResponse:
        """Check a key with the provider and wrap it as a non-expiring token.

        Raises:
            ProviderError: If the provider rejects the key or is unreachable
        """
        ...


@runtime_checkable
class SharedConnectorDefinition(Protocol):
    """Protocol for project-scoped service-credential connectors."""

    key: str
    display_name: str
    description: str
    required_credentials: list[CredentialField]

    @abstractmethod
    async def validate_credential(
        self,
        credential: dict[str, str],
    ) -> CredentialValidation:
        """Check a credential against the provider with a cheap call."""
        ...

    @abstractmethod
    async def query_resources(
        self,
        credential: dict[str, str],
        query: ResourceQuery,
    ) -> ResourcePage:
        """List or search resources using the service credential."""
        ...

    @abstractmethod
    def setup_instructions(self, credential: dict[str, str]) -> SetupInstructions:
        """Environment variables and packages a generated app needs."""
        ...
