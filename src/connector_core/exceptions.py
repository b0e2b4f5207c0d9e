"""Connector Core exceptions."""


class ConnectorCoreError(Exception):
    """Base exception for connector-core."""

    pass


class ConfigurationError(ConnectorCoreError):
    """Invalid or missing configuration. Fatal at startup."""

    pass


class InvalidIdentifierError(ConnectorCoreError, ValueError):
    """A user id, project id or connector key is malformed. Caller misuse."""

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field


class CryptoError(ConnectorCoreError):
    """Integrity or key failure in the encryption layer."""

    pass


class EncryptionError(CryptoError):
    """Encryption could not be performed (missing master secret, bad input)."""

    pass


class DecryptionError(CryptoError):
    """Envelope failed authentication or does not match the envelope format."""

    pass


class ConnectorError(ConnectorCoreError):
    """Connector-related error."""

    def __init__(self, message: str, connector_key: str | None = None) -> None:
        super().__init__(message)
        self.connector_key = connector_key


class DuplicateConnectorError(ConnectorError):
    """A connector key was registered twice."""

    pass


class ConnectorNotFoundError(ConnectorError):
    """No connector is registered under the requested key."""

    def __init__(self, connector_key: str, variant: str) -> None:
        super().__init__(
            f"No {variant} connector registered under '{connector_key}'",
            connector_key,
        )
        self.variant = variant


class TokenExchangeError(ConnectorError):
    """Authorization code could not be exchanged for a token."""

    pass


class OAuthStateError(TokenExchangeError):
    """OAuth state token is unknown, expired or already used."""

    pass


class TokenRefreshError(ConnectorError):
    """Failed to refresh OAuth token. The connection must be re-authorized."""

    pass


class NotAuthorizedError(ConnectorError):
    """Resource access attempted without an authorized connection."""

    pass


class CredentialValidationError(ConnectorError):
    """A shared connector credential was rejected."""

    def __init__(
        self,
        message: str,
        connector_key: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, connector_key)
        self.field = field


class ProviderError(ConnectorError):
    """A call to a provider API failed after retries."""

    def __init__(
        self,
        message: str,
        connector_key: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message, connector_key)
        self.status = status


class ResourceQueryError(ConnectorError):
    """A resource query failed at the provider."""

    def __init__(
        self,
        message: str,
        connector_key: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message, connector_key)
        self.status = status
