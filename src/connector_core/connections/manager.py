"""Connection lifecycle: OAuth round-trip, refresh-on-demand, revocation,
and shared credential configuration.

Personal connection states (see ``ConnectionState``)::

    UNAUTHORIZED -> AUTHORIZING -> AUTHORIZED <-> REFRESHING
                                   AUTHORIZED -> REVOKED

API-key connectors skip AUTHORIZING: ``connect_api_key`` verifies the key and
stores it as a non-expiring token.

Failed exchanges leave nothing stored. Failed refreshes delete the stored
record, so the user has to authorize again.
"""

import json
import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from connector_core.caching import SingleFlight
from connector_core.connections.models import (
    AuthorizationRequest,
    ConnectionState,
    PersonalConnection,
    SharedConnection,
)
from connector_core.connections.oauth import OAuthStateStore
from connector_core.connections.storage import ConnectionStorage
from connector_core.crypto import EncryptionService
from connector_core.exceptions import (
    CredentialValidationError,
    DecryptionError,
    NotAuthorizedError,
    ProviderError,
    TokenExchangeError,
    TokenRefreshError,
)
from connector_core.observability import Timer, emit_counter, emit_timer, get_logger
from connector_core.protocols.connector import (
    ApiKeyConnector,
    ConnectionValidator,
    PersonalConnectorDefinition,
    SetupInstructions,
    SharedConnectorDefinition,
    TokenResponse,
)
from connector_core.registry import ConnectorRegistry
from connector_core.utils.validation import validate_identifier

logger = get_logger(__name__)


def is_api_key_connector(connector: PersonalConnectorDefinition) -> bool:
    return getattr(connector, "auth_type", "oauth2") == "api_key" and isinstance(
        connector, ApiKeyConnector
    )


def check_required_credentials(
    connector: SharedConnectorDefinition,
    credential: dict[str, str],
) -> dict[str, str]:
    """Check a credential against the connector's declared fields.

    Returns:
        The credential restricted to declared fields, empty optionals dropped

    Raises:
        CredentialValidationError: If a required field is missing or a value
            does not match its pattern
    """
    cleaned: dict[str, str] = {}
    for field in connector.required_credentials:
        value = credential.get(field.key)
        if value is not None and not isinstance(value, str):
            raise CredentialValidationError(
                f"{field.label} must be a string", connector.key, field.key
            )
        value = (value or "").strip()
        if not value:
            if field.optional:
                continue
            raise CredentialValidationError(
                f"{field.label} is required", connector.key, field.key
            )
        if field.pattern and not re.fullmatch(field.pattern, value):
            raise CredentialValidationError(
                f"{field.label} has an invalid format", connector.key, field.key
            )
        cleaned[field.key] = value
    return cleaned


class ConnectionManager:
    """Orchestrates personal and shared connections for one registry."""

    def __init__(
        self,
        registry: ConnectorRegistry,
        storage: ConnectionStorage,
        encryption: EncryptionService,
        state_store: OAuthStateStore,
        refresh_margin: int = 60,
        use_pkce: bool = True,
    ) -> None:
        """Initialize connection manager.

        Args:
            registry: Connector catalog
            storage: Connection record storage
            encryption: Envelope encryption for tokens and credentials
            state_store: Pending OAuth states
            refresh_margin: Refresh tokens expiring within this many seconds
            use_pkce: Send PKCE challenges in authorization requests
        """
        self.registry = registry
        self.storage = storage
        self.encryption = encryption
        self.state_store = state_store
        self.refresh_margin = refresh_margin
        self.use_pkce = use_pkce
        self._refreshes = SingleFlight()

    # Personal connections: authorization

    async def begin_authorization(
        self,
        connector_key: str,
        user_id: str,
        redirect_uri: str,
        extra_scopes: list[str] | None = None,
    ) -> AuthorizationRequest:
        """Start an OAuth flow (UNAUTHORIZED -> AUTHORIZING).

        Returns:
            Authorization URL and the state token the callback must carry

        Raises:
            TokenExchangeError: If the connector takes an API key instead
            InvalidIdentifierError: If ``user_id`` is malformed
        """
        connector = self.registry.get_personal_connector(connector_key)
        validate_identifier(user_id, "user_id")
        if is_api_key_connector(connector):
            raise TokenExchangeError(
                f"{connector_key} is connected with an API key, not OAuth", connector_key
            )

        oauth_state, code_challenge = await self.state_store.issue(
            connector_key=connector_key,
            user_id=user_id,
            redirect_uri=redirect_uri,
            use_pkce=self.use_pkce,
        )
        url = connector.build_authorization_url(
            redirect_uri,
            oauth_state.state,
            code_challenge=code_challenge,
            extra_scopes=extra_scopes,
        )
        logger.info(
            "Authorization started",
            context={"user_id": user_id, "connector_key": connector_key},
        )
        return AuthorizationRequest(
            url=url,
            state=oauth_state.state,
            connector_key=connector_key,
            expires_at=oauth_state.created_at + self.state_store.state_ttl,
        )

    async def complete_authorization(self, state: str, code: str) -> PersonalConnection:
        """Finish an OAuth flow (AUTHORIZING -> AUTHORIZED).

        Args:
            state: State token returned by the provider redirect
            code: Authorization code returned by the provider redirect

        Returns:
            The stored connection

        Raises:
            OAuthStateError: If the state is unknown, expired or reused
            TokenExchangeError: If the provider rejects the code
        """
        oauth_state = await self.state_store.consume(state)
        connector_key = oauth_state.connector_key
        connector = self.registry.get_personal_connector(connector_key)

        if not code:
            raise TokenExchangeError("Authorization code is missing", connector_key)

        try:
            async with Timer() as t:
                token = await connector.exchange_code_for_token(
                    code,
                    oauth_state.redirect_uri,
                    code_verifier=oauth_state.code_verifier,
                )
        except ProviderError as e:
            emit_counter("connector.exchange.failure", {"connector_key": connector_key})
            logger.warning(
                "Token exchange failed",
                context={
                    "user_id": oauth_state.user_id,
                    "connector_key": connector_key,
                    "status": e.status,
                },
            )
            raise TokenExchangeError(
                f"Could not exchange authorization code with {connector_key}",
                connector_key,
            ) from e

        if not token.access_token:
            raise TokenExchangeError(
                f"{connector_key} returned no access token", connector_key
            )

        connection = await self._store_token(oauth_state.user_id, connector_key, token)
        emit_timer("connector.exchange", t.duration_ms, {"connector_key": connector_key})
        logger.info(
            "Connection authorized",
            context={"user_id": oauth_state.user_id, "connector_key": connector_key},
            duration_ms=t.duration_ms,
        )
        return connection

    async def connect_api_key(
        self,
        connector_key: str,
        user_id: str,
        api_key: str,
    ) -> PersonalConnection:
        """Connect a personal connector that takes the user's own API key
        (UNAUTHORIZED -> AUTHORIZED). An existing connection is replaced.

        Raises:
            TokenExchangeError: If the connector uses OAuth, the key is empty,
                or the provider rejects it; nothing is stored
        """
        connector = self.registry.get_personal_connector(connector_key)
        validate_identifier(user_id, "user_id")
        if not is_api_key_connector(connector):
            raise TokenExchangeError(
                f"{connector_key} is connected through OAuth, not an API key", connector_key
            )
        api_key = api_key.strip() if isinstance(api_key, str) else ""
        if not api_key:
            raise TokenExchangeError("API key is missing", connector_key)

        log_context = {"user_id": user_id, "connector_key": connector_key}
        try:
            async with Timer() as t:
                token = await connector.verify_api_key(api_key)
        except ProviderError as e:
            emit_counter("connector.exchange.failure", {"connector_key": connector_key})
            logger.warning("API key rejected", context={**log_context, "status": e.status})
            raise TokenExchangeError(
                f"{connector_key} rejected the API key", connector_key
            ) from e

        connection = await self._store_token(user_id, connector_key, token)
        emit_timer("connector.exchange", t.duration_ms, {"connector_key": connector_key})
        logger.info("Connection authorized", context=log_context, duration_ms=t.duration_ms)
        return connection

    async def _store_token(
        self,
        user_id: str,
        connector_key: str,
        token: TokenResponse,
        previous: PersonalConnection | None = None,
    ) -> PersonalConnection:
        """Encrypt a token and replace the stored record in one write."""
        now = time.time()
        connection = PersonalConnection(
            user_id=user_id,
            connector_key=connector_key,
            encrypted_token=self.encryption.encrypt(json.dumps(token.to_dict())),
            expires_at=token.expires_at,
            scope=token.scope,
            created_at=previous.created_at if previous else now,
            updated_at=now,
            metadata={**(previous.metadata if previous else {}), **token.metadata},
        )
        await self.storage.put_personal(connection)
        return connection

    def decrypt_token(self, connection: PersonalConnection) -> TokenResponse:
        """Decrypt the token stored in a connection.

        Raises:
            DecryptionError: If the envelope fails authentication or is not a token
        """
        payload = self.encryption.decrypt(connection.encrypted_token)
        try:
            return TokenResponse.from_dict(json.loads(payload))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise DecryptionError("Stored token payload is malformed") from e

    # Personal connections: queries

    async def get_connection(
        self,
        user_id: str,
        connector_key: str,
    ) -> PersonalConnection | None:
        """Get the stored connection without refreshing."""
        return await self.storage.get_personal(user_id, connector_key)

    async def list_connections(self, user_id: str) -> list[PersonalConnection]:
        """List every personal connection of a user."""
        return await self.storage.list_personal(user_id)

    async def connection_state(self, user_id: str, connector_key: str) -> ConnectionState:
        """Report where a (user, connector) pair is in the lifecycle."""
        if self._refreshes.in_flight(self._flight_key(user_id, connector_key)):
            return ConnectionState.REFRESHING
        if await self.storage.has_personal(user_id, connector_key):
            return ConnectionState.AUTHORIZED
        if await self.state_store.is_pending(user_id, connector_key):
            return ConnectionState.AUTHORIZING
        return ConnectionState.UNAUTHORIZED

    async def revoke(self, user_id: str, connector_key: str) -> bool:
        """Delete a connection (AUTHORIZED -> REVOKED).

        Returns:
            True if a connection existed
        """
        existed = await self.storage.delete_personal(user_id, connector_key)
        if existed:
            logger.info(
                "Connection revoked",
                context={"user_id": user_id, "connector_key": connector_key},
            )
        return existed

    # Personal connections: refresh

    @staticmethod
    def _flight_key(user_id: str, connector_key: str) -> str:
        return f"{user_id}:{connector_key}"

    async def ensure_fresh(self, user_id: str, connector_key: str) -> TokenResponse:
        """Return a usable token, refreshing it first if it is about to expire.

        Raises:
            ConnectorNotFoundError: If the connector is not registered
            NotAuthorizedError: If the user has no connection
            TokenRefreshError: If the refresh failed; the connection is deleted
        """
        connector = self.registry.get_personal_connector(connector_key)
        connection = await self.storage.get_personal(user_id, connector_key)
        if connection is None:
            raise NotAuthorizedError(
                f"User has not authorized {connector_key}", connector_key
            )

        if not connection.is_expired(time.time(), self.refresh_margin):
            return self.decrypt_token(connection)

        return await self._refreshes.do(
            self._flight_key(user_id, connector_key),
            lambda: self._refresh(connector, user_id, connector_key),
        )

    async def _refresh(
        self,
        connector: PersonalConnectorDefinition,
        user_id: str,
        connector_key: str,
    ) -> TokenResponse:
        # Re-read: another process may have refreshed or revoked meanwhile
        current = await self.storage.get_personal(user_id, connector_key)
        if current is None:
            raise NotAuthorizedError(
                f"User has not authorized {connector_key}", connector_key
            )
        if not current.is_expired(time.time(), self.refresh_margin):
            return self.decrypt_token(current)

        previous = self.decrypt_token(current)
        log_context = {"user_id": user_id, "connector_key": connector_key}

        if not previous.refresh_token:
            await self.storage.delete_personal(user_id, connector_key)
            logger.warning("Token expired without refresh token", context=log_context)
            raise TokenRefreshError(
                f"{connector_key} token expired and cannot be refreshed; reconnect required",
                connector_key,
            )

        try:
            async with Timer() as t:
                token = await connector.refresh_token(
                    previous.refresh_token,
                    metadata=current.metadata,
                )
        except ProviderError as e:
            await self.storage.delete_personal(user_id, connector_key)
            emit_counter("connector.refresh.failure", {"connector_key": connector_key})
            logger.warning(
                "Token refresh failed, connection invalidated",
                context={**log_context, "status": e.status},
            )
            raise TokenRefreshError(
                f"Could not refresh {connector_key} token; reconnect required",
                connector_key,
            ) from e

        if not token.refresh_token:
            # Provider did not rotate the refresh token
            token.refresh_token = previous.refresh_token

        await self._store_token(user_id, connector_key, token, previous=current)
        emit_timer("connector.refresh", t.duration_ms, {"connector_key": connector_key})
        logger.info("Token refreshed", context=log_context, duration_ms=t.duration_ms)
        return token

    @asynccontextmanager
    async def live_token(self, user_id: str, connector_key: str) -> AsyncIterator[str]:
        """Yield a decrypted access token for the duration of one operation.

        Example:
            async with manager.live_token("u1", "NOTION") as access_token:
                page = await connector.query_resources(access_token, query)
        """
        token = await self.ensure_fresh(user_id, connector_key)
        try:
            yield token.access_token
        finally:
            del token

    async def validate_connection(self, user_id: str, connector_key: str) -> bool | None:
        """Ask the provider whether the stored token is still accepted.

        Returns:
            None if the connector cannot check tokens, else whether the
            provider accepted it. Unreachable providers count as not accepted.

        Raises:
            NotAuthorizedError: If the user has no connection
            TokenRefreshError: If the token had to be refreshed and that failed
        """
        connector = self.registry.get_personal_connector(connector_key)
        if not isinstance(connector, ConnectionValidator):
            return None

        log_context = {"user_id": user_id, "connector_key": connector_key}
        async with self.live_token(user_id, connector_key) as access_token:
            try:
                valid = await connector.validate_connection(access_token)
            except ProviderError as e:
                logger.warning(
                    "Connection check failed", context={**log_context, "status": e.status}
                )
                valid = False

        emit_counter(
            "connector.validate",
            {"connector_key": connector_key, "outcome": "valid" if valid else "invalid"},
        )
        if not valid:
            logger.info("Provider no longer accepts connection", context=log_context)
        return valid

    # Shared connections

    async def configure_shared(
        self,
        project_id: str,
        connector_key: str,
        credential: dict[str, Any],
    ) -> SharedConnection:
        """Validate a credential with the provider and store it (Unconfigured
        -> Configured). An existing credential is replaced.

        Raises:
            CredentialValidationError: If the credential is malformed or the
                provider rejects it; nothing is stored
            InvalidIdentifierError: If ``project_id`` is malformed
        """
        connector = self.registry.get_shared_connector(connector_key)
        validate_identifier(project_id, "project_id")
        cleaned = check_required_credentials(connector, credential)
        log_context = {"project_id": project_id, "connector_key": connector_key}

        try:
            result = await connector.validate_credential(cleaned)
        except ProviderError as e:
            logger.warning(
                "Credential validation call failed",
                context={**log_context, "status": e.status},
            )
            raise CredentialValidationError(
                f"Could not validate credential with {connector_key}",
                connector_key,
            ) from e

        if not result.valid:
            emit_counter("connector.credential.rejected", {"connector_key": connector_key})
            logger.info("Credential rejected by provider", context=log_context)
            raise CredentialValidationError(
                result.error or f"{connector_key} rejected the credential",
                connector_key,
            )

        replaced = await self.storage.has_shared(project_id, connector_key)
        now = time.time()
        connection = SharedConnection(
            project_id=project_id,
            connector_key=connector_key,
            encrypted_credential=self.encryption.encrypt_credentials(cleaned),
            created_at=now,
            updated_at=now,
            metadata=result.metadata,
        )
        await self.storage.put_shared(connection)
        logger.info(
            "Shared credential rotated" if replaced else "Shared connector configured",
            context=log_context,
        )
        return connection

    async def get_shared_connection(
        self,
        project_id: str,
        connector_key: str,
    ) -> SharedConnection | None:
        return await self.storage.get_shared(project_id, connector_key)

    async def list_shared_connections(self, project_id: str) -> list[SharedConnection]:
        """List every shared connection a project has configured."""
        return await self.storage.list_shared(project_id)

    async def remove_shared(self, project_id: str, connector_key: str) -> bool:
        """Delete a shared credential. Returns True if one existed."""
        existed = await self.storage.delete_shared(project_id, connector_key)
        if existed:
            logger.info(
                "Shared connector removed",
                context={"project_id": project_id, "connector_key": connector_key},
            )
        return existed

    async def load_shared_credential(
        self,
        project_id: str,
        connector_key: str,
    ) -> dict[str, str]:
        """Decrypt a project's credential.

        Raises:
            NotAuthorizedError: If the project has not configured the connector
        """
        self.registry.get_shared_connector(connector_key)
        connection = await self.storage.get_shared(project_id, connector_key)
        if connection is None:
            raise NotAuthorizedError(
                f"Project has not configured {connector_key}", connector_key
            )
        return self.encryption.decrypt_credentials(connection.encrypted_credential)

    @asynccontextmanager
    async def shared_credential(
        self,
        project_id: str,
        connector_key: str,
    ) -> AsyncIterator[dict[str, str]]:
        """Yield a decrypted shared credential for one operation."""
        credential = await self.load_shared_credential(project_id, connector_key)
        try:
            yield credential
        finally:
            credential.clear()

    async def setup_instructions(
        self,
        project_id: str,
        connector_key: str,
    ) -> SetupInstructions:
        """Environment variables and packages for a project's generated app."""
        connector = self.registry.get_shared_connector(connector_key)
        async with self.shared_credential(project_id, connector_key) as credential:
            return connector.setup_instructions(credential)
