"""Pytest configuration and fixtures."""

import asyncio
import logging
import time
from typing import Any

import pytest

from connector_core.backends.kv.memory import MemoryKVStore
from connector_core.connections.manager import ConnectionManager
from connector_core.connections.oauth import OAuthStateStore
from connector_core.connections.storage import ConnectionStorage
from connector_core.crypto import EncryptionService
from connector_core.exceptions import ProviderError
from connector_core.gateway import ResourceGateway
from connector_core.observability import clear_metric_callbacks, register_metric_callback
from connector_core.protocols.connector import (
    CredentialField,
    CredentialValidation,
    Resource,
    ResourcePage,
    ResourceQuery,
    SetupInstructions,
    TokenResponse,
)
from connector_core.registry import ConnectorRegistry

TEST_MASTER_SECRET = "test-master-secret-0123456789-abcdefghij"


class FakePersonalConnector:
    """In-process personal connector that records every call."""

    display_name = "Fake Notion"
    description = "Personal connector used in tests"

    def __init__(self, key: str = "NOTION") -> None:
        self.key = key
        self.token_lifetime: float | None = 3600
        self.exchange_error: ProviderError | None = None
        self.refresh_error: ProviderError | None = None
        self.query_error: ProviderError | None = None
        self.rotate_refresh_token = False
        self.refresh_delay = 0.0
        self.exchange_calls: list[dict[str, Any]] = []
        self.refresh_calls: list[str] = []
        self.query_tokens: list[str] = []
        self.queries: list[ResourceQuery] = []
        # cursor -> page
        self.pages: dict[str | None, ResourcePage] = {None: ResourcePage()}

    def _expires_at(self) -> float | None:
        if self.token_lifetime is None:
            return None
        return time.time() + self.token_lifetime

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        url = f"https://provider.example/authorize?state={state}&redirect_uri={redirect_uri}"
        if code_challenge:
            url += f"&code_challenge={code_challenge}"
        if extra_scopes:
            url += f"&scope={','.join(extra_scopes)}"
        return url

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        self.exchange_calls.append(
            {"code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier}
        )
        if self.exchange_error:
            raise self.exchange_error
        return TokenResponse(
            access_token=f"access-{code}",
            refresh_token="refresh-original",
            expires_at=self._expires_at(),
            scope="read",
            metadata={"workspace_id": "ws-1"},
        )

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        count = len(self.refresh_calls)
        return TokenResponse(
            access_token=f"refreshed-{count}",
            refresh_token=f"refresh-rotated-{count}" if self.rotate_refresh_token else None,
            expires_at=time.time() + 3600,
        )

    async def _page(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        self.query_tokens.append(access_token)
        self.queries.append(query)
        if self.query_error:
            raise self.query_error
        return self.pages[query.cursor]

    async def list_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._page(access_token, query)

    async def query_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._page(access_token, query)


class FakeSharedConnector:
    """In-process shared connector with a Stripe-like credential."""

    display_name = "Fake Stripe"
    description = "Shared connector used in tests"
    required_credentials = [
        CredentialField(key="secret_key", label="Secret Key", pattern=r"sk_(test|live)_[A-Za-z0-9]+"),
        CredentialField(key="webhook_secret", label="Webhook Secret", optional=True),
    ]

    def __init__(self, key: str = "STRIPE") -> None:
        self.key = key
        self.rejected_keys = {"sk_test_revoked"}
        self.validate_error: ProviderError | None = None
        self.query_error: ProviderError | None = None
        self.validated: list[dict[str, str]] = []
        self.query_credentials: list[dict[str, str]] = []
        self.pages: dict[str | None, ResourcePage] = {None: ResourcePage()}

    async def validate_credential(self, credential: dict[str, str]) -> CredentialValidation:
        self.validated.append(dict(credential))
        if self.validate_error:
            raise self.validate_error
        if credential["secret_key"] in self.rejected_keys:
            return CredentialValidation(valid=False, error="Invalid API key")
        return CredentialValidation(valid=True, metadata={"account_id": "acct_1"})

    async def query_resources(
        self,
        credential: dict[str, str],
        query: ResourceQuery,
    ) -> ResourcePage:
        self.query_credentials.append(dict(credential))
        if self.query_error:
            raise self.query_error
        return self.pages[query.cursor]

    def setup_instructions(self, credential: dict[str, str]) -> SetupInstructions:
        return SetupInstructions(
            env_vars={"STRIPE_SECRET_KEY": credential["secret_key"]},
            packages=["stripe@^14.0.0"],
        )


def make_resources(prefix: str, count: int) -> list[Resource]:
    """Build ``count`` resources with ids ``{prefix}-0`` and up."""
    return [Resource(id=f"{prefix}-{i}", title=f"{prefix} {i}", type="page") for i in range(count)]


@pytest.fixture
def master_secret() -> str:
    """Master secret long enough for EncryptionService."""
    return TEST_MASTER_SECRET


@pytest.fixture
def encryption(master_secret) -> EncryptionService:
    """Create an encryption service."""
    return EncryptionService(master_secret)


@pytest.fixture
def kv_store() -> MemoryKVStore:
    """Create a memory KV store."""
    return MemoryKVStore()


@pytest.fixture
def personal_connector() -> FakePersonalConnector:
    return FakePersonalConnector()


@pytest.fixture
def shared_connector() -> FakeSharedConnector:
    return FakeSharedConnector()


@pytest.fixture
def registry(personal_connector, shared_connector) -> ConnectorRegistry:
    """Frozen registry holding one personal and one shared connector."""
    registry = ConnectorRegistry()
    registry.register_personal(personal_connector)
    registry.register_shared(shared_connector)
    return registry.freeze()


@pytest.fixture
def storage(kv_store) -> ConnectionStorage:
    return ConnectionStorage(kv_store)


@pytest.fixture
def state_store(kv_store) -> OAuthStateStore:
    return OAuthStateStore(kv_store)


@pytest.fixture
def manager(registry, storage, encryption, state_store) -> ConnectionManager:
    """Create a connection manager over in-memory storage."""
    return ConnectionManager(registry, storage, encryption, state_store)


@pytest.fixture
def gateway(registry, manager) -> ResourceGateway:
    return ResourceGateway(registry, manager)


@pytest.fixture
def sample_config_dict(master_secret):
    """Sample configuration dictionary for testing."""
    return {
        "encryption": {"master_secret": master_secret},
        "storage": {"kv": {"backend": "memory"}},
        "oauth": {"state_ttl_seconds": 300, "refresh_margin_seconds": 120},
        "connectors": {
            "personal": {
                "NOTION": {"client_id": "notion-client", "client_secret": "notion-secret"},
                "LINEAR": {
                    "client_id": "linear-client",
                    "client_secret": "linear-secret",
                    "scopes": ["read"],
                },
            },
            "shared": {
                "STRIPE": {},
                "RESEND": {"timeout_seconds": 5},
            },
        },
        "logging": {"level": "DEBUG", "format": "text"},
    }


@pytest.fixture
def resources():
    """Factory for lists of resources."""
    return make_resources


@pytest.fixture(autouse=True)
def _reset_metric_callbacks():
    """Metric callbacks are process-global; drop them after each test."""
    yield
    clear_metric_callbacks()


@pytest.fixture
def metrics() -> list[tuple]:
    """Collects every emitted metric as (name, value, labels)."""
    received: list[tuple] = []
    register_metric_callback(lambda name, value, labels: received.append((name, value, labels)))
    return received


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo configure_logging so tests do not leak handlers or levels."""
    yield
    package_logger = logging.getLogger("connector_core")
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)
