"""Tests for startup wiring."""

import json
import logging
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from connector_core import ConnectorCore
from connector_core.backends.kv.memory import MemoryKVStore
from connector_core.config import Config
from connector_core.connections.models import ConnectionState
from connector_core.exceptions import ConfigurationError, EncryptionError
from connector_core.plugins import available_backends, create_kv_store, load_backend
from connector_core.protocols import KVStore
from connector_core.protocols.connector import ResourceQuery
from connector_core.providers import build_registry


def fake_providers(request: httpx.Request) -> httpx.Response:
    """One transport answering for every provider the sample config enables."""
    if request.url.host == "api.notion.com" and request.url.path == "/v1/oauth/token":
        return httpx.Response(
            200,
            json={"access_token": "ntn_live", "workspace_id": "ws-9", "bot_id": "bot-9"},
        )
    if request.url.host == "api.notion.com" and request.url.path == "/v1/search":
        assert request.headers["authorization"] == "Bearer ntn_live"
        body = json.loads(request.content)
        results = [
            {"object": "page", "id": "p1", "title": [{"plain_text": body.get("query", "")}]}
        ]
        return httpx.Response(200, json={"results": results, "has_more": False})
    if request.url.host == "api.stripe.com":
        return httpx.Response(200, json={"id": "acct_9", "country": "DE"})
    return httpx.Response(404)


class TestBackendDiscovery:
    """Tests for entry-point backend discovery."""

    def test_builtin_backends_registered(self) -> None:
        """Both bundled KV backends are discoverable."""
        assert {"memory", "sqlite"} <= set(available_backends("kv"))
        assert load_backend("kv", "memory") is MemoryKVStore

    def test_create_sqlite_store(self, tmp_path) -> None:
        """Backend options are passed to the constructor."""
        store = create_kv_store("sqlite", path=str(tmp_path / "kv.db"))
        assert isinstance(store, KVStore)

    def test_unknown_backend(self) -> None:
        """Unknown names list what is available."""
        with pytest.raises(ConfigurationError, match="memory"):
            load_backend("kv", "dynamodb")


class TestBuildRegistry:
    """Tests for building the registry from configuration."""

    def test_registers_enabled_connectors(self, sample_config_dict) -> None:
        """Configured connectors are registered under their variant."""
        registry = build_registry(Config.from_dict(sample_config_dict))

        assert [c.key for c in registry.list_personal()] == ["NOTION", "LINEAR"]
        assert [c.key for c in registry.list_shared()] == ["STRIPE", "RESEND"]
        assert registry.frozen
        assert registry.get_personal_connector("LINEAR").scopes == ["read"]
        assert registry.get_shared_connector("RESEND").http.timeout == 5

    def test_disabled_connector_skipped(self, sample_config_dict) -> None:
        """enabled: false leaves a connector out."""
        sample_config_dict["connectors"]["shared"]["STRIPE"] = {"enabled": False}
        registry = build_registry(Config.from_dict(sample_config_dict))
        assert not registry.has_shared("STRIPE")

    def test_unknown_connector(self, sample_config_dict) -> None:
        """Unknown keys are configuration errors."""
        sample_config_dict["connectors"]["shared"]["TWILIO"] = {}
        with pytest.raises(ConfigurationError, match="TWILIO"):
            build_registry(Config.from_dict(sample_config_dict))

    def test_api_key_connector_needs_no_client_credentials(self, sample_config_dict) -> None:
        """ElevenLabs is authorized with each user's key; Atlassian needs OAuth credentials."""
        sample_config_dict["connectors"]["personal"]["ELEVENLABS"] = {}
        sample_config_dict["connectors"]["personal"]["ATLASSIAN"] = {
            "client_id": "atl-client",
            "client_secret": "atl-secret",
        }
        registry = build_registry(Config.from_dict(sample_config_dict))

        assert [c.key for c in registry.list_personal()] == [
            "NOTION",
            "LINEAR",
            "ELEVENLABS",
            "ATLASSIAN",
        ]

        sample_config_dict["connectors"]["personal"]["ATLASSIAN"] = {}
        with pytest.raises(ConfigurationError, match="ATLASSIAN"):
            build_registry(Config.from_dict(sample_config_dict))

    def test_personal_connector_needs_client_credentials(self, sample_config_dict) -> None:
        """OAuth connectors cannot start without client credentials."""
        sample_config_dict["connectors"]["personal"]["NOTION"] = {"client_id": "only-id"}
        with pytest.raises(ConfigurationError, match="NOTION"):
            build_registry(Config.from_dict(sample_config_dict))


class TestConnectorCore:
    """Tests for ConnectorCore bootstrap."""

    def test_from_config(self, sample_config_dict) -> None:
        """Services share one registry and KV store."""
        kv = MemoryKVStore()
        core = ConnectorCore.from_config(Config.from_dict(sample_config_dict), kv=kv)

        assert core.kv is kv
        assert core.manager.registry is core.registry
        assert core.gateway.manager is core.manager
        assert core.manager.refresh_margin == 120
        assert core.manager.state_store.state_ttl == 300

    def test_configured_backend(self, sample_config_dict) -> None:
        """The KV backend is resolved through entry points."""
        core = ConnectorCore.from_config(Config.from_dict(sample_config_dict))
        assert isinstance(core.kv, MemoryKVStore)

    def test_unknown_backend(self, sample_config_dict) -> None:
        """An unregistered KV backend is a configuration error."""
        sample_config_dict["storage"]["kv"]["backend"] = "dynamodb"
        with pytest.raises(ConfigurationError):
            ConnectorCore.from_config(Config.from_dict(sample_config_dict))

    def test_unknown_log_level(self, sample_config_dict) -> None:
        """A misspelled log level is a configuration error naming the choices."""
        sample_config_dict["logging"]["level"] = "VERBOSE"
        with pytest.raises(ConfigurationError, match="DEBUG, INFO, WARNING, ERROR, CRITICAL"):
            ConnectorCore.from_config(Config.from_dict(sample_config_dict), kv=MemoryKVStore())

    def test_log_level_case_insensitive(self, sample_config_dict) -> None:
        sample_config_dict["logging"]["level"] = "warning"
        ConnectorCore.from_config(Config.from_dict(sample_config_dict), kv=MemoryKVStore())
        assert logging.getLogger("connector_core").level == logging.WARNING

    def test_missing_master_secret(self, sample_config_dict) -> None:
        """Startup fails without a master secret."""
        del sample_config_dict["encryption"]
        with pytest.raises(EncryptionError):
            ConnectorCore.from_config(Config.from_dict(sample_config_dict), kv=MemoryKVStore())

    def test_from_file(self, tmp_path, monkeypatch, master_secret) -> None:
        """YAML files with environment references are loaded."""
        monkeypatch.setenv("CONNECTOR_MASTER_SECRET", master_secret)
        config_path = tmp_path / "connectors.yaml"
        config_path.write_text(
            "encryption:\n"
            "  master_secret: ${CONNECTOR_MASTER_SECRET}\n"
            "connectors:\n"
            "  shared:\n"
            "    SUPABASE: {}\n"
        )

        core = ConnectorCore.from_file(config_path)
        assert core.registry.has_shared("SUPABASE")

    @pytest.mark.asyncio
    async def test_end_to_end(self, sample_config_dict) -> None:
        """Authorize Notion, query it, and configure Stripe through real adapters."""
        core = ConnectorCore.from_config(
            Config.from_dict(sample_config_dict),
            kv=MemoryKVStore(),
            transport=httpx.MockTransport(fake_providers),
        )

        request = await core.manager.begin_authorization(
            "NOTION", "user-1", "https://app.example.com/cb"
        )
        assert parse_qs(urlparse(request.url).query)["client_id"] == ["notion-client"]

        connection = await core.manager.complete_authorization(request.state, "code-1")
        assert connection.metadata == {"workspace_id": "ws-9", "bot_id": "bot-9"}
        assert await core.manager.connection_state("user-1", "NOTION") == ConnectionState.AUTHORIZED

        items = await core.gateway.query_resources(
            "NOTION", "user-1", ResourceQuery(search="Roadmap")
        ).collect()
        assert [(r.id, r.title) for r in items] == [("p1", "Roadmap")]

        shared = await core.manager.configure_shared(
            "proj-1",
            "STRIPE",
            {"publishable_key": "pk_test_1", "secret_key": "sk_test_1"},
        )
        assert shared.metadata["account_id"] == "acct_9"
