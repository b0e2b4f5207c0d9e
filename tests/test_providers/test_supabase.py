"""Tests for the Supabase connector."""

import httpx
import pytest

from connector_core.config import ProviderConfig, RetryConfig
from connector_core.connections.manager import check_required_credentials
from connector_core.exceptions import CredentialValidationError, ProviderError
from connector_core.protocols.connector import ResourceQuery
from connector_core.providers.shared import SupabaseConnector

CREDENTIAL = {
    "project_url": "https://abcd1234.supabase.co",
    "anon_key": "eyJhbGciOiJIUzI1NiJ9.anon",
}

OPENAPI = {
    "swagger": "2.0",
    "definitions": {
        "todos": {"properties": {"id": {}, "title": {}, "done": {}}},
        "profiles": {"properties": {"id": {}, "username": {}}},
    },
}


def supabase(handler) -> SupabaseConnector:
    config = ProviderConfig(retry=RetryConfig(max_retries=0))
    return SupabaseConnector.from_config(config, transport=httpx.MockTransport(handler))


class TestSupabase:
    """Tests for Supabase validation and queries."""

    def test_project_url_pattern(self) -> None:
        """Only supabase.co project URLs are accepted."""
        with pytest.raises(CredentialValidationError) as exc_info:
            check_required_credentials(
                SupabaseConnector(), {**CREDENTIAL, "project_url": "https://evil.example.com"}
            )
        assert exc_info.value.field == "project_url"

    @pytest.mark.asyncio
    async def test_valid_credentials(self) -> None:
        """The anon key is checked against the project's REST root."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json=OPENAPI)

        result = await supabase(handler).validate_credential(CREDENTIAL)

        assert seen == {
            "url": "https://abcd1234.supabase.co/rest/v1/",
            "apikey": "eyJhbGciOiJIUzI1NiJ9.anon",
        }
        assert result.valid
        assert result.metadata == {
            "project_ref": "abcd1234",
            "project_url": "https://abcd1234.supabase.co",
        }

    @pytest.mark.asyncio
    async def test_unknown_project(self) -> None:
        """A 404 project is invalid; a 500 propagates."""

        def not_found(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        def broken(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        assert not (await supabase(not_found).validate_credential(CREDENTIAL)).valid
        with pytest.raises(ProviderError):
            await supabase(broken).validate_credential(CREDENTIAL)

    @pytest.mark.asyncio
    async def test_lists_tables(self) -> None:
        """Tables come from the PostgREST schema, preferring the service key."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json=OPENAPI)

        credential = {**CREDENTIAL, "service_role_key": "eyJ.service"}
        result = await supabase(handler).query_resources(credential, ResourceQuery(search="to"))

        assert seen["apikey"] == "eyJ.service"
        assert [r.id for r in result.resources] == ["todos"]
        assert result.resources[0].metadata == {"columns": ["done", "id", "title"]}
        assert result.resources[0].url == "https://abcd1234.supabase.co/rest/v1/todos"

    @pytest.mark.asyncio
    async def test_malformed_definitions(self) -> None:
        """Schema documents with non-object definitions are ProviderErrors."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"definitions": {"todos": "table"}})

        with pytest.raises(ProviderError, match="malformed resource"):
            await supabase(handler).query_resources(CREDENTIAL, ResourceQuery())

    def test_setup_instructions(self) -> None:
        """The service role key is only exported when configured."""
        instructions = SupabaseConnector().setup_instructions(CREDENTIAL)
        assert set(instructions.env_vars) == {"VITE_SUPABASE_URL", "VITE_SUPABASE_ANON_KEY"}
        assert instructions.packages == ["@supabase/supabase-js@^2.39.0"]
