"""Supabase shared connector: database, auth and storage backend."""

import re

import httpx

from connector_core.config import ProviderConfig
from connector_core.exceptions import ProviderError
from connector_core.protocols.connector import (
    CredentialField,
    CredentialValidation,
    Resource,
    ResourcePage,
    ResourceQuery,
    SetupInstructions,
)
from connector_core.providers.http import ProviderHTTPClient, bearer, parse_resources

PROJECT_URL_RE = re.compile(r"https://([a-z0-9-]+)\.supabase\.co")


class SupabaseConnector:
    """Validates Supabase project keys and lists the tables PostgREST exposes.

    Requests go to the project's own URL, so the client's base URL is only
    a placeholder.
    """

    key = "SUPABASE"
    display_name = "Supabase"
    description = "Open source Firebase alternative with database, auth, and storage"
    icon = "/icons/supabase.svg"
    capabilities = ["database", "authentication", "storage", "realtime"]
    required_credentials = [
        CredentialField(
            key="project_url",
            label="Project URL",
            placeholder="https://xxxxx.supabase.co",
            pattern=PROJECT_URL_RE.pattern,
            help_url="https://app.supabase.com/project/_/settings/api",
        ),
        CredentialField(
            key="anon_key",
            label="Anon/Public Key",
            placeholder="eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
            help_url="https://app.supabase.com/project/_/settings/api",
        ),
        CredentialField(
            key="service_role_key",
            label="Service Role Key",
            placeholder="eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
            help_url="https://app.supabase.com/project/_/settings/api",
            optional=True,
        ),
    ]

    def __init__(self, http: ProviderHTTPClient | None = None) -> None:
        self.http = http or ProviderHTTPClient(self.key, "https://supabase.co")

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SupabaseConnector":
        return cls(
            ProviderHTTPClient.from_config(cls.key, config, "https://supabase.co", transport=transport)
        )

    @staticmethod
    def _headers(credential: dict[str, str]) -> dict[str, str]:
        api_key = credential.get("service_role_key") or credential["anon_key"]
        return {"apikey": api_key, **bearer(api_key)}

    async def validate_credential(self, credential: dict[str, str]) -> CredentialValidation:
        project_url = credential["project_url"].rstrip("/")
        try:
            await self.http.request(
                "GET",
                f"{project_url}/rest/v1/",
                headers={"apikey": credential["anon_key"], **bearer(credential["anon_key"])},
            )
        except ProviderError as e:
            if e.status in (401, 403, 404):
                return CredentialValidation(
                    valid=False, error="Invalid Supabase credentials or project URL"
                )
            raise

        match = PROJECT_URL_RE.fullmatch(project_url)
        return CredentialValidation(
            valid=True,
            metadata={
                "project_ref": match.group(1) if match else None,
                "project_url": project_url,
            },
        )

    async def query_resources(
        self,
        credential: dict[str, str],
        query: ResourceQuery,
    ) -> ResourcePage:
        project_url = credential["project_url"].rstrip("/")
        spec = await self.http.get_json(f"{project_url}/rest/v1/", headers=self._headers(credential))
        if not isinstance(spec, dict):
            raise ProviderError("Supabase returned an unexpected schema document", self.key)

        definitions = spec.get("definitions") or {}
        if not isinstance(definitions, dict):
            raise ProviderError("Supabase returned malformed table definitions", self.key)

        def to_resource(name: str) -> Resource:
            properties = definitions[name].get("properties") or {}
            return Resource(
                id=name,
                title=name,
                type="table",
                url=f"{project_url}/rest/v1/{name}",
                metadata={"columns": sorted(properties)},
            )

        term = (query.search or "").lower()
        resources = parse_resources(
            [name for name in sorted(definitions) if term in name.lower()], to_resource, self.key
        )
        return ResourcePage(resources=resources)

    def setup_instructions(self, credential: dict[str, str]) -> SetupInstructions:
        env_vars = {
            "VITE_SUPABASE_URL": credential["project_url"],
            "VITE_SUPABASE_ANON_KEY": credential["anon_key"],
        }
        if credential.get("service_role_key"):
            env_vars["SUPABASE_SERVICE_ROLE_KEY"] = credential["service_role_key"]
        return SetupInstructions(env_vars=env_vars, packages=["@supabase/supabase-js@^2.39.0"])
