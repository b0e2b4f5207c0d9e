"""Resend shared connector: transactional email."""

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
from connector_core.providers.http import (
    ProviderHTTPClient,
    bearer,
    parse_resources,
    required_id,
)

RESEND_API_URL = "https://api.resend.com"

RESOURCE_PATHS = {"domains": "/domains", "audiences": "/audiences"}


class ResendConnector:
    """Validates a Resend API key and lists its domains and audiences."""

    key = "RESEND"
    display_name = "Resend"
    description = "Modern email API for developers - send transactional emails"
    icon = "/icons/resend.svg"
    capabilities = ["transactional-email", "bulk-email", "email-templates"]
    required_credentials = [
        CredentialField(
            key="api_key",
            label="API Key",
            placeholder="re_...",
            pattern=r"re_[A-Za-z0-9_]+",
            help_url="https://resend.com/api-keys",
        ),
        CredentialField(
            key="from_email",
            label="From Email Address",
            placeholder="noreply@yourdomain.com",
            pattern=r"[^\s@]+@[^\s@]+\.[^\s@]+",
            help_url="https://resend.com/domains",
        ),
        CredentialField(
            key="from_name",
            label="From Name",
            placeholder="Your App Name",
            help_url="https://resend.com/docs",
            optional=True,
        ),
    ]

    def __init__(self, http: ProviderHTTPClient | None = None) -> None:
        self.http = http or ProviderHTTPClient(self.key, RESEND_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ResendConnector":
        return cls(ProviderHTTPClient.from_config(cls.key, config, RESEND_API_URL, transport=transport))

    async def validate_credential(self, credential: dict[str, str]) -> CredentialValidation:
        try:
            data = await self.http.get_json("/domains", headers=bearer(credential["api_key"]))
        except ProviderError as e:
            if e.status in (401, 403):
                return CredentialValidation(valid=False, error="Invalid Resend API key")
            raise

        if not isinstance(data, dict):
            raise ProviderError("Resend returned an unexpected domains body", self.key)
        domains = [
            {"id": r.id, "name": r.title, "status": r.metadata.get("status")}
            for r in parse_resources(data.get("data"), self._domain, self.key)
        ]
        return CredentialValidation(valid=True, metadata={"domains": domains})

    async def query_resources(
        self,
        credential: dict[str, str],
        query: ResourceQuery,
    ) -> ResourcePage:
        resource_type = query.resource_type or "domains"
        if resource_type not in RESOURCE_PATHS:
            raise ProviderError(
                f"Resend has no resource type '{resource_type}'", self.key, status=400
            )
        data = await self.http.get_json(
            RESOURCE_PATHS[resource_type], headers=bearer(credential["api_key"])
        )

        if not isinstance(data, dict):
            raise ProviderError(f"Resend returned an unexpected {resource_type} body", self.key)

        def to_resource(item: dict) -> Resource:
            item_id = required_id(item)
            return Resource(
                id=item_id,
                title=item.get("name") or item_id,
                type=resource_type.rstrip("s"),
                metadata={k: item[k] for k in ("status", "region", "created_at") if k in item},
            )

        # Resend returns these collections unpaginated; search filters locally
        term = (query.search or "").lower()
        resources = [
            r
            for r in parse_resources(data.get("data"), to_resource, self.key)
            if term in str(r.title).lower()
        ]
        return ResourcePage(resources=resources)

    @staticmethod
    def _domain(item: dict) -> Resource:
        return Resource(
            id=required_id(item),
            title=item.get("name") or "",
            type="domain",
            metadata={"status": item.get("status")},
        )

    def setup_instructions(self, credential: dict[str, str]) -> SetupInstructions:
        return SetupInstructions(
            env_vars={
                "RESEND_API_KEY": credential["api_key"],
                "RESEND_FROM_EMAIL": credential["from_email"],
                "RESEND_FROM_NAME": credential.get("from_name") or "App",
            },
            packages=["resend@^3.0.0"],
        )
