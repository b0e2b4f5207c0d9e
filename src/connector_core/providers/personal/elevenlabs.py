"""ElevenLabs personal connector.

Users connect with their own API key instead of an OAuth redirect. The key
is checked against ``GET /v1/user`` and then stored like any other token,
without expiry or refresh token.

See https://elevenlabs.io/docs/api-reference
"""

from typing import Any

import httpx

from connector_core.config import ProviderConfig
from connector_core.exceptions import ProviderError
from connector_core.protocols.connector import (
    Resource,
    ResourcePage,
    ResourceQuery,
    TokenResponse,
)
from connector_core.providers.http import ProviderHTTPClient, parse_resources, required_id

ELEVENLABS_API_URL = "https://api.elevenlabs.io"
RESOURCE_TYPES = ("voices", "models", "user")


def _key_header(api_key: str) -> dict[str, str]:
    return {"xi-api-key": api_key}


class ElevenLabsConnector:
    """Read access to a user's ElevenLabs voices, models and subscription."""

    key = "ELEVENLABS"
    display_name = "ElevenLabs"
    description = "Access your ElevenLabs voices and generate AI-powered audio for your apps"
    icon = "/icons/elevenlabs.svg"
    capabilities = ["voices", "models", "user"]
    auth_type = "api_key"

    def __init__(self, http: ProviderHTTPClient | None = None) -> None:
        self.http = http or ProviderHTTPClient(self.key, ELEVENLABS_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ElevenLabsConnector":
        return cls(
            ProviderHTTPClient.from_config(cls.key, config, ELEVENLABS_API_URL, transport=transport)
        )

    def _no_oauth(self) -> ProviderError:
        return ProviderError(
            f"{self.display_name} is connected with an API key", self.key, status=400
        )

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        raise self._no_oauth()

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        raise self._no_oauth()

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        raise ProviderError("ElevenLabs API keys cannot be refreshed", self.key, status=400)

    async def _user(self, api_key: str) -> dict[str, Any]:
        data = await self.http.get_json("/v1/user", headers=_key_header(api_key))
        if not isinstance(data, dict):
            raise ProviderError("ElevenLabs returned an unexpected user body", self.key)
        return data

    async def verify_api_key(self, api_key: str) -> TokenResponse:
        user = await self._user(api_key)
        subscription = user.get("subscription")
        if not isinstance(subscription, dict):
            subscription = {}
        return TokenResponse(
            access_token=api_key,
            token_type="api_key",
            metadata={
                k: v
                for k, v in {
                    "subscription_tier": subscription.get("tier"),
                    "character_count": subscription.get("character_count"),
                    "character_limit": subscription.get("character_limit"),
                    "first_name": user.get("first_name"),
                }.items()
                if v is not None
            },
        )

    async def validate_connection(self, access_token: str) -> bool:
        try:
            await self._user(access_token)
        except ProviderError as e:
            if e.status in (401, 403):
                return False
            raise
        return True

    async def _fetch(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        resource_type = query.resource_type or "voices"
        if resource_type not in RESOURCE_TYPES:
            raise ProviderError(
                f"ElevenLabs has no resource type '{resource_type}'", self.key, status=400
            )

        if resource_type == "user":
            user = await self._user(access_token)
            subscription = user.get("subscription")
            resources = [
                Resource(
                    id="user",
                    title=user.get("first_name") or "ElevenLabs User",
                    type="user",
                    metadata={"subscription": subscription} if subscription else {},
                )
            ]
        elif resource_type == "voices":
            data = await self.http.get_json("/v1/voices", headers=_key_header(access_token))
            if not isinstance(data, dict):
                raise ProviderError("ElevenLabs returned an unexpected voices body", self.key)
            resources = parse_resources(data.get("voices"), self._voice, self.key)
        else:
            # /v1/models answers with a bare list
            data = await self.http.get_json("/v1/models", headers=_key_header(access_token))
            resources = parse_resources(data, self._model, self.key)

        # Collections are unpaginated; search and limit apply locally
        term = (query.search or "").lower()
        if term:
            resources = [r for r in resources if term in str(r.title).lower()]
        if query.limit:
            resources = resources[: query.limit]
        return ResourcePage(resources=resources)

    async def list_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query)

    async def query_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query)

    @staticmethod
    def _voice(item: dict[str, Any]) -> Resource:
        return Resource(
            id=required_id(item, "voice_id"),
            title=item.get("name") or "Untitled voice",
            type="voice",
            url=item.get("preview_url"),
            metadata={
                k: item[k]
                for k in ("category", "description", "labels")
                if item.get(k) is not None
            },
        )

    @staticmethod
    def _model(item: dict[str, Any]) -> Resource:
        return Resource(
            id=required_id(item, "model_id"),
            title=item.get("name") or item["model_id"],
            type="model",
            metadata={
                "description": item.get("description"),
                "can_be_finetuned": item.get("can_be_finetuned"),
                "can_do_voice_conversion": item.get("can_do_voice_conversion"),
                "languages": [
                    lang.get("language_id") for lang in item.get("languages") or []
                ],
            },
        )
