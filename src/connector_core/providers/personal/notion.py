"""Notion personal connector.

Uses the public REST API: OAuth with HTTP Basic client authentication at
the token endpoint, and ``POST /v1/search`` for both browsing and search.

See https://developers.notion.com/docs/authorization
"""

import base64
from typing import Any
from urllib.parse import urlencode

import httpx

from connector_core.config import ProviderConfig
from connector_core.exceptions import ProviderError
from connector_core.protocols.connector import (
    Resource,
    ResourcePage,
    ResourceQuery,
    TokenResponse,
)
from connector_core.providers.http import (
    ProviderHTTPClient,
    bearer,
    parse_resources,
    required_id,
    token_from_response,
)

NOTION_API_URL = "https://api.notion.com"
NOTION_AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"
NOTION_VERSION = "2022-06-28"
MAX_PAGE_SIZE = 100


class NotionConnector:
    """Read access to a user's Notion pages and databases."""

    key = "NOTION"
    display_name = "Notion"
    description = "Access your Notion pages and databases to bring context into your builds"
    icon = "/icons/notion.svg"
    capabilities = ["pages", "databases"]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http: ProviderHTTPClient | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.http = http or ProviderHTTPClient(self.key, NOTION_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "NotionConnector":
        return cls(
            client_id=config.client_id or "",
            client_secret=config.client_secret.get_secret_value() if config.client_secret else "",
            http=ProviderHTTPClient.from_config(
                cls.key,
                config,
                NOTION_API_URL,
                transport=transport,
                headers={"Notion-Version": NOTION_VERSION},
            ),
        )

    def _basic_auth(self) -> dict[str, str]:
        raw = f"{self.client_id}:{self._client_secret}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        # Notion has no scopes; access is chosen by the user on the consent page
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "owner": "user",
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{NOTION_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            body["code_verifier"] = code_verifier

        data = await self.http.post_json(
            "/v1/oauth/token", json=body, headers=self._basic_auth()
        )
        token = token_from_response(data, self.key)
        owner = data.get("owner")
        owner = owner.get("user") if isinstance(owner, dict) else None
        if not isinstance(owner, dict):
            owner = {}
        token.metadata = {
            k: v
            for k, v in {
                "workspace_id": data.get("workspace_id"),
                "workspace_name": data.get("workspace_name"),
                "bot_id": data.get("bot_id"),
                "user_name": owner.get("name"),
            }.items()
            if v is not None
        }
        return token

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        data = await self.http.post_json(
            "/v1/oauth/token",
            json={"grant_type": "refresh_token", "refresh_token": refresh_token},
            headers=self._basic_auth(),
        )
        return token_from_response(data, self.key)

    async def validate_connection(self, access_token: str) -> bool:
        try:
            await self.http.get_json("/v1/users/me", headers=bearer(access_token))
        except ProviderError as e:
            if e.status in (401, 403):
                return False
            raise
        return True

    async def _search(
        self,
        access_token: str,
        query: ResourceQuery,
        search: str | None,
    ) -> ResourcePage:
        body: dict[str, Any] = {
            "page_size": min(query.limit or MAX_PAGE_SIZE, MAX_PAGE_SIZE),
        }
        if search:
            body["query"] = search
        else:
            body["sort"] = {"direction": "descending", "timestamp": "last_edited_time"}
        if query.cursor:
            body["start_cursor"] = query.cursor
        if query.resource_type in ("page", "database"):
            body["filter"] = {"property": "object", "value": query.resource_type}

        data = await self.http.post_json("/v1/search", json=body, headers=bearer(access_token))
        if not isinstance(data, dict):
            raise ProviderError("Notion search returned an unexpected body", self.key)

        return ResourcePage(
            resources=parse_resources(data.get("results"), self._to_resource, self.key),
            next_cursor=data.get("next_cursor") if data.get("has_more") else None,
        )

    async def list_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._search(access_token, query, None)

    async def query_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._search(access_token, query, query.search)

    @staticmethod
    def _title(item: dict[str, Any]) -> str:
        # Databases carry a top-level title; pages carry it in their title property
        parts = item.get("title")
        if parts is None:
            for prop in (item.get("properties") or {}).values():
                if prop.get("type") == "title":
                    parts = prop.get("title")
                    break
        text = "".join(p.get("plain_text", "") for p in parts or [])
        return text or "Untitled"

    def _to_resource(self, item: dict[str, Any]) -> Resource:
        return Resource(
            id=required_id(item),
            title=self._title(item),
            type=item.get("object", "page"),
            url=item.get("url"),
            metadata={
                "created_time": item.get("created_time"),
                "last_edited_time": item.get("last_edited_time"),
            },
        )
