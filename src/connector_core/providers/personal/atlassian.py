"""Atlassian personal connector for Jira issues and Confluence pages.

Uses OAuth 2.0 (3LO). Tokens are issued for ``api.atlassian.com`` and are
not tied to one site: every API call goes through
``/ex/<product>/<cloud id>/...`` for one of the sites the user granted
access to.

See https://developer.atlassian.com/cloud/jira/platform/oauth-2-3lo-apps/
"""

import re
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

ATLASSIAN_API_URL = "https://api.atlassian.com"
ATLASSIAN_AUTHORIZE_URL = "https://auth.atlassian.com/authorize"
ATLASSIAN_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
ACCESSIBLE_RESOURCES_PATH = "/oauth/token/accessible-resources"
DEFAULT_SCOPES = [
    "read:jira-work",
    "read:jira-user",
    "read:confluence-content.all",
    "read:confluence-space.summary",
    "offline_access",
]
RESOURCE_TYPES = ("jira-issues", "confluence-pages")
DEFAULT_PAGE_SIZE = 50
JIRA_FIELDS = ["summary", "status", "priority", "assignee", "created", "updated"]
JIRA_BROWSE_WINDOW = "updated >= -365d"
CLOUD_ID_RE = re.compile(r"[A-Za-z0-9-]{1,64}")


def quote_query_text(term: str) -> str:
    """Quote a search term as a JQL/CQL string literal."""
    escaped = term.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class AtlassianConnector:
    """Read access to a user's Jira issues and Confluence pages."""

    key = "ATLASSIAN"
    display_name = "Atlassian"
    description = "Access your Jira issues and Confluence pages to bring context into your builds"
    icon = "/icons/atlassian.svg"
    capabilities = ["jira-issues", "confluence-pages"]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        http: ProviderHTTPClient | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.scopes = scopes or list(DEFAULT_SCOPES)
        # Refresh tokens are only issued with offline_access
        if "offline_access" not in self.scopes:
            self.scopes.append("offline_access")
        self.http = http or ProviderHTTPClient(self.key, ATLASSIAN_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "AtlassianConnector":
        return cls(
            client_id=config.client_id or "",
            client_secret=config.client_secret.get_secret_value() if config.client_secret else "",
            scopes=config.scopes,
            http=ProviderHTTPClient.from_config(
                cls.key,
                config,
                ATLASSIAN_API_URL,
                transport=transport,
                headers={"Accept": "application/json"},
            ),
        )

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_challenge: str | None = None,
        extra_scopes: list[str] | None = None,
    ) -> str:
        scopes = list(self.scopes)
        for scope in extra_scopes or []:
            if scope not in scopes:
                scopes.append(scope)

        # 3LO does not take PKCE parameters; the client secret authenticates the exchange
        params = {
            "audience": "api.atlassian.com",
            "client_id": self.client_id,
            "scope": " ".join(scopes),
            "redirect_uri": redirect_uri,
            "state": state,
            "response_type": "code",
            "prompt": "consent",
        }
        return f"{ATLASSIAN_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        data = await self.http.post_json(
            ATLASSIAN_TOKEN_URL,
            json={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        token = token_from_response(data, self.key)

        sites = await self._sites(token.access_token)
        token.metadata = {
            "sites": [
                {"id": site["id"], "name": site.get("name"), "url": site.get("url")}
                for site in sites
            ],
        }
        if sites:
            token.metadata["cloud_id"] = sites[0]["id"]
        return token

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        # Atlassian rotates refresh tokens; the response carries the new one
        data = await self.http.post_json(
            ATLASSIAN_TOKEN_URL,
            json={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
            },
        )
        return token_from_response(data, self.key)

    async def _sites(self, access_token: str) -> list[dict[str, Any]]:
        """Sites (cloud ids) the token was granted for."""
        data = await self.http.get_json(ACCESSIBLE_RESOURCES_PATH, headers=bearer(access_token))
        if not isinstance(data, list) or not all(
            isinstance(site, dict) and isinstance(site.get("id"), str) for site in data
        ):
            raise ProviderError("Atlassian returned malformed accessible resources", self.key)
        return data

    async def validate_connection(self, access_token: str) -> bool:
        try:
            await self._sites(access_token)
        except ProviderError as e:
            if e.status in (401, 403):
                return False
            raise
        return True

    async def _cloud_id(self, access_token: str, query: ResourceQuery) -> str:
        cloud_id = query.filters.get("cloud_id")
        if cloud_id:
            # Cloud ids end up in the request path
            if not isinstance(cloud_id, str) or not CLOUD_ID_RE.fullmatch(cloud_id):
                raise ProviderError("Invalid Atlassian cloud_id filter", self.key, status=400)
            return cloud_id
        sites = await self._sites(access_token)
        if not sites:
            raise ProviderError("No accessible Atlassian sites", self.key, status=404)
        return sites[0]["id"]

    async def _fetch(
        self,
        access_token: str,
        query: ResourceQuery,
        search: str | None,
    ) -> ResourcePage:
        resource_type = query.resource_type or "jira-issues"
        if resource_type not in RESOURCE_TYPES:
            raise ProviderError(
                f"Atlassian has no resource type '{resource_type}'", self.key, status=400
            )
        cloud_id = await self._cloud_id(access_token, query)
        limit = min(query.limit or DEFAULT_PAGE_SIZE, DEFAULT_PAGE_SIZE)

        if resource_type == "jira-issues":
            return await self._jira_issues(access_token, cloud_id, search, limit, query.cursor)
        return await self._confluence_pages(access_token, cloud_id, search, limit, query.cursor)

    async def _jira_issues(
        self,
        access_token: str,
        cloud_id: str,
        search: str | None,
        limit: int,
        cursor: str | None,
    ) -> ResourcePage:
        # The search/jql endpoint rejects unbounded queries
        restriction = f"text ~ {quote_query_text(search)}" if search else JIRA_BROWSE_WINDOW
        jql = f"{restriction} ORDER BY updated DESC"
        body: dict[str, Any] = {"jql": jql, "maxResults": limit, "fields": JIRA_FIELDS}
        if cursor:
            body["nextPageToken"] = cursor

        data = await self.http.post_json(
            f"/ex/jira/{cloud_id}/rest/api/3/search/jql",
            json=body,
            headers=bearer(access_token),
        )
        if not isinstance(data, dict):
            raise ProviderError("Jira search returned an unexpected body", self.key)

        return ResourcePage(
            resources=parse_resources(data.get("issues"), self._issue, self.key),
            next_cursor=None if data.get("isLast", True) else data.get("nextPageToken"),
        )

    async def _confluence_pages(
        self,
        access_token: str,
        cloud_id: str,
        search: str | None,
        limit: int,
        cursor: str | None,
    ) -> ResourcePage:
        cql = "type=page ORDER BY lastmodified DESC"
        if search:
            cql = f"text ~ {quote_query_text(search)} AND {cql}"
        try:
            start = int(cursor) if cursor else 0
        except ValueError as e:
            raise ProviderError("Invalid Confluence cursor", self.key, status=400) from e

        data = await self.http.get_json(
            f"/ex/confluence/{cloud_id}/rest/api/content/search",
            params={"cql": cql, "limit": limit, "start": start, "expand": "version"},
            headers=bearer(access_token),
        )
        if not isinstance(data, dict):
            raise ProviderError("Confluence search returned an unexpected body", self.key)

        links = data.get("_links")
        links = links if isinstance(links, dict) else {}
        resources = parse_resources(
            data.get("results"), lambda page: self._page(page, links.get("base")), self.key
        )
        return ResourcePage(
            resources=resources,
            next_cursor=str(start + len(resources)) if links.get("next") and resources else None,
        )

    async def list_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query, None)

    async def query_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query, query.search)

    @staticmethod
    def _issue(issue: dict[str, Any]) -> Resource:
        fields = issue.get("fields") or {}
        issue_key = issue.get("key")
        summary = fields.get("summary") or "Untitled"
        return Resource(
            id=required_id(issue),
            title=f"{issue_key}: {summary}" if issue_key else summary,
            type="jira-issue",
            url=issue.get("self"),
            metadata={
                "key": issue_key,
                "status": (fields.get("status") or {}).get("name"),
                "priority": (fields.get("priority") or {}).get("name"),
                "assignee": (fields.get("assignee") or {}).get("displayName"),
                "created": fields.get("created"),
                "updated": fields.get("updated"),
            },
        )

    @staticmethod
    def _page(page: dict[str, Any], base_url: str | None) -> Resource:
        links = page.get("_links") or {}
        webui = links.get("webui")
        return Resource(
            id=required_id(page),
            title=page.get("title") or "Untitled",
            type="confluence-page",
            url=f"{base_url}{webui}" if base_url and webui else None,
            metadata={
                "space": (page.get("space") or {}).get("key"),
                "last_modified": (page.get("version") or {}).get("when"),
            },
        )
