"""Linear personal connector over the GraphQL API.

See https://developers.linear.app/docs/oauth/authentication
"""

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

LINEAR_API_URL = "https://api.linear.app"
LINEAR_AUTHORIZE_URL = "https://linear.app/oauth/authorize"
DEFAULT_SCOPES = ["read", "write"]
DEFAULT_PAGE_SIZE = 50

_PAGE_INFO = "pageInfo { hasNextPage endCursor }"

# resource_type -> (GraphQL query, connection field, title field)
QUERIES: dict[str, tuple[str, str, str]] = {
    "issues": (
        "query($first: Int!, $after: String) { issues(first: $first, after: $after) "
        "{ nodes { id identifier title url priorityLabel state { name } team { name } "
        "updatedAt } " + _PAGE_INFO + " } }",
        "issues",
        "title",
    ),
    "projects": (
        "query($first: Int!, $after: String) { projects(first: $first, after: $after) "
        "{ nodes { id name url state progress targetDate updatedAt } " + _PAGE_INFO + " } }",
        "projects",
        "name",
    ),
    "teams": (
        "query($first: Int!, $after: String) { teams(first: $first, after: $after) "
        "{ nodes { id key name } " + _PAGE_INFO + " } }",
        "teams",
        "name",
    ),
}

SEARCH_QUERY = (
    "query($term: String!, $first: Int!, $after: String) "
    "{ searchIssues(term: $term, first: $first, after: $after) "
    "{ nodes { id identifier title url priorityLabel state { name } team { name } "
    "updatedAt } " + _PAGE_INFO + " } }"
)


class LinearConnector:
    """Read access to a user's Linear issues, projects and teams."""

    key = "LINEAR"
    display_name = "Linear"
    description = "Access your Linear issues, projects, and teams to bring context into your builds"
    icon = "/icons/linear.svg"
    capabilities = ["issues", "projects", "teams"]

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
        self.http = http or ProviderHTTPClient(self.key, LINEAR_API_URL)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LinearConnector":
        return cls(
            client_id=config.client_id or "",
            client_secret=config.client_secret.get_secret_value() if config.client_secret else "",
            scopes=config.scopes,
            http=ProviderHTTPClient.from_config(cls.key, config, LINEAR_API_URL, transport=transport),
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

        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": ",".join(scopes),
            "state": state,
            "prompt": "consent",
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{LINEAR_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        data = await self.http.post_json("/oauth/token", data=form)
        return token_from_response(data, self.key)

    async def refresh_token(
        self,
        refresh_token: str,
        metadata: dict[str, Any] | None = None,
    ) -> TokenResponse:
        data = await self.http.post_json(
            "/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self._client_secret,
            },
        )
        return token_from_response(data, self.key)

    async def _graphql(
        self,
        access_token: str,
        query: str,
        variables: dict[str, Any],
    ) -> dict[str, Any]:
        result = await self.http.post_json(
            "/graphql",
            json={"query": query, "variables": variables},
            headers=bearer(access_token),
        )
        if not isinstance(result, dict) or result.get("errors") or "data" not in result:
            raise ProviderError("Linear GraphQL request returned errors", self.key)
        return result["data"]

    async def validate_connection(self, access_token: str) -> bool:
        try:
            await self._graphql(access_token, "query { viewer { id } }", {})
        except ProviderError as e:
            if e.status in (401, 403):
                return False
            raise
        return True

    async def _fetch(
        self,
        access_token: str,
        query: ResourceQuery,
        search: str | None,
    ) -> ResourcePage:
        variables: dict[str, Any] = {
            "first": min(query.limit or DEFAULT_PAGE_SIZE, DEFAULT_PAGE_SIZE),
            "after": query.cursor,
        }
        if search:
            graphql, field_name, title_field = SEARCH_QUERY, "searchIssues", "title"
            resource_type = "issues"
            variables["term"] = search
        else:
            resource_type = query.resource_type or "issues"
            if resource_type not in QUERIES:
                raise ProviderError(
                    f"Linear has no resource type '{resource_type}'", self.key, status=400
                )
            graphql, field_name, title_field = QUERIES[resource_type]

        data = await self._graphql(access_token, graphql, variables)
        connection = data.get(field_name) if isinstance(data, dict) else None
        if connection is None:
            connection = {}
        if not isinstance(connection, dict):
            raise ProviderError(f"Linear returned a malformed {field_name} connection", self.key)
        page_info = connection.get("pageInfo")
        if not isinstance(page_info, dict):
            page_info = {}

        return ResourcePage(
            resources=parse_resources(
                connection.get("nodes"),
                lambda node: self._to_resource(node, resource_type, title_field),
                self.key,
            ),
            next_cursor=page_info.get("endCursor") if page_info.get("hasNextPage") else None,
        )

    async def list_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query, None)

    async def query_resources(self, access_token: str, query: ResourceQuery) -> ResourcePage:
        return await self._fetch(access_token, query, query.search)

    @staticmethod
    def _to_resource(node: dict[str, Any], resource_type: str, title_field: str) -> Resource:
        metadata = {
            k: v for k, v in node.items() if k not in ("id", "url", title_field) and v is not None
        }
        return Resource(
            id=required_id(node),
            title=node.get(title_field) or "Untitled",
            type=resource_type.rstrip("s"),
            url=node.get("url"),
            metadata=metadata,
        )
