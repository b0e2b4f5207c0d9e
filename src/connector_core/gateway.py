"""Uniform resource queries across personal and shared connectors.

The caller names a connector key and a scope (user id for personal
connectors, project id for shared ones); the gateway resolves credentials
and returns a lazy stream of normalized ``Resource`` items.

Example:
    stream = gateway.query_resources("NOTION", "user-1", ResourceQuery(search="roadmap"))
    async for resource in stream:
        print(resource.title)
"""

import dataclasses
from collections.abc import AsyncIterator, Awaitable, Callable

from connector_core.connections.manager import ConnectionManager
from connector_core.exceptions import ConnectorNotFoundError, ProviderError, ResourceQueryError
from connector_core.observability import Timer, emit_timer, get_logger
from connector_core.protocols.connector import Resource, ResourcePage, ResourceQuery
from connector_core.registry import ConnectorRegistry

logger = get_logger(__name__)

PageFetcher = Callable[[ResourceQuery], Awaitable[ResourcePage]]


class ResourceStream:
    """Forward-only async stream of resources fetched page by page.

    No request is made until iteration starts. A stream can be iterated
    once; iterating it again raises ``RuntimeError``.
    """

    def __init__(self, connector_key: str, query: ResourceQuery, fetch_page: PageFetcher) -> None:
        self.connector_key = connector_key
        self.query = query
        self._fetch_page = fetch_page
        self._started = False

    def _start(self) -> None:
        if self._started:
            raise RuntimeError("ResourceStream can only be iterated once")
        self._started = True

    def pages(self) -> AsyncIterator[ResourcePage]:
        """Iterate page by page instead of item by item."""
        self._start()
        return self._pages()

    async def _pages(self) -> AsyncIterator[ResourcePage]:
        limit = self.query.limit
        remaining = limit
        cursor = self.query.cursor

        while remaining is None or remaining > 0:
            page_query = dataclasses.replace(self.query, cursor=cursor, limit=remaining)
            page = await self._fetch_page(page_query)

            resources = page.resources
            if remaining is not None:
                resources = resources[:remaining]
                remaining -= len(resources)
            yield ResourcePage(resources=resources, next_cursor=page.next_cursor)

            # A repeated cursor would loop forever
            if not page.next_cursor or page.next_cursor == cursor:
                return
            cursor = page.next_cursor

    def __aiter__(self) -> AsyncIterator[Resource]:
        self._start()
        return self._items()

    async def _items(self) -> AsyncIterator[Resource]:
        async for page in self._pages():
            for resource in page.resources:
                yield resource

    async def collect(self) -> list[Resource]:
        """Drain the stream into a list."""
        return [resource async for resource in self]


class ResourceGateway:
    """Resolves credentials per page and calls the connector."""

    def __init__(self, registry: ConnectorRegistry, manager: ConnectionManager) -> None:
        self.registry = registry
        self.manager = manager

    def query_resources(
        self,
        connector_key: str,
        scope_id: str,
        query: ResourceQuery | None = None,
    ) -> ResourceStream:
        """Search or list resources of a personal or shared connector.

        Args:
            connector_key: Registered connector key
            scope_id: User id (personal connectors) or project id (shared)
            query: Search term, paging and filters

        Returns:
            Lazy stream of resources

        Raises:
            ConnectorNotFoundError: If the key is not registered
        """
        query = query or ResourceQuery()
        if self.registry.has_personal(connector_key):
            fetch = self._personal_fetcher(connector_key, scope_id, browse=False)
        elif self.registry.has_shared(connector_key):
            fetch = self._shared_fetcher(connector_key, scope_id)
        else:
            raise ConnectorNotFoundError(connector_key, "personal or shared")
        return ResourceStream(connector_key, query, fetch)

    def list_resources(
        self,
        connector_key: str,
        user_id: str,
        query: ResourceQuery | None = None,
    ) -> ResourceStream:
        """Browse a personal connector's resources without a search term."""
        self.registry.get_personal_connector(connector_key)
        fetch = self._personal_fetcher(connector_key, user_id, browse=True)
        return ResourceStream(connector_key, query or ResourceQuery(), fetch)

    def _personal_fetcher(self, connector_key: str, user_id: str, browse: bool) -> PageFetcher:
        connector = self.registry.get_personal_connector(connector_key)

        async def fetch(query: ResourceQuery) -> ResourcePage:
            # A fresh token per page; a refresh may happen between pages
            async with self.manager.live_token(user_id, connector_key) as access_token:
                call = connector.list_resources if browse else connector.query_resources
                return await self._call(connector_key, call(access_token, query))

        return fetch

    def _shared_fetcher(self, connector_key: str, project_id: str) -> PageFetcher:
        connector = self.registry.get_shared_connector(connector_key)

        async def fetch(query: ResourceQuery) -> ResourcePage:
            async with self.manager.shared_credential(project_id, connector_key) as credential:
                return await self._call(connector_key, connector.query_resources(credential, query))

        return fetch

    @staticmethod
    async def _call(connector_key: str, call: Awaitable[ResourcePage]) -> ResourcePage:
        try:
            async with Timer() as t:
                page = await call
        except ProviderError as e:
            logger.warning(
                "Resource query failed",
                context={"connector_key": connector_key, "status": e.status},
            )
            raise ResourceQueryError(
                f"{connector_key} resource query failed", connector_key, status=e.status
            ) from e
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            # Connectors outside this package may not normalize malformed bodies
            logger.error(
                "Resource query returned a malformed page",
                context={"connector_key": connector_key},
                error=e,
            )
            raise ResourceQueryError(
                f"{connector_key} returned a malformed resource page", connector_key
            ) from e
        emit_timer("connector.query", t.duration_ms, {"connector_key": connector_key})
        return page
