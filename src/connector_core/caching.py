"""Single-flight deduplication of concurrent async calls.

Used to coalesce token refreshes: when several requests find the same
connection expired at once, only one refresh call reaches the provider and
every caller receives its result (or its exception).
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class SingleFlight:
    """Runs at most one call per key at a time and shares its outcome.

    Example:
        flights = SingleFlight()
        token = await flights.do(f"{user_id}:{connector_key}", refresh)
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task[Any]] = {}

    async def do(self, key: str, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()``, or join the call already running under ``key``.

        The shared call runs as its own task, so cancelling one caller
        does not cancel it for the others.

        Args:
            key: Identity of the operation
            func: Zero-argument coroutine factory

        Returns:
            Result of the shared call
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(func())
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._finished(key, done))
        return await asyncio.shield(task)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def _finished(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Retrieve the exception even when every caller was cancelled
        if not task.cancelled():
            task.exception()
