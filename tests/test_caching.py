"""Tests for single-flight call coalescing."""

import asyncio

import pytest

from connector_core.caching import SingleFlight


class TestSingleFlight:
    """Coalescing of concurrent calls per key."""

    @pytest.mark.asyncio
    async def test_lone_call_runs(self) -> None:
        """Without contention the function simply runs once."""
        flights = SingleFlight()
        call_count = 0

        async def fetch() -> str:
            nonlocal call_count
            call_count += 1
            return "result"

        assert await flights.do("key", fetch) == "result"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_call(self) -> None:
        """Concurrent calls with same key share one execution."""
        flights = SingleFlight()
        call_count = 0

        async def slow_refresh() -> str:
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.05)
            return "result"

        results = await asyncio.gather(*(flights.do("u1:NOTION", slow_refresh) for _ in range(3)))

        assert results == ["result"] * 3
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        """Different users or connectors never share a call."""
        flights = SingleFlight()
        call_count = 0

        async def fetch() -> str:
            nonlocal call_count
            call_count += 1
            return f"result-{call_count}"

        assert await flights.do("u1:NOTION", fetch) == "result-1"
        assert await flights.do("u1:LINEAR", fetch) == "result-2"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter(self) -> None:
        """Every waiter sees the same exception."""
        flights = SingleFlight()

        async def failing_refresh() -> str:
            await asyncio.sleep(0.05)
            raise ValueError("invalid_grant")

        results = await asyncio.gather(
            flights.do("key", failing_refresh),
            flights.do("key", failing_refresh),
            return_exceptions=True,
        )
        assert isinstance(results[0], ValueError)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_in_flight(self) -> None:
        """in_flight() is true only while the call runs."""
        flights = SingleFlight()
        started = asyncio.Event()
        release = asyncio.Event()

        async def fetch() -> str:
            started.set()
            await release.wait()
            return "done"

        task = asyncio.create_task(flights.do("key", fetch))
        await started.wait()
        assert flights.in_flight("key")

        release.set()
        assert await task == "done"
        await asyncio.sleep(0)
        assert not flights.in_flight("key")

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_call(self) -> None:
        """Cancelling one caller leaves the shared call running for others."""
        flights = SingleFlight()
        release = asyncio.Event()

        async def fetch() -> str:
            await release.wait()
            return "done"

        first = asyncio.create_task(flights.do("key", fetch))
        second = asyncio.create_task(flights.do("key", fetch))
        await asyncio.sleep(0.01)

        first.cancel()
        release.set()

        assert await second == "done"
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_key_reusable_after_completion(self) -> None:
        """A finished key runs the function again on the next call."""
        flights = SingleFlight()
        call_count = 0

        async def fetch() -> int:
            nonlocal call_count
            call_count += 1
            return call_count

        assert await flights.do("key", fetch) == 1
        await asyncio.sleep(0)
        assert await flights.do("key", fetch) == 2
