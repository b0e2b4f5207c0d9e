"""In-memory key-value storage for tests and single-process development."""

import asyncio
import time
from typing import Any, NamedTuple


class _Slot(NamedTuple):
    value: bytes
    expires_at: float | None


class MemoryKVStore:
    """Process-local KVStore. Nothing survives a restart.

    Every operation holds one ``asyncio.Lock``, so a ``set`` replaces a
    record in a single step and readers never see a partial write.
    Expired entries are dropped lazily when touched.
    """

    def __init__(self, **kwargs: Any) -> None:
        # kwargs accepted so create_kv_store can pass backend options uniformly
        self._slots: dict[str, _Slot] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _expired(slot: _Slot, now: float) -> bool:
        return slot.expires_at is not None and now >= slot.expires_at

    def _lookup(self, key: str) -> _Slot | None:
        slot = self._slots.get(key)
        if slot is not None and self._expired(slot, time.time()):
            del self._slots[key]
            return None
        return slot

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            slot = self._lookup(key)
        return slot.value if slot else None

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:
        """Store ``value``; ``ttl`` is in seconds, None keeps it forever."""
        slot = _Slot(value, time.time() + ttl if ttl else None)
        async with self._lock:
            self._slots[key] = slot

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns False if it was absent or already expired."""
        async with self._lock:
            return self._lookup(key) is not None and self._slots.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._lookup(key) is not None

    async def list(self, prefix: str) -> list[str]:
        """Live keys starting with ``prefix``, sorted."""
        now = time.time()
        async with self._lock:
            for key in [k for k, s in self._slots.items() if self._expired(s, now)]:
                del self._slots[key]
            return sorted(k for k in self._slots if k.startswith(prefix))

    async def clear(self) -> None:
        async with self._lock:
            self._slots.clear()
