"""Storage contract shared by every KV backend."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class KVStore(Protocol):
    """Async byte store with optional per-key expiry.

    Backends register under the ``connector_core.backends.kv`` entry-point
    group. A ``set`` replaces the whole value in one step, so readers see
    either the old value or the new one. Expired keys behave as absent in
    every method.
    """

    async def get(self, key: str) -> bytes | None:
        ...

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:
        """Store ``value``, expiring after ``ttl`` seconds when given."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove ``key``; True only if this call removed a live value."""
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def list(self, prefix: str) -> list[str]:
        """Sorted live keys starting with ``prefix``."""
        ...
