"""Storage backend discovery via Python entry points.

Backends register under ``connector_core.backends.<kind>`` in their
package metadata, e.g. in ``pyproject.toml``::

    [project.entry-points."connector_core.backends.kv"]
    redis = "my_package.kv:RedisKVStore"
"""

from importlib.metadata import entry_points
from typing import Any

from connector_core.exceptions import ConfigurationError
from connector_core.protocols import KVStore

ENTRY_POINT_PREFIX = "connector_core.backends"


def available_backends(kind: str) -> list[str]:
    """Names registered for a backend kind, sorted."""
    return sorted(ep.name for ep in entry_points(group=f"{ENTRY_POINT_PREFIX}.{kind}"))


def load_backend(kind: str, name: str) -> type:
    """Import the class registered as ``name`` for ``kind``.

    Raises:
        ConfigurationError: If no such backend is installed
    """
    matches = entry_points(group=f"{ENTRY_POINT_PREFIX}.{kind}", name=name)
    for ep in matches:
        return ep.load()
    known = ", ".join(available_backends(kind)) or "none installed"
    raise ConfigurationError(f"Unknown {kind} backend '{name}' (available: {known})")


def create_kv_store(backend: str, **options: Any) -> KVStore:
    """Instantiate a KV backend, e.g. ``create_kv_store("sqlite", path="kv.db")``."""
    store = load_backend("kv", backend)(**options)
    if not isinstance(store, KVStore):
        raise ConfigurationError(f"KV backend '{backend}' does not implement KVStore")
    return store
