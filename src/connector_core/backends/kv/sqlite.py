"""SQLite key-value storage for single-node deployments."""

import asyncio
import sqlite3
import time
from pathlib import Path
from typing import Any

DEFAULT_PATH = "./data/connectors.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_entries (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    expires_at REAL
)
"""

_LIVE = "(expires_at IS NULL OR expires_at > ?)"


def _like_prefix(prefix: str) -> str:
    """LIKE pattern matching ``prefix`` literally (``_`` and ``%`` escaped)."""
    for ch in ("\\", "%", "_"):
        prefix = prefix.replace(ch, "\\" + ch)
    return prefix + "%"


class SQLiteKVStore:
    """KVStore on one ``sqlite3`` connection.

    Statements are serialized by an ``asyncio.Lock``. ``set`` is a single
    upsert, so a record is always replaced as a whole. Expired rows are
    filtered on read and purged on delete and list.

    Args:
        path: Database file, created with its parent directory if missing.
            ``":memory:"`` keeps everything in process.
        **kwargs: Other backend options, ignored
    """

    def __init__(self, path: str | None = None, **kwargs: Any) -> None:
        self.path = path or DEFAULT_PATH
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        return self._conn

    def _write(self, sql: str, params: tuple[Any, ...]) -> int:
        cursor = self.conn.execute(sql, params)
        self.conn.commit()
        return cursor.rowcount

    def _purge(self, now: float) -> None:
        self._write("DELETE FROM kv_entries WHERE NOT " + _LIVE, (now,))

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            row = self.conn.execute(
                f"SELECT value FROM kv_entries WHERE key = ? AND {_LIVE}",
                (key, time.time()),
            ).fetchone()
        return bytes(row[0]) if row else None

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> None:
        """Upsert ``value``; ``ttl`` is in seconds, None keeps it forever."""
        expires_at = time.time() + ttl if ttl else None
        async with self._lock:
            self._write(
                "INSERT INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET "
                "value = excluded.value, expires_at = excluded.expires_at",
                (key, value, expires_at),
            )

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns False if it was absent or already expired."""
        async with self._lock:
            self._purge(time.time())
            return self._write("DELETE FROM kv_entries WHERE key = ?", (key,)) > 0

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def list(self, prefix: str) -> list[str]:
        """Live keys starting with ``prefix``, sorted."""
        async with self._lock:
            self._purge(time.time())
            rows = self.conn.execute(
                "SELECT key FROM kv_entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (_like_prefix(prefix),),
            ).fetchall()
        return [key for (key,) in rows]

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
