"""Composite-key persistence of connection records on a KV store.

Each record is serialized as one JSON document and written with a single
``KVStore.set``, so a refresh replaces the whole encrypted envelope at once.
"""

import json

from connector_core.connections.models import PersonalConnection, SharedConnection
from connector_core.exceptions import DecryptionError
from connector_core.protocols import KVStore
from connector_core.utils.validation import validate_connector_key, validate_identifier


class ConnectionStorage:
    """Stores personal connections by (user_id, connector_key) and shared
    connections by (project_id, connector_key)."""

    def __init__(self, kv: KVStore) -> None:
        """Initialize connection storage.

        Args:
            kv: KV store holding connection records
        """
        self.kv = kv

    @staticmethod
    def _personal_key(user_id: str, connector_key: str) -> str:
        validate_identifier(user_id, "user_id")
        validate_connector_key(connector_key)
        return f"personal_connection:{user_id}:{connector_key}"

    @staticmethod
    def _shared_key(project_id: str, connector_key: str) -> str:
        validate_identifier(project_id, "project_id")
        validate_connector_key(connector_key)
        return f"shared_connection:{project_id}:{connector_key}"

    @staticmethod
    def _load(data: bytes) -> dict:
        try:
            parsed = json.loads(data.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError("Stored connection record is corrupt") from e
        if not isinstance(parsed, dict):
            raise DecryptionError("Stored connection record is corrupt")
        return parsed

    # Personal connections

    async def put_personal(self, connection: PersonalConnection) -> None:
        """Insert or replace a personal connection."""
        key = self._personal_key(connection.user_id, connection.connector_key)
        await self.kv.set(key, json.dumps(connection.to_dict()).encode())

    async def get_personal(
        self,
        user_id: str,
        connector_key: str,
    ) -> PersonalConnection | None:
        """Get a personal connection, or None if the user never authorized."""
        data = await self.kv.get(self._personal_key(user_id, connector_key))
        if data is None:
            return None
        try:
            return PersonalConnection.from_dict(self._load(data))
        except KeyError as e:
            raise DecryptionError("Stored connection record is incomplete") from e

    async def delete_personal(self, user_id: str, connector_key: str) -> bool:
        """Delete a personal connection. Returns True if one existed."""
        return await self.kv.delete(self._personal_key(user_id, connector_key))

    async def has_personal(self, user_id: str, connector_key: str) -> bool:
        return await self.kv.exists(self._personal_key(user_id, connector_key))

    async def list_personal(self, user_id: str) -> list[PersonalConnection]:
        """List all personal connections of a user."""
        validate_identifier(user_id, "user_id")
        connections = []
        for key in await self.kv.list(f"personal_connection:{user_id}:"):
            data = await self.kv.get(key)
            if data is None:
                continue  # Deleted between list and get
            try:
                connections.append(PersonalConnection.from_dict(self._load(data)))
            except KeyError as e:
                raise DecryptionError("Stored connection record is incomplete") from e
        return sorted(connections, key=lambda c: c.connector_key)

    # Shared connections

    async def put_shared(self, connection: SharedConnection) -> None:
        """Insert or replace a shared connection."""
        key = self._shared_key(connection.project_id, connection.connector_key)
        await self.kv.set(key, json.dumps(connection.to_dict()).encode())

    async def get_shared(
        self,
        project_id: str,
        connector_key: str,
    ) -> SharedConnection | None:
        """Get a shared connection, or None if the project never configured one."""
        data = await self.kv.get(self._shared_key(project_id, connector_key))
        if data is None:
            return None
        try:
            return SharedConnection.from_dict(self._load(data))
        except KeyError as e:
            raise DecryptionError("Stored connection record is incomplete") from e

    async def delete_shared(self, project_id: str, connector_key: str) -> bool:
        """Delete a shared connection. Returns True if one existed."""
        return await self.kv.delete(self._shared_key(project_id, connector_key))

    async def has_shared(self, project_id: str, connector_key: str) -> bool:
        return await self.kv.exists(self._shared_key(project_id, connector_key))

    async def list_shared(self, project_id: str) -> list[SharedConnection]:
        """List all shared connections of a project."""
        validate_identifier(project_id, "project_id")
        connections = []
        for key in await self.kv.list(f"shared_connection:{project_id}:"):
            data = await self.kv.get(key)
            if data is None:
                continue
            try:
                connections.append(SharedConnection.from_dict(self._load(data)))
            except KeyError as e:
                raise DecryptionError("Stored connection record is incomplete") from e
        return sorted(connections, key=lambda c: c.connector_key)
