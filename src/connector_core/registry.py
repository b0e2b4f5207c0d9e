"""Process-wide catalog of connector definitions.

Personal and shared connectors live in two separate mappings and are looked
up through variant-specific methods. Keys share a single namespace: a key
taken by one variant cannot be registered under the other.

The registry is built once at startup by sequential registration, then
frozen; lookups after that are plain dict reads and need no locking.
"""

from connector_core.exceptions import (
    ConfigurationError,
    ConnectorNotFoundError,
    DuplicateConnectorError,
    InvalidIdentifierError,
)
from connector_core.observability import get_logger
from connector_core.protocols.connector import (
    PersonalConnectorDefinition,
    SharedConnectorDefinition,
)
from connector_core.utils.validation import validate_connector_key

logger = get_logger(__name__)

PERSONAL = "personal"
SHARED = "shared"


class ConnectorRegistry:
    """Catalog of personal and shared connector definitions."""

    def __init__(self) -> None:
        self._personal: dict[str, PersonalConnectorDefinition] = {}
        self._shared: dict[str, SharedConnectorDefinition] = {}
        self._frozen = False

    def _check_registrable(self, key: str) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register '{key}': connector registry is frozen"
            )
        try:
            validate_connector_key(key)
        except InvalidIdentifierError as e:
            raise ConfigurationError(str(e)) from e
        if key in self._personal or key in self._shared:
            variant = PERSONAL if key in self._personal else SHARED
            raise DuplicateConnectorError(
                f"Connector key '{key}' is already registered as a {variant} connector",
                key,
            )

    def register_personal(self, definition: PersonalConnectorDefinition) -> None:
        """Register a personal (OAuth) connector.

        Raises:
            DuplicateConnectorError: If the key is already registered
            ConfigurationError: If the registry is frozen or the definition
                does not implement the personal capability set
        """
        if not isinstance(definition, PersonalConnectorDefinition):
            raise ConfigurationError(
                f"{type(definition).__name__} does not implement PersonalConnectorDefinition"
            )
        self._check_registrable(definition.key)
        self._personal[definition.key] = definition
        logger.info(
            "Personal connector registered",
            context={"connector_key": definition.key},
        )

    def register_shared(self, definition: SharedConnectorDefinition) -> None:
        """Register a shared (service credential) connector.

        Raises:
            DuplicateConnectorError: If the key is already registered
            ConfigurationError: If the registry is frozen or the definition
                does not implement the shared capability set
        """
        if not isinstance(definition, SharedConnectorDefinition):
            raise ConfigurationError(
                f"{type(definition).__name__} does not implement SharedConnectorDefinition"
            )
        self._check_registrable(definition.key)
        self._shared[definition.key] = definition
        logger.info(
            "Shared connector registered",
            context={"connector_key": definition.key},
        )

    def freeze(self) -> "ConnectorRegistry":
        """Mark startup registration as complete."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_personal_connector(self, key: str) -> PersonalConnectorDefinition:
        """Look up a personal connector.

        Raises:
            ConnectorNotFoundError: If no personal connector has this key
        """
        try:
            return self._personal[key]
        except KeyError:
            raise ConnectorNotFoundError(key, PERSONAL) from None

    def get_shared_connector(self, key: str) -> SharedConnectorDefinition:
        """Look up a shared connector.

        Raises:
            ConnectorNotFoundError: If no shared connector has this key
        """
        try:
            return self._shared[key]
        except KeyError:
            raise ConnectorNotFoundError(key, SHARED) from None

    def has_personal(self, key: str) -> bool:
        return key in self._personal

    def has_shared(self, key: str) -> bool:
        return key in self._shared

    def list_personal(self) -> list[PersonalConnectorDefinition]:
        """List personal connectors in registration order."""
        return list(self._personal.values())

    def list_shared(self) -> list[SharedConnectorDefinition]:
        """List shared connectors in registration order."""
        return list(self._shared.values())

    def __contains__(self, key: object) -> bool:
        return key in self._personal or key in self._shared

    def __len__(self) -> int:
        return len(self._personal) + len(self._shared)
