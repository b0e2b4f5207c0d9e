"""Configuration models and file loading.

Files are YAML or JSON. Any string may reference the environment as
``${NAME}``; references are expanded before validation so secrets such as
the master secret never have to live in the file itself.
"""

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr

from connector_core.exceptions import ConfigurationError

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def _env_value(match: re.Match[str]) -> str:
    name = match.group(1)
    if name not in os.environ:
        raise ConfigurationError(f"Environment variable {name} is not set")
    return os.environ[name]


def substitute_env_vars(value: Any) -> Any:
    """Expand ``${NAME}`` references in strings, recursing into dicts and lists.

    Raises:
        ConfigurationError: If a referenced variable is not set
    """
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_env_value, value)
    if isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    if isinstance(value, dict):
        return {key: substitute_env_vars(item) for key, item in value.items()}
    return value


class EncryptionConfig(BaseModel):
    master_secret: SecretStr | None = None


class KVStorageConfig(BaseModel):
    """Which ``connector_core.backends.kv`` entry point to use."""

    backend: str = "memory"
    path: str | None = None  # sqlite only


class StorageConfig(BaseModel):
    kv: KVStorageConfig = Field(default_factory=KVStorageConfig)


class OAuthSettings(BaseModel):
    """Authorization flow settings shared by every personal connector."""

    state_ttl_seconds: int = 600
    refresh_margin_seconds: int = 60
    use_pkce: bool = True


class RetryConfig(BaseModel):
    """Retries for transient provider failures (timeouts, 429, 5xx)."""

    max_retries: int = 2
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 4.0


class ProviderConfig(BaseModel):
    """Settings for one provider adapter.

    ``client_id`` and ``client_secret`` are required for personal
    connectors and ignored for shared ones. ``base_url`` overrides the
    provider's API root.
    """

    enabled: bool = True
    client_id: str | None = None
    client_secret: SecretStr | None = None
    base_url: str | None = None
    scopes: list[str] | None = None
    timeout_seconds: float = 10.0
    retry: RetryConfig = Field(default_factory=RetryConfig)


class ConnectorsConfig(BaseModel):
    """Enabled connectors by variant, keyed by connector key (e.g. ``NOTION``)."""

    personal: dict[str, ProviderConfig] = Field(default_factory=dict)
    shared: dict[str, ProviderConfig] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"  # or "text"


class Config(BaseModel):
    """Root configuration object."""

    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    connectors: ConnectorsConfig = Field(default_factory=ConnectorsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Validate a mapping after expanding environment references."""
        return cls.model_validate(substitute_env_vars(data))

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load a ``.yaml``/``.yml`` or ``.json`` file.

        Raises:
            ConfigurationError: For other extensions or a missing variable
            pydantic.ValidationError: If the content does not validate
        """
        path = Path(path)
        text = path.read_text()
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        elif path.suffix == ".json":
            data = json.loads(text)
        else:
            raise ConfigurationError(f"Unsupported config file type: {path.name}")
        return cls.from_dict(data or {})
