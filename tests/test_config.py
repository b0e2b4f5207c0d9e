"""Tests for configuration loading."""

import json

import pytest
import yaml
from pydantic import SecretStr, ValidationError

from connector_core.config import Config, substitute_env_vars
from connector_core.exceptions import ConfigurationError


class TestEnvSubstitution:
    """Tests for environment variable substitution."""

    def test_substitute_string(self, monkeypatch):
        """Test substituting a string value."""
        monkeypatch.setenv("TEST_VAR", "hello")
        assert substitute_env_vars("${TEST_VAR}") == "hello"

    def test_substitute_nested(self, monkeypatch):
        """Values inside dicts and lists are substituted."""
        monkeypatch.setenv("TEST_KEY", "secret")
        data = {"key": "${TEST_KEY}", "items": ["${TEST_KEY}", "plain"], "n": 3}
        assert substitute_env_vars(data) == {
            "key": "secret",
            "items": ["secret", "plain"],
            "n": 3,
        }

    def test_missing_env_var_raises(self, monkeypatch):
        """Unset variables are configuration errors."""
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        with pytest.raises(ConfigurationError, match="NONEXISTENT_VAR"):
            substitute_env_vars("${NONEXISTENT_VAR}")

    def test_partial_substitution(self, monkeypatch):
        """Test substituting part of a string."""
        monkeypatch.setenv("PREFIX", "prod")
        assert substitute_env_vars("${PREFIX}-connectors.db") == "prod-connectors.db"


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_from_dict(self, sample_config_dict):
        """Test loading config from dictionary."""
        config = Config.from_dict(sample_config_dict)
        assert isinstance(config.encryption.master_secret, SecretStr)
        assert config.oauth.state_ttl_seconds == 300
        assert config.oauth.refresh_margin_seconds == 120
        assert set(config.connectors.personal) == {"NOTION", "LINEAR"}
        assert config.connectors.personal["LINEAR"].scopes == ["read"]
        assert config.connectors.shared["RESEND"].timeout_seconds == 5

    def test_from_yaml_file(self, sample_config_dict, tmp_path):
        """Test loading config from YAML file."""
        path = tmp_path / "connectors.yaml"
        path.write_text(yaml.dump(sample_config_dict))

        config = Config.from_file(path)
        assert config.connectors.personal["NOTION"].client_id == "notion-client"

    def test_from_json_file(self, sample_config_dict, tmp_path):
        """Test loading config from JSON file."""
        path = tmp_path / "connectors.json"
        path.write_text(json.dumps(sample_config_dict))

        config = Config.from_file(path)
        assert config.logging.level == "DEBUG"

    def test_master_secret_from_env(self, tmp_path, monkeypatch):
        """The master secret is usually injected from the environment."""
        monkeypatch.setenv("CONNECTOR_MASTER_SECRET", "x" * 40)
        path = tmp_path / "connectors.yaml"
        path.write_text("encryption:\n  master_secret: ${CONNECTOR_MASTER_SECRET}\n")

        config = Config.from_file(path)
        assert config.encryption.master_secret.get_secret_value() == "x" * 40
        assert "x" * 40 not in repr(config)

    def test_client_secret_hidden(self, sample_config_dict):
        """Provider client secrets are SecretStr."""
        config = Config.from_dict(sample_config_dict)
        notion = config.connectors.personal["NOTION"]
        assert notion.client_secret.get_secret_value() == "notion-secret"
        assert "notion-secret" not in repr(notion)

    def test_defaults(self):
        """Test that defaults are applied."""
        config = Config.from_dict({})
        assert config.encryption.master_secret is None
        assert config.storage.kv.backend == "memory"
        assert config.oauth.state_ttl_seconds == 600
        assert config.oauth.refresh_margin_seconds == 60
        assert config.oauth.use_pkce is True
        assert config.connectors.personal == {}
        assert config.logging.format == "json"

    def test_provider_defaults(self):
        """Per-connector retry and timeout defaults."""
        config = Config.from_dict({"connectors": {"shared": {"STRIPE": {}}}})
        stripe = config.connectors.shared["STRIPE"]
        assert stripe.enabled is True
        assert stripe.timeout_seconds == 10.0
        assert stripe.retry.max_retries == 2

    def test_invalid_type_rejected(self):
        """Pydantic validation errors surface."""
        with pytest.raises(ValidationError):
            Config.from_dict({"oauth": {"state_ttl_seconds": "soon"}})

    def test_unsupported_extension(self, tmp_path):
        """Only YAML and JSON files are accepted."""
        path = tmp_path / "connectors.toml"
        path.write_text("[storage]\n")
        with pytest.raises(ConfigurationError, match="connectors.toml"):
            Config.from_file(path)
