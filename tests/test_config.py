"""Config tests for memloop.

Tests critical configuration pathways:
- Defaults and MEMLOOP_ environment overrides
- Per-mode credential validation
- Masking of credentials for display
"""

import os
from unittest.mock import patch

import pytest

from memloop.config import Config, ConfigurationError, DeploymentMode, load_config


class TestConfigDefaults:
    """Test that config has expected default values."""

    def test_mode_defaults_to_direct(self):
        config = Config()
        assert config.mode is DeploymentMode.DIRECT

    def test_backend_urls_default_to_localhost(self):
        config = Config()
        assert config.memory_url == "http://localhost:8420"
        assert config.echo_url == "http://localhost:3000"
        assert config.rest_url is None

    def test_timing_defaults(self):
        """Timeout 30s, retention one hour, sweep every ten minutes."""
        config = Config()
        assert config.request_timeout == 30.0
        assert config.retention_seconds == 3600.0
        assert config.sweep_interval_seconds == 600.0

    def test_user_defaults_to_system(self):
        config = Config()
        assert config.user_id is None
        assert config.effective_user_id == "system"


class TestConfigEnvironmentOverrides:
    """Test environment variable overrides for config."""

    def test_urls_and_credentials(self):
        env = {
            "MEMLOOP_MEMORY_URL": "https://memory.example.com",
            "MEMLOOP_REST_URL": "https://db.example.com",
            "MEMLOOP_TOKEN": "svc",
            "MEMLOOP_USER_ID": "user-7",
        }
        with patch.dict(os.environ, env):
            config = Config()
        assert config.memory_url == "https://memory.example.com"
        assert config.rest_url == "https://db.example.com"
        assert config.token == "svc"
        assert config.effective_user_id == "user-7"

    def test_surrounding_quotes_are_stripped(self):
        """Values pasted with quotes into an MCP host config still work."""
        with patch.dict(os.environ, {"MEMLOOP_API_KEY": '"pk-123"', "MEMLOOP_USER_ID": "  'me' "}):
            config = Config()
        assert config.api_key == "pk-123"
        assert config.user_id == "me"

    def test_blank_value_counts_as_unset(self):
        with patch.dict(os.environ, {"MEMLOOP_USER_ID": '""'}):
            config = Config()
        assert config.user_id is None

    def test_mode_is_case_insensitive(self):
        with patch.dict(os.environ, {"MEMLOOP_MODE": "PROXIED"}):
            config = Config()
        assert config.mode is DeploymentMode.PROXIED

    def test_unknown_mode_rejected(self):
        with patch.dict(os.environ, {"MEMLOOP_MODE": "hybrid"}):
            with pytest.raises(ConfigurationError, match="MEMLOOP_MODE"):
                Config()

    def test_non_numeric_timeout_rejected(self):
        with patch.dict(os.environ, {"MEMLOOP_TIMEOUT": "soon"}):
            with pytest.raises(ConfigurationError, match="MEMLOOP_TIMEOUT must be a number"):
                Config()

    def test_numeric_overrides(self):
        with patch.dict(os.environ, {"MEMLOOP_TIMEOUT": "5", "MEMLOOP_RETENTION_SECONDS": "120"}):
            config = Config()
        assert config.request_timeout == 5.0
        assert config.retention_seconds == 120.0

    def test_load_config_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MEMLOOP_USER_ID=from-file\nMEMLOOP_TOKEN=file-token\n")
        with patch.dict(os.environ, {}):
            config = load_config(env_file)
        assert config.user_id == "from-file"
        assert config.token == "file-token"

    def test_process_environment_wins_over_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MEMLOOP_USER_ID=from-file\n")
        with patch.dict(os.environ, {"MEMLOOP_USER_ID": "from-shell"}):
            config = load_config(env_file)
        assert config.user_id == "from-shell"


class TestConfigValidation:
    """Test per-mode credential checks."""

    def test_direct_requires_rest_url_and_token(self):
        config = Config(mode=DeploymentMode.DIRECT)
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()
        assert "MEMLOOP_REST_URL" in str(exc_info.value)
        assert "MEMLOOP_TOKEN" in str(exc_info.value)

    def test_direct_with_credentials_is_valid(self, config):
        config.validate()
        assert config.rest_enabled

    def test_proxied_requires_api_key(self):
        config = Config(mode=DeploymentMode.PROXIED)
        with pytest.raises(ConfigurationError, match="MEMLOOP_API_KEY"):
            config.validate()

    def test_proxied_uses_api_key_and_no_rest(self, proxied_config):
        proxied_config.validate()
        assert proxied_config.memory_credential == "personal-key"
        assert not proxied_config.rest_enabled

    def test_proxied_ignores_service_token_for_rest(self, proxied_config):
        proxied_config.rest_url = "http://rest.test"
        proxied_config.token = "svc"
        assert not proxied_config.rest_enabled
        assert proxied_config.memory_credential == "personal-key"

    def test_mode_accepts_string(self):
        config = Config(mode="proxied", api_key="k")
        assert config.mode is DeploymentMode.PROXIED

    def test_timeout_must_be_positive(self, config):
        config.request_timeout = 0
        with pytest.raises(ConfigurationError, match="positive"):
            config.validate()

    def test_retention_must_be_positive(self, config):
        config.retention_seconds = -1
        with pytest.raises(ConfigurationError, match="positive"):
            config.validate()


class TestConfigDescribe:
    """Test display of settings."""

    def test_credentials_are_masked(self, config):
        config.token = "sk-1234567890abcdef"
        described = config.describe()
        assert described["token"] == "sk-1...cdef"
        assert "1234567890" not in str(described)

    def test_short_and_missing_credentials(self, config):
        config.token = "short"
        described = config.describe()
        assert described["token"] == "****"
        assert described["api_key"] == "-"
        assert described["user_id"] == "system"
        assert described["request_timeout"] == "5s"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
