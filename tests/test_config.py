"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from nsxt_infra.config import (
    DEFAULT_API_RETRIES,
    DEFAULT_REALIZATION_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
)

BASE_ENV = {
    "NSXT_HOST": "nsx.example.com",
    "NSXT_USERNAME": "admin",
    "NSXT_PASSWORD": "secret",
}


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(host="nsx.example.com", username="admin", password="secret")

        assert config.base_url == "https://nsx.example.com/policy/api/v1"
        assert config.realization_timeout_seconds == DEFAULT_REALIZATION_TIMEOUT_SECONDS
        assert config.api_retries == DEFAULT_API_RETRIES
        assert config.recover is True

    def test_host_with_port(self) -> None:
        """Test that a port is accepted in the host."""
        config = Config(host="10.0.0.1:8443", username="admin", password="secret")

        assert config.base_url == "https://10.0.0.1:8443/policy/api/v1"

    def test_password_not_in_repr(self) -> None:
        """Test that the password is never printed."""
        config = Config(host="nsx.example.com", username="admin", password="secret")

        assert "secret" not in repr(config)

    def test_missing_host(self) -> None:
        """Test that missing host raises error."""
        with pytest.raises(ConfigurationError, match="NSXT_HOST is required"):
            Config(host="", username="admin", password="secret")

    def test_invalid_host(self) -> None:
        """Test that a URL instead of a host is rejected."""
        with pytest.raises(ConfigurationError, match="NSXT_HOST must be"):
            Config(host="https://nsx.example.com", username="admin", password="secret")

    def test_errors_are_accumulated(self) -> None:
        """Test that all problems are reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(host="", username="", password="")

        message = str(exc_info.value)
        assert "NSXT_HOST" in message
        assert "NSXT_USERNAME" in message
        assert "NSXT_PASSWORD" in message

    def test_poll_interval_cannot_exceed_timeout(self) -> None:
        """Test realization timing bounds."""
        with pytest.raises(ConfigurationError, match="REALIZATION_POLL_INTERVAL"):
            Config(
                host="nsx",
                username="admin",
                password="secret",
                realization_timeout_seconds=2.0,
                realization_poll_interval_seconds=5.0,
            )

    def test_run_attempts_bounds(self) -> None:
        """Test that at least one run attempt is required."""
        with pytest.raises(ConfigurationError, match="MAX_RUN_ATTEMPTS"):
            Config(host="nsx", username="admin", password="secret", max_run_attempts=0)


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env_defaults(self) -> None:
        """Test loading with only required variables."""
        with patch.dict(os.environ, BASE_ENV, clear=True):
            config = Config.from_env()

        assert config.host == "nsx.example.com"
        assert config.insecure is False
        assert config.spec_file == Path("infra.yaml")
        assert config.state_file == Path("infra-state.json")

    def test_from_env_overrides(self) -> None:
        """Test that optional variables are parsed."""
        env = {
            **BASE_ENV,
            "NSXT_INSECURE": "true",
            "STATE_FILE": "/var/lib/infra/state.json",
            "REALIZATION_TIMEOUT": "30",
            "API_RETRIES": "2",
            "RECOVER": "false",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.insecure is True
        assert config.state_file == Path("/var/lib/infra/state.json")
        assert config.realization_timeout_seconds == 30.0
        assert config.api_retries == 2
        assert config.recover is False

    def test_invalid_integer(self) -> None:
        """Test that non-numeric values are rejected."""
        with patch.dict(os.environ, {**BASE_ENV, "API_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError, match="API_TIMEOUT must be an integer"):
                Config.from_env()

    def test_password_file(self, tmp_path: Path) -> None:
        """Test reading the password from a mounted file."""
        password_file = tmp_path / "password"
        password_file.write_text("from-file\n")
        env = {
            "NSXT_HOST": "nsx",
            "NSXT_USERNAME": "admin",
            "NSXT_PASSWORD_FILE": str(password_file),
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.password == "from-file"

    def test_unreadable_password_file(self, tmp_path: Path) -> None:
        """Test that a missing password file is a configuration error."""
        env = {
            "NSXT_HOST": "nsx",
            "NSXT_USERNAME": "admin",
            "NSXT_PASSWORD_FILE": str(tmp_path / "missing"),
        }
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError, match="NSXT_PASSWORD_FILE"):
                Config.from_env()
