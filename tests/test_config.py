"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from mkhttps.core.config import (
    ProxyConfig,
    ProxySettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    split_upstream,
)
from mkhttps.core.exceptions import ConfigError


class TestProxySettings:
    """Test ProxySettings."""

    def test_default_values(self) -> None:
        """Test default values."""
        settings = ProxySettings()
        assert settings.config_dir == "~/.config"
        assert settings.chunk_size == 64 * 1024
        assert settings.log_level == "info"
        assert settings.upstream_verify is True

    def test_default_paths(self) -> None:
        """Test identity files live in the home config directory."""
        settings = ProxySettings()
        home = Path("~").expanduser()
        assert settings.cert_path == home / ".config" / "mkhttps.cert"
        assert settings.key_path == home / ".config" / "mkhttps.pem"

    def test_env_override_config_dir(self, tmp_path) -> None:
        """Test MKHTTPS_CONFIG_DIR env var."""
        with patch.dict(os.environ, {"MKHTTPS_CONFIG_DIR": str(tmp_path)}):
            settings = ProxySettings()
            assert settings.key_path == tmp_path / "mkhttps.pem"

    def test_env_override_chunk_size(self) -> None:
        """Test MKHTTPS_CHUNK_SIZE env var."""
        with patch.dict(os.environ, {"MKHTTPS_CHUNK_SIZE": "131072"}):
            assert ProxySettings().chunk_size == 131072

    def test_env_override_upstream_verify(self) -> None:
        """Test MKHTTPS_UPSTREAM_VERIFY env var."""
        with patch.dict(os.environ, {"MKHTTPS_UPSTREAM_VERIFY": "false"}):
            assert ProxySettings().upstream_verify is False

    def test_log_level_normalized(self) -> None:
        """Test log level is case-insensitive."""
        assert ProxySettings(log_level="DEBUG").log_level == "debug"

    def test_invalid_log_level(self) -> None:
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            ProxySettings(log_level="chatty")

    def test_invalid_chunk_size(self) -> None:
        """Test chunk size must be positive."""
        with pytest.raises(ValidationError):
            ProxySettings(chunk_size=0)


class TestGetSettings:
    """Test the cached settings accessor."""

    def test_cached(self) -> None:
        """Test the same instance is returned until cleared."""
        first = get_settings()
        assert get_settings() is first
        clear_settings()
        assert get_settings() is not first

    def test_overrides_beat_env(self) -> None:
        """Test explicit overrides win over environment variables."""
        with patch.dict(os.environ, {"MKHTTPS_LOG_LEVEL": "error"}):
            settings = get_settings(log_level="debug")
            assert settings.log_level == "debug"

    def test_none_overrides_ignored(self) -> None:
        """Test None overrides fall back to env/defaults."""
        with patch.dict(os.environ, {"MKHTTPS_LOG_LEVEL": "warning"}):
            assert get_settings(log_level=None).log_level == "warning"

    def test_invalid_override_raises_config_error(self) -> None:
        """Test validation errors surface as ConfigError."""
        with pytest.raises(ConfigError):
            get_settings(chunk_size=-1)


class TestSplitUpstream:
    """Test upstream argument parsing."""

    def test_bare_authority(self) -> None:
        assert split_upstream("upstream.example:9000") == ("upstream.example:9000", None)

    def test_with_scheme(self) -> None:
        assert split_upstream("HTTPS://api.internal/") == ("api.internal", "https")

    def test_rejects_path(self) -> None:
        with pytest.raises(ConfigError):
            split_upstream("http://api.internal/v1")

    def test_rejects_unknown_scheme(self) -> None:
        with pytest.raises(ConfigError):
            split_upstream("ftp://files.internal")

    def test_rejects_empty(self) -> None:
        with pytest.raises(ConfigError):
            split_upstream("")


class TestProxyConfig:
    """Test the immutable per-process config."""

    def test_from_args(self, tmp_path) -> None:
        """Test config built from positional values and settings."""
        settings = ProxySettings(config_dir=str(tmp_path), chunk_size=1024)

        config = ProxyConfig.from_args("localhost:8080", ":8443", settings)

        assert config.upstream == "localhost:8080"
        assert config.upstream_scheme == "http"
        assert config.listen == ":8443"
        assert config.cert_path == tmp_path / "mkhttps.cert"
        assert config.key_path == tmp_path / "mkhttps.pem"
        assert config.chunk_size == 1024

    def test_from_args_https_upstream(self, tmp_path) -> None:
        """Test an https:// upstream selects https forwarding."""
        settings = ProxySettings(config_dir=str(tmp_path))

        config = ProxyConfig.from_args("https://api.internal", "127.0.0.1:9443", settings)

        assert config.upstream == "api.internal"
        assert config.upstream_scheme == "https"

    def test_frozen(self, tmp_path) -> None:
        """Test the config cannot be changed after construction."""
        config = ProxyConfig.from_args("a:1", ":2", ProxySettings(config_dir=str(tmp_path)))

        with pytest.raises(ValidationError):
            config.upstream = "b:1"


class TestLoadConfigFromFile:
    """Test settings files."""

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "mkhttps.yaml"
        path.write_text("chunk_size: 4096\nlog_level: debug\n")

        assert load_config_from_file(path) == {"chunk_size": 4096, "log_level": "debug"}

    def test_toml(self, tmp_path) -> None:
        path = tmp_path / "mkhttps.toml"
        path.write_text('config_dir = "/srv/mkhttps"\nupstream_verify = false\n')

        assert load_config_from_file(path) == {"config_dir": "/srv/mkhttps", "upstream_verify": False}

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path) -> None:
        path = tmp_path / "mkhttps.ini"
        path.write_text("[mkhttps]\n")

        with pytest.raises(ConfigError, match="Unsupported"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("chunk_size: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_invalid_toml(self, tmp_path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text("chunk_size = \n")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config_from_file(path)

    def test_non_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config_from_file(path)
