"""Configuration types with environment variable support.

Settings can be configured via environment variables with the MKHTTPS_ prefix.
Example: MKHTTPS_CHUNK_SIZE=131072 relays response bodies in 128KB pieces.

The per-process ``ProxyConfig`` is built once at startup from the two
positional arguments plus these settings, and is never mutated afterwards.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mkhttps.core.exceptions import ConfigError

DEFAULT_CONFIG_DIR = "~/.config"
CERT_FILE_NAME = "mkhttps.cert"
KEY_FILE_NAME = "mkhttps.pem"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load settings from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing, unreadable, has invalid syntax,
            or has an unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ConfigError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


class ProxySettings(BaseSettings):
    """Tunable settings shared by every component."""

    model_config = SettingsConfigDict(
        env_prefix="MKHTTPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_dir: str = Field(
        default=DEFAULT_CONFIG_DIR,
        description="Directory holding the certificate and private key.",
    )
    cert_name: str = Field(
        default=CERT_FILE_NAME,
        description="Certificate file name inside config_dir.",
    )
    key_name: str = Field(
        default=KEY_FILE_NAME,
        description="Private key file name inside config_dir.",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Read size for streamed request and response bodies (bytes).",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )
    upstream_verify: bool = Field(
        default=True,
        description="Verify the upstream certificate when forwarding over https.",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warning", "error"):
            raise ValueError(f"unknown log level: {value}")
        return value

    @property
    def cert_path(self) -> Path:
        return Path(self.config_dir).expanduser() / self.cert_name

    @property
    def key_path(self) -> Path:
        return Path(self.config_dir).expanduser() / self.key_name


def split_upstream(upstream: str) -> tuple[str, str | None]:
    """Split an upstream argument into (authority, scheme).

    ``backend:8080`` -> ("backend:8080", None)
    ``https://backend`` -> ("backend", "https")
    """
    scheme = None
    if "://" in upstream:
        scheme, _, upstream = upstream.partition("://")
        scheme = scheme.lower()
        if scheme not in ("http", "https"):
            raise ConfigError(f"Unsupported upstream scheme: {scheme}")
    authority = upstream.rstrip("/")
    if not authority or "/" in authority:
        raise ConfigError(f"Upstream must be host[:port], got {upstream!r}")
    return authority, scheme


class ProxyConfig(BaseModel):
    """Immutable per-process proxy configuration."""

    model_config = ConfigDict(frozen=True)

    upstream: str
    upstream_scheme: str = "http"
    listen: str
    cert_path: Path
    key_path: Path
    chunk_size: int = 64 * 1024
    upstream_verify: bool = True

    @classmethod
    def from_args(
        cls,
        upstream: str,
        listen: str,
        settings: ProxySettings | None = None,
    ) -> ProxyConfig:
        """Build the config from the two positional startup values."""
        settings = settings or get_settings()
        authority, scheme = split_upstream(upstream)
        try:
            return cls(
                upstream=authority,
                upstream_scheme=scheme or "http",
                listen=listen,
                cert_path=settings.cert_path,
                key_path=settings.key_path,
                chunk_size=settings.chunk_size,
                upstream_verify=settings.upstream_verify,
            )
        except ValidationError as e:
            raise ConfigError(str(e)) from e


_settings: ProxySettings | None = None


def get_settings(**overrides: Any) -> ProxySettings:
    """Get the process-wide settings instance.

    The first call creates and caches the instance; keyword overrides (from
    the CLI or a config file) take precedence over environment variables and
    only apply on that first call. Call clear_settings() to reload.
    """
    global _settings
    if _settings is None:
        try:
            _settings = ProxySettings(**{k: v for k, v in overrides.items() if v is not None})
        except ValidationError as e:
            raise ConfigError(str(e)) from e
    return _settings


def clear_settings() -> None:
    """Clear the cached settings. Useful for testing."""
    global _settings
    _settings = None
