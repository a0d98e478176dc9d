"""Core."""

from .config import (
    CERT_FILE_NAME,
    KEY_FILE_NAME,
    ProxyConfig,
    ProxySettings,
    clear_settings,
    get_settings,
    load_config_from_file,
)
from .exceptions import (
    ConfigError,
    IdentityError,
    MkhttpsError,
    ServerStartError,
    format_error_for_user,
)

__all__ = [
    "CERT_FILE_NAME",
    "KEY_FILE_NAME",
    "ConfigError",
    "IdentityError",
    "MkhttpsError",
    "ProxyConfig",
    "ProxySettings",
    "ServerStartError",
    "clear_settings",
    "format_error_for_user",
    "get_settings",
    "load_config_from_file",
]
