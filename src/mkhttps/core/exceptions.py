"""Error hierarchy.

Two tiers exist. Startup errors (``IdentityError``, ``ServerStartError``,
``ConfigError``) are fatal: the CLI prints a diagnostic and exits non-zero
before anything is served. Per-request upstream failures never surface as
exceptions; the forwarder answers the affected caller with a generic 500.
"""

from __future__ import annotations


class MkhttpsError(Exception):
    """Base class for all mkhttps errors."""


class ConfigError(MkhttpsError):
    """Invalid configuration file or settings."""


class IdentityError(MkhttpsError):
    """The TLS identity could not be generated, encoded or written."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(f"{message}: {path}" if path else message)


class ServerStartError(MkhttpsError):
    """The TLS context could not be built or the listen address bound."""


def format_error_for_user(error: BaseException) -> str:
    """Return a one-line diagnostic for a fatal startup error."""
    if isinstance(error, IdentityError):
        return f"Could not set up TLS identity. {error}"
    if isinstance(error, ServerStartError):
        return f"Could not start server. {error}"
    if isinstance(error, ConfigError):
        return f"Invalid configuration. {error}"
    return f"Unexpected error: {type(error).__name__}: {error}"
