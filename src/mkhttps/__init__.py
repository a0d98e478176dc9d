"""mkhttps - local TLS-terminating reverse proxy with a self-signed identity."""

__version__ = "0.1.0"

__all__ = ["__version__"]
