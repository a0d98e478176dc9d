"""HTTPS listener that hands every request to the forwarder."""

from __future__ import annotations

import asyncio
import ssl

import structlog
from aiohttp import web

from mkhttps.core.config import ProxyConfig
from mkhttps.core.exceptions import ServerStartError
from mkhttps.server.forwarder import RequestForwarder

logger = structlog.get_logger()


def parse_listen_address(listen: str) -> tuple[str, int]:
    """Parse ``host:port`` into host and port.

    An empty host (``:8443``) binds all interfaces. IPv6 hosts may be
    bracketed (``[::1]:8443``).
    """
    host, sep, port = listen.rpartition(":")
    if not sep:
        host, port = "", listen
    try:
        port_number = int(port)
    except ValueError:
        raise ServerStartError(f"Invalid listen address: {listen!r}") from None
    if not 0 <= port_number <= 65535:
        raise ServerStartError(f"Invalid listen port: {port_number}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


class ProxyServer:
    """TLS-terminating reverse proxy server."""

    def __init__(self, config: ProxyConfig, forwarder: RequestForwarder | None = None) -> None:
        self.config = config
        self.forwarder = forwarder or RequestForwarder(config)
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def create_ssl_context(self) -> ssl.SSLContext:
        """Create the server TLS context from the identity files."""
        try:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
            ssl_context.load_cert_chain(str(self.config.cert_path), str(self.config.key_path))
        except (OSError, ssl.SSLError) as e:
            raise ServerStartError(f"Failed to load TLS identity ({e})") from e
        logger.debug("TLS context created", cert=str(self.config.cert_path))
        return ssl_context

    def create_app(self) -> web.Application:
        app = web.Application()
        # No routing table: every method on every path is proxied
        app.router.add_route("*", "/{path:.*}", self.forwarder.handle)
        return app

    @property
    def bound_addresses(self) -> list[tuple[str, int]]:
        """Addresses actually bound (useful when listening on port 0)."""
        server = self._site._server if self._site else None
        if server is None or not getattr(server, "sockets", None):
            return []
        return [sock.getsockname()[:2] for sock in server.sockets]

    async def start(self) -> None:
        """Bind the listen address and start serving.

        Raises:
            ServerStartError: If the TLS context cannot be built or the
                address cannot be bound
        """
        ssl_context = self.create_ssl_context()
        host, port = parse_listen_address(self.config.listen)

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, host, port, ssl_context=ssl_context)
        try:
            await self._site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            raise ServerStartError(f"Cannot listen on {self.config.listen} ({e})") from e

        logger.info(
            "Listening",
            listen=self.config.listen,
            upstream=f"{self.config.upstream_scheme}://{self.config.upstream}",
        )

    async def stop(self) -> None:
        """Stop the server and release the upstream client."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        await self.forwarder.close()
        logger.info("Proxy stopped")


async def run_server(config: ProxyConfig) -> None:
    """Run the proxy until cancelled."""
    server = ProxyServer(config)
    try:
        await server.start()
        await asyncio.Event().wait()
    finally:
        await server.stop()
