"""Request forwarding to the fixed upstream.

Each inbound request becomes exactly one upstream request: same method, same
path and query, the authority swapped for the upstream's, blocked headers
removed and the inbound body streamed through unread. The upstream response
is relayed back chunk by chunk so bodies of any size pass with bounded
memory.

Once the status line has been sent to the caller, a failure while copying the
body can no longer be reported as an HTTP error. The copy is aborted, the
failure logged and the caller's connection closed so a truncated body is
never mistaken for a complete one.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import structlog
from aiohttp import web
from multidict import CIMultiDict
from yarl import URL

from mkhttps.core.config import ProxyConfig
from mkhttps.server.headers import filter_request_headers

logger = structlog.get_logger()

UPSTREAM_ERROR_TEXT = "Could not reach origin server"

# Derived by the transport from the URL and the body framing
_TRANSPORT_MANAGED = ("Host", "Transfer-Encoding")

# Describe the upstream connection, not the relayed message
HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def rewrite_url(url: URL, authority: str, scheme: str | None = None) -> URL:
    """Point *url* at *authority* (``host[:port]``).

    Path, query and fragment are kept. The scheme is kept unless *scheme*
    is given.
    """
    target = URL(f"//{authority}")
    if not target.host:
        raise ValueError(f"Invalid upstream authority: {authority!r}")
    if scheme:
        url = url.with_scheme(scheme)
    return url.with_host(target.host).with_port(target.explicit_port)


def _raw_header_items(headers: CIMultiDict[str]) -> list[tuple[bytes, bytes]]:
    # aiohttp decodes header bytes as UTF-8 with surrogateescape; reversing
    # that hands non-ASCII values (obs-text) to the upstream byte for byte.
    return [
        (name.encode("utf-8", "surrogateescape"), value.encode("utf-8", "surrogateescape"))
        for name, value in headers.items()
    ]


def _response_headers(headers: httpx.Headers) -> CIMultiDict[str]:
    relayed: CIMultiDict[str] = CIMultiDict()
    for name, value in headers.multi_items():
        if name.lower() in HOP_BY_HOP:
            continue
        relayed.add(name, value)
    return relayed


async def _iter_body(request: web.Request, chunk_size: int) -> AsyncIterator[bytes]:
    async for chunk in request.content.iter_chunked(chunk_size):
        yield chunk


def create_http_client(config: ProxyConfig) -> httpx.AsyncClient:
    """Create the upstream HTTP client.

    No timeouts: a hung upstream holds only its own request. Redirects are
    relayed to the caller, never followed here.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(None),
        follow_redirects=False,
        verify=config.upstream_verify,
        trust_env=False,
    )


class RequestForwarder:
    """Forwards requests to the configured upstream and streams responses back."""

    def __init__(self, config: ProxyConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or create_http_client(config)

    def build_upstream_request(self, request: web.Request) -> httpx.Request:
        """Build the outbound request for *request* without sending it."""
        url = rewrite_url(request.url, self.config.upstream, self.config.upstream_scheme)

        headers = filter_request_headers(request.headers)
        for name in _TRANSPORT_MANAGED:
            headers.popall(name, None)

        content = _iter_body(request, self.config.chunk_size) if request.can_read_body else None

        # Built directly rather than via client.build_request so that no
        # client default headers or cookies are mixed into the caller's set.
        return httpx.Request(
            request.method,
            str(url),
            headers=_raw_header_items(headers),
            content=content,
        )

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """aiohttp handler for every proxied request."""
        logger.info(f"--> {request.method} {request.url}")

        upstream_request = self.build_upstream_request(request)
        try:
            upstream_response = await self._client.send(upstream_request, stream=True)
        except httpx.RequestError as e:
            logger.warning(
                "Upstream request failed",
                upstream=self.config.upstream,
                error=str(e),
                error_type=type(e).__name__,
            )
            return web.Response(status=500, text=UPSTREAM_ERROR_TEXT, content_type="text/plain")

        try:
            logger.info(f"<-- {upstream_response.status_code} {upstream_response.reason_phrase}")

            # aiohttp fills in application/octet-stream when no Content-Type is relayed
            response = web.StreamResponse(
                status=upstream_response.status_code,
                reason=upstream_response.reason_phrase or None,
                headers=_response_headers(upstream_response.headers),
            )
            await response.prepare(request)

            try:
                async for chunk in upstream_response.aiter_raw(self.config.chunk_size):
                    await response.write(chunk)
                await response.write_eof()
            except (ConnectionError, httpx.HTTPError) as e:
                logger.warning(
                    "Response relay aborted",
                    method=request.method,
                    path=request.path_qs,
                    error=str(e) or type(e).__name__,
                )
                if request.transport is not None:
                    request.transport.close()
            return response
        finally:
            await upstream_response.aclose()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
