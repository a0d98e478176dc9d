"""HTTPS proxy server: header filtering, forwarding and the TLS listener."""

from mkhttps.server.forwarder import RequestForwarder, rewrite_url
from mkhttps.server.headers import BLOCKED_REQUEST_HEADERS, filter_request_headers
from mkhttps.server.proxy import ProxyServer, parse_listen_address, run_server

__all__ = [
    "BLOCKED_REQUEST_HEADERS",
    "ProxyServer",
    "RequestForwarder",
    "filter_request_headers",
    "parse_listen_address",
    "rewrite_url",
    "run_server",
]
