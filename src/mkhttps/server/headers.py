"""Request header filtering.

Clients must not be able to forge proxy-chain metadata that the upstream may
trust, so those headers are dropped before a request is forwarded. Header
names are case-insensitive on the wire; every case variant of a blocked name
is dropped.
"""

from __future__ import annotations

from collections.abc import Mapping

from multidict import CIMultiDict

BLOCKED_REQUEST_HEADERS = frozenset(
    {
        "Forwarded",
        "X-Forwarded-For",
        "X-Forwarded-Host",
        "X-Forwarded-Proto",
    }
)

_BLOCKED_CANONICAL = frozenset(name.lower() for name in BLOCKED_REQUEST_HEADERS)


def is_blocked_header(name: str) -> bool:
    return name.lower() in _BLOCKED_CANONICAL


def filter_request_headers(headers: Mapping[str, str]) -> CIMultiDict[str]:
    """Return a copy of *headers* without the blocked entries.

    Repeated headers, values and their relative order are kept.
    """
    filtered: CIMultiDict[str] = CIMultiDict()
    for name, value in headers.items():
        if is_blocked_header(name):
            continue
        filtered.add(name, value)
    return filtered
