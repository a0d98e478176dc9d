"""Shared fixtures."""

from __future__ import annotations

import socket
from pathlib import Path

import pytest
import structlog

from mkhttps.core.config import ProxyConfig, clear_settings


@pytest.fixture(autouse=True)
def _reset_global_state():
    yield
    clear_settings()
    structlog.reset_defaults()


@pytest.fixture
def free_port() -> int:
    """A TCP port that nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(upstream: str, **overrides) -> ProxyConfig:
        values = {
            "upstream": upstream,
            "listen": "127.0.0.1:0",
            "cert_path": tmp_path / "mkhttps.cert",
            "key_path": tmp_path / "mkhttps.pem",
        }
        values.update(overrides)
        return ProxyConfig(**values)

    return _make
