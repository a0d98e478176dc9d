"""Security module for mkhttps.

Provides the self-signed TLS identity the proxy serves with:
- P-256 key generation and certificate self-signing
- PEM persistence with an owner-only private key file
- Certificate summaries for startup notices
"""

from mkhttps.security.certificates import (
    CertificateInfo,
    CertificateStore,
    ensure_identity,
    generate_identity,
    load_certificate_info,
)

__all__ = [
    "CertificateInfo",
    "CertificateStore",
    "ensure_identity",
    "generate_identity",
    "load_certificate_info",
]
