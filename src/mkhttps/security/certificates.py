"""Self-signed TLS identity bootstrap.

The proxy serves HTTPS with a key pair it mints for itself the first time it
runs, so no external certificate authority is involved. The pair lives in two
PEM files under the operator's config directory:

- ``mkhttps.cert`` holds the certificate (``CERTIFICATE`` block)
- ``mkhttps.pem`` holds the EC private key (``EC PRIVATE KEY`` block), mode 0600

Only the existence of the key file is checked. Once written, the pair is
served as-is until the operator deletes the files; the certificate's
expiry date is never looked at.

Usage:
    from mkhttps.security.certificates import ensure_identity

    created = ensure_identity(key_path, cert_path)
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from mkhttps.core.exceptions import IdentityError

logger = structlog.get_logger()

ORGANIZATION = "mkhttps"
VALIDITY = timedelta(days=3 * 365)
SERIAL_NUMBER_LIMIT = 1 << 128
KEY_FILE_MODE = 0o600


@dataclass
class CertificateInfo:
    """Summary of a certificate read from disk."""

    subject: str
    issuer: str
    serial_number: int
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    key_usages: list[str] = field(default_factory=list)

    @property
    def self_signed(self) -> bool:
        return self.subject == self.issuer


def _random_serial_number() -> int:
    # X.509 serials must be positive
    return secrets.randbelow(SERIAL_NUMBER_LIMIT - 1) + 1


def generate_identity(
    organization: str = ORGANIZATION,
    now: datetime | None = None,
) -> tuple[ec.EllipticCurvePrivateKey, x509.Certificate]:
    """Generate a P-256 key and a self-signed server certificate for it.

    Args:
        organization: Organization name used for both subject and issuer
        now: Start of the validity window (defaults to the current time)

    Returns:
        Tuple of (private key, certificate)

    Raises:
        IdentityError: If key generation or signing fails
    """
    not_before = now or datetime.now(UTC)
    try:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization)])
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(_random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + VALIDITY)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise IdentityError(f"Key generation failed ({e})") from e
    return key, cert


def encode_certificate(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def encode_private_key(key: ec.EllipticCurvePrivateKey) -> bytes:
    # TraditionalOpenSSL produces the "EC PRIVATE KEY" block
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _write_private_key(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
    with os.fdopen(fd, "wb") as f:
        os.fchmod(f.fileno(), KEY_FILE_MODE)
        f.write(data)


def load_certificate_info(cert_path: str | Path) -> CertificateInfo:
    """Read a PEM certificate and summarize it.

    Raises:
        IdentityError: If the file cannot be read or parsed
    """
    cert_path = Path(cert_path)
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except (OSError, ValueError) as e:
        raise IdentityError(f"Cannot read certificate ({e})", str(cert_path)) from e

    usages: list[str] = []
    try:
        key_usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        if key_usage.digital_signature:
            usages.append("digital_signature")
        if key_usage.key_encipherment:
            usages.append("key_encipherment")
    except x509.ExtensionNotFound:
        pass

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=cert.serial_number,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(":").upper(),
        key_usages=usages,
    )


class CertificateStore:
    """Owns the on-disk key pair at fixed paths."""

    def __init__(self, key_path: str | Path, cert_path: str | Path) -> None:
        self.key_path = Path(key_path)
        self.cert_path = Path(cert_path)

    @property
    def exists(self) -> bool:
        return self.key_path.exists()

    def ensure(self) -> bool:
        """Create the identity unless the key file is already present.

        Returns:
            True if a new key pair was written, False if nothing was done

        Raises:
            IdentityError: On any generation, encoding or file I/O failure
        """
        if self.exists:
            logger.debug("Using existing keypair", path=str(self.key_path))
            return False

        key, cert = generate_identity()
        try:
            cert_pem = encode_certificate(cert)
            key_pem = encode_private_key(key)
        except (ValueError, TypeError) as e:
            raise IdentityError(f"Encoding failed ({e})") from e

        try:
            self.cert_path.parent.mkdir(parents=True, exist_ok=True)
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IdentityError(f"Cannot create directory ({e})", str(self.key_path.parent)) from e

        try:
            self.cert_path.write_bytes(cert_pem)
        except OSError as e:
            raise IdentityError(f"Cannot write certificate ({e})", str(self.cert_path)) from e

        try:
            _write_private_key(self.key_path, key_pem)
        except OSError as e:
            raise IdentityError(f"Cannot write private key ({e})", str(self.key_path)) from e

        logger.info("Created new keypair", path=str(self.key_path))
        return True

    def info(self) -> CertificateInfo:
        return load_certificate_info(self.cert_path)


def ensure_identity(key_path: str | Path, cert_path: str | Path) -> bool:
    """Make sure a key pair exists at the given paths; see CertificateStore.ensure."""
    return CertificateStore(key_path, cert_path).ensure()
