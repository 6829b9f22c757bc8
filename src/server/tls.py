"""TLS certificate management for the server.

Provides self-signed certificate generation for servers without a CA-issued
certificate. Clients pin such a certificate on first contact (trust on first
use), so the fingerprint is logged on generation for out-of-band comparison.
"""

import hashlib
import logging
import os
import re
import socket
import ssl
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CERT_DAYS = 3650
DEFAULT_KEY_SIZE = 4096

PEM_CERT_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE-----\s.+?-----END CERTIFICATE-----\s*",
    re.DOTALL,
)


@dataclass
class TLSConfig:
    """TLS configuration for the server."""

    cert_path: Path
    key_path: Path
    fingerprint: str

    @classmethod
    def from_paths(cls, cert_path: Path, key_path: Path) -> "TLSConfig":
        """Create config from existing certificate files.

        Raises:
            FileNotFoundError: If files don't exist
        """
        if not cert_path.exists():
            raise FileNotFoundError(f"Certificate not found: {cert_path}")
        if not key_path.exists():
            raise FileNotFoundError(f"Key not found: {key_path}")

        fingerprint = cert_fingerprint(cert_path.read_text(encoding="ascii"))
        return cls(cert_path=cert_path, key_path=key_path, fingerprint=fingerprint)

    def server_context(self) -> ssl.SSLContext:
        """Build the server-side SSL context for this certificate."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_cert_chain(certfile=str(self.cert_path), keyfile=str(self.key_path))
        return context


def split_pem_chain(pem: str) -> list[str]:
    """Split concatenated PEM text into individual CERTIFICATE blocks."""
    return [m.group(0).strip() + "\n" for m in PEM_CERT_PATTERN.finditer(pem)]


def der_chain_to_pem(chain: Iterable[bytes]) -> str:
    """PEM-encode DER certificates, concatenated in the given order."""
    return "".join(ssl.DER_cert_to_PEM_cert(der) for der in chain)


def cert_fingerprint(pem: str) -> str:
    """SHA256 fingerprint of the first certificate in PEM text.

    Returns:
        Uppercase hex with colons (e.g., "AB:CD:EF:..."), same format as
        `openssl x509 -fingerprint -sha256`

    Raises:
        ValueError: If pem contains no certificate
    """
    certs = split_pem_chain(pem)
    if not certs:
        raise ValueError("No PEM certificate found")
    digest = hashlib.sha256(ssl.PEM_cert_to_DER_cert(certs[0])).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def generate_self_signed_cert(
    cert_path: Path,
    key_path: Path,
    hostname: Optional[str] = None,
    ip_addresses: Iterable[str] = (),
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
    force: bool = False,
) -> TLSConfig:
    """Generate a self-signed certificate with openssl.

    The certificate's CN and SAN carry hostname, so clients that trust it
    as an extra root can also validate the name. It has no keyUsage
    extension: OpenSSL only treats a certificate as self-signed (and so
    as its own trust anchor when pinned) if keyCertSign is not excluded.

    Args:
        cert_path: Where to write the PEM certificate (mode 0644)
        key_path: Where to write the private key (mode 0600)
        hostname: CN and DNS SAN (default: system hostname)
        ip_addresses: Extra IP SAN entries
        days: Validity in days
        key_size: RSA key size in bits
        force: Overwrite an existing certificate

    Returns:
        TLSConfig with paths and fingerprint

    Raises:
        subprocess.CalledProcessError: If openssl fails
    """
    hostname = hostname or socket.gethostname()

    if cert_path.exists() and key_path.exists() and not force:
        logger.info("Using existing certificate: %s", cert_path)
        return TLSConfig.from_paths(cert_path, key_path)

    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Generating self-signed certificate for %s", hostname)

    san_entries = [f"DNS:{hostname}"] + [f"IP:{ip}" for ip in ip_addresses]

    with tempfile.NamedTemporaryFile(mode="w", suffix=".cnf", delete=False) as f:
        f.write(f"""
[req]
default_bits = {key_size}
prompt = no
default_md = sha256
distinguished_name = dn
x509_extensions = v3_ext

[dn]
CN = {hostname}

[v3_ext]
basicConstraints = critical, CA:FALSE
extendedKeyUsage = serverAuth
subjectKeyIdentifier = hash
authorityKeyIdentifier = keyid:always
subjectAltName = {",".join(san_entries)}
""")
        openssl_config = f.name

    try:
        subprocess.run(
            [
                "openssl", "req",
                "-x509",
                "-nodes",
                "-newkey", f"rsa:{key_size}",
                "-keyout", str(key_path),
                "-out", str(cert_path),
                "-days", str(days),
                "-config", openssl_config,
            ],
            check=True,
            capture_output=True,
        )
        os.chmod(key_path, 0o600)
        os.chmod(cert_path, 0o644)
    finally:
        Path(openssl_config).unlink(missing_ok=True)

    tls_config = TLSConfig.from_paths(cert_path, key_path)
    logger.info("Certificate fingerprint (SHA256): %s", tls_config.fingerprint)
    return tls_config
