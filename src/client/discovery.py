"""First-contact discovery of a pcopy server.

Learns the server's salt and, when the server's certificate is not trusted
by the system roots, captures that certificate for pinning.

Discovery runs as a one-way state machine:

    UNVERIFIED --(secure probe ok)----------------------------> VERIFIED
    UNVERIFIED --(TLS trust failure)--> INSECURE_PROBE --(ok)--> PINNED

It never goes back to secure mode, never retries more than the single
insecure fallback, and writes no state; the caller commits the result.
"""

import base64
import binascii
import json
import logging
import socket
import ssl
import warnings
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import requests
import urllib3

from client.transport import insecure_session, verifying_session
from config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_PORT, DEFAULT_READ_TIMEOUT
from server.tls import cert_fingerprint, der_chain_to_pem
from trust.errors import DiscoveryFormatError, TransportError

logger = logging.getLogger(__name__)

SUPPORTED_VERSION = 1


class DiscoveryState(Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    INSECURE_PROBE = "insecure_probe"
    PINNED = "pinned"


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of a successful discovery."""

    salt: bytes
    pinned_cert: str = ""
    state: DiscoveryState = DiscoveryState.VERIFIED

    @property
    def fingerprint(self) -> str:
        """SHA256 fingerprint of the pinned leaf certificate, or ""."""
        return cert_fingerprint(self.pinned_cert) if self.pinned_cert else ""


def split_server_addr(server_addr: str, default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """Split "host[:port]" (IPv6 hosts in brackets) into (host, port)."""
    if server_addr.startswith("["):
        host, _, rest = server_addr[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif server_addr.count(":") == 1:
        host, _, port = server_addr.partition(":")
    else:
        host, port = server_addr, ""
    if not host:
        raise ValueError(f"Invalid server address: {server_addr!r}")
    try:
        return host, int(port) if port else default_port
    except ValueError as e:
        raise ValueError(f"Invalid port in server address: {server_addr!r}") from e


def parse_discovery_body(body: bytes) -> bytes:
    """Decode a discovery response body and return the salt.

    Raises:
        DiscoveryFormatError: If the body is not {"version": 1, "salt": "<base64>"}
    """
    try:
        info = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DiscoveryFormatError(f"invalid discovery response: {e}") from e

    if not isinstance(info, dict):
        raise DiscoveryFormatError("invalid discovery response: expected a JSON object")

    version = info.get("version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise DiscoveryFormatError(f"invalid discovery response: bad version {version!r}")
    if version != SUPPORTED_VERSION:
        raise DiscoveryFormatError(f"invalid discovery response: unsupported version {version}")

    salt_b64 = info.get("salt")
    if not isinstance(salt_b64, str) or not salt_b64:
        raise DiscoveryFormatError("invalid discovery response: missing salt")
    try:
        return base64.b64decode(salt_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DiscoveryFormatError(f"invalid discovery response: bad salt encoding: {e}") from e


class DiscoveryClient:
    """Discovers a server's salt and, if needed, its certificate."""

    def __init__(
        self,
        server_addr: str,
        ca_cert: Optional[Path] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        """Initialize discovery client.

        Args:
            server_addr: Server address (host:port)
            ca_cert: Extra root certificate trusted in the secure probe
            connect_timeout: Seconds to wait for TCP/TLS connect
            read_timeout: Seconds to wait for response data
        """
        self.server_addr = server_addr
        self.ca_cert = ca_cert
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.state = DiscoveryState.UNVERIFIED

    @property
    def url(self) -> str:
        return f"https://{self.server_addr}/"

    def discover(self) -> DiscoveryResult:
        """Run discovery.

        Returns:
            DiscoveryResult with salt, and pinned_cert when the server's
            certificate had to be pinned

        Raises:
            TransportError: Server unreachable, or both probes failed
            DiscoveryFormatError: Response is not valid discovery JSON
        """
        try:
            body = self._fetch(verifying_session(self.ca_cert))
        except requests.exceptions.SSLError as secure_error:
            logger.warning("Remote certificate not trusted: %s", secure_error)
            self.state = DiscoveryState.INSECURE_PROBE
            return self._discover_insecure(secure_error)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransportError(f"server unreachable: {e}") from e
        except requests.exceptions.RequestException as e:
            # Malformed address, redirect loops, broken responses
            raise TransportError(f"discovery request failed: {e}") from e

        salt = parse_discovery_body(body)
        self.state = DiscoveryState.VERIFIED
        return DiscoveryResult(salt=salt, state=self.state)

    def _discover_insecure(self, secure_error: Exception) -> DiscoveryResult:
        """Retry once without verification and pin the presented certificate."""
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", urllib3.exceptions.InsecureRequestWarning)
                body = self._fetch(insecure_session())
        except requests.exceptions.RequestException as e:
            logger.debug("Insecure probe failed: %s", e)
            raise TransportError(f"server unreachable: {secure_error}") from secure_error

        salt = parse_discovery_body(body)
        pinned_cert = self.retrieve_cert()

        self.state = DiscoveryState.PINNED
        result = DiscoveryResult(salt=salt, pinned_cert=pinned_cert, state=self.state)
        logger.warning(
            "Pinning self-signed certificate for %s (SHA256 fingerprint %s). "
            "Compare it with the server's fingerprint; a man-in-the-middle on "
            "this first connection could have supplied it.",
            self.server_addr, result.fingerprint,
        )
        return result

    def _fetch(self, session: requests.Session) -> bytes:
        with session:
            response = session.get(self.url, timeout=(self.connect_timeout, self.read_timeout))
        if response.status_code != 200:
            raise DiscoveryFormatError(
                f"invalid discovery response: HTTP {response.status_code}"
            )
        return response.content

    def retrieve_cert(self) -> str:
        """Capture every certificate the server presents, without verification.

        Returns:
            PEM certificates concatenated in presentation order

        Raises:
            TransportError: If the TLS connection fails
        """
        host, port = split_server_addr(self.server_addr)
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        try:
            with socket.create_connection((host, port), timeout=self.connect_timeout) as sock:
                sock.settimeout(self.read_timeout)
                with context.wrap_socket(sock, server_hostname=host) as tls_sock:
                    if hasattr(tls_sock, "get_unverified_chain"):
                        chain = tls_sock.get_unverified_chain()
                    else:
                        # Before Python 3.13 only the leaf is exposed
                        chain = [tls_sock.getpeercert(binary_form=True)]
        except OSError as e:
            raise TransportError(f"server unreachable: {e}") from e

        chain = [der for der in chain if der]
        if not chain:
            raise TransportError("server presented no certificate")
        return der_chain_to_pem(chain)


def discover(server_addr: str, **kwargs) -> DiscoveryResult:
    """Convenience wrapper: DiscoveryClient(server_addr, **kwargs).discover()."""
    return DiscoveryClient(server_addr, **kwargs).discover()
