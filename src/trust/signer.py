"""HMAC request signing.

Every request after discovery carries an Authorization header of the form:

    HMAC v1 <unix-timestamp> <base64(HMAC-SHA256(key, descriptor))>

where descriptor is "<timestamp>:<method>:<path>". The path is the raw
request-line path as sent on the wire, without the query string. Client and
server must build it byte for byte the same way.
"""

import base64
import binascii
import hashlib
import hmac as hmac_mod
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from trust.errors import AuthError, AuthFailure

SCHEME = "HMAC v1"

# Timestamps are carried as signed 64-bit unix seconds
MAX_TIMESTAMP = 2**63 - 1

AUTH_HEADER_PATTERN = re.compile(r"HMAC v1 (\d+) (.+)", re.ASCII)


@dataclass(frozen=True)
class AuthorizationToken:
    """A signed, single-request authorization token."""

    timestamp: int
    mac: bytes
    scheme: str = SCHEME

    def header_value(self) -> str:
        """Render the Authorization header value."""
        mac_b64 = base64.b64encode(self.mac).decode("ascii")
        return f"{self.scheme} {self.timestamp} {mac_b64}"


def strip_query(path: str) -> str:
    """Drop the query string from a request-target."""
    return path.split("?", 1)[0]


def request_descriptor(timestamp: int, method: str, path: str) -> bytes:
    """Build the canonical bytes covered by the MAC."""
    return f"{timestamp}:{method}:{path}".encode("utf-8")


def compute_mac(secret: bytes, timestamp: int, method: str, path: str) -> bytes:
    """Compute HMAC-SHA256 over the request descriptor."""
    return hmac_mod.new(
        secret,
        request_descriptor(timestamp, method, path),
        hashlib.sha256,
    ).digest()


def sign(
    secret: bytes,
    method: str,
    path: str,
    timestamp: Optional[int] = None,
    clock: Callable[[], float] = time.time,
) -> AuthorizationToken:
    """Sign a request.

    Args:
        secret: Shared secret
        method: HTTP method (e.g., "PUT")
        path: Raw request path, without query string
        timestamp: Unix seconds to sign with (default: read from clock)
        clock: Wall clock returning unix seconds

    Returns:
        AuthorizationToken for exactly this method/path/timestamp
    """
    if timestamp is None:
        timestamp = int(clock())
    return AuthorizationToken(
        timestamp=timestamp,
        mac=compute_mac(secret, timestamp, method, path),
    )


def parse_authorization(header: Optional[str]) -> AuthorizationToken:
    """Parse an Authorization header into a token.

    Raises:
        AuthError: MISSING_HEADER, BAD_TIMESTAMP or BAD_ENCODING
    """
    match = AUTH_HEADER_PATTERN.fullmatch(header or "")
    if not match:
        raise AuthError(AuthFailure.MISSING_HEADER, "auth header missing or malformed")

    try:
        timestamp = int(match.group(1))
    except ValueError as e:
        # Only reachable past the interpreter's int digit limit
        raise AuthError(AuthFailure.BAD_TIMESTAMP, f"hmac number conversion: {e}") from e
    if timestamp > MAX_TIMESTAMP:
        raise AuthError(AuthFailure.BAD_TIMESTAMP, f"timestamp out of range: {match.group(1)}")

    try:
        mac = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthError(AuthFailure.BAD_ENCODING, f"hmac base64 conversion: {e}") from e

    return AuthorizationToken(timestamp=timestamp, mac=mac)


class Signer:
    """Signs outbound requests with a fixed secret and clock."""

    def __init__(self, secret: bytes, clock: Callable[[], float] = time.time):
        self._secret = secret
        self._clock = clock

    def sign(self, method: str, path: str) -> AuthorizationToken:
        """Sign method and path at the current clock time."""
        return sign(self._secret, method, path, clock=self._clock)

    def header_value(self, method: str, path: str) -> str:
        """Return the Authorization header value for a request."""
        return self.sign(method, path).header_value()
