"""Shared trust primitives for pcopy.

The client and the server both build on this package: the HMAC request
signing scheme, the trust store a client commits after discovery, key
derivation, and the error types surfaced to callers.
"""

from trust.errors import (
    PcopyError,
    TransportError,
    DiscoveryFormatError,
    AuthFailure,
    AuthError,
    UnauthorizedError,
    ClipNotFoundError,
)
from trust.signer import (
    SCHEME,
    AuthorizationToken,
    Signer,
    sign,
    compute_mac,
    request_descriptor,
    parse_authorization,
)
from trust.store import TrustStore
from trust.keys import derive_key, generate_salt

__all__ = [
    # Errors
    "PcopyError",
    "TransportError",
    "DiscoveryFormatError",
    "AuthFailure",
    "AuthError",
    "UnauthorizedError",
    "ClipNotFoundError",
    # Signing
    "SCHEME",
    "AuthorizationToken",
    "Signer",
    "sign",
    "compute_mac",
    "request_descriptor",
    "parse_authorization",
    # Trust store
    "TrustStore",
    # Keys
    "derive_key",
    "generate_salt",
]
