"""Server package for the pcopy HTTPS daemon.

The server hands out its salt for discovery and stores clips behind HMAC
request authentication on a single HTTPS port.
"""

from server.httpd import (
    Server,
    create_server,
    PROTOCOL_VERSION,
)
from server.tls import (
    TLSConfig,
    generate_self_signed_cert,
    cert_fingerprint,
)
from server.auth import (
    Authenticator,
    verify_request,
    unauthorized_response,
)
from server.storage import (
    ClipStore,
    InvalidFileIdError,
    validate_file_id,
)

__all__ = [
    # Server
    "Server",
    "create_server",
    "PROTOCOL_VERSION",
    # TLS
    "TLSConfig",
    "generate_self_signed_cert",
    "cert_fingerprint",
    # Auth
    "Authenticator",
    "verify_request",
    "unauthorized_response",
    # Storage
    "ClipStore",
    "InvalidFileIdError",
    "validate_file_id",
]
