"""Error types shared by the pcopy client and server."""

from enum import Enum


class PcopyError(Exception):
    """Base exception with an error code and a human readable message."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class TransportError(PcopyError):
    """Network, DNS or TLS failure unrelated to authentication."""

    def __init__(self, message: str):
        super().__init__("E501", message)


class DiscoveryFormatError(PcopyError):
    """The discovery endpoint answered with something other than discovery JSON."""

    def __init__(self, message: str):
        super().__init__("E502", message)


class AuthFailure(Enum):
    """Reason a request failed authorization (local diagnostics only)."""

    MISSING_HEADER = "missing_header"
    BAD_TIMESTAMP = "bad_timestamp"
    BAD_ENCODING = "bad_encoding"
    BAD_MAC = "bad_mac"
    EXPIRED = "expired"


class AuthError(PcopyError):
    """Authorization failure, tagged with the check that rejected it.

    The tag and message are for the audit log. On the wire every AuthError
    becomes the same 401 response (see server.auth.unauthorized_response).
    """

    http_status = 401

    def __init__(self, failure: AuthFailure, message: str):
        self.failure = failure
        super().__init__("E300", message)


class UnauthorizedError(PcopyError):
    """The server rejected a signed request (wrong key or stale clock)."""

    def __init__(self, message: str = "unauthorized"):
        super().__init__("E300", message)


class ClipNotFoundError(PcopyError):
    """The requested clip does not exist on the server."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__("E200", f"Clip not found: {file_id}")
