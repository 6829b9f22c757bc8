"""Request authentication for the server.

Provides:
- HMAC request verification (Authorization: HMAC v1 <timestamp> <mac>)
- The single mapping from any auth failure to the 401 sent on the wire
"""

import hmac as hmac_mod
import logging
import time
from typing import Callable, Optional, Tuple

from config import DEFAULT_MAX_REQUEST_AGE
from trust.errors import AuthError, AuthFailure
from trust.signer import compute_mac, parse_authorization

logger = logging.getLogger(__name__)


def verify_request(
    header: Optional[str],
    method: str,
    path: str,
    key: bytes,
    now: int,
    max_request_age: int = DEFAULT_MAX_REQUEST_AGE,
) -> None:
    """Verify a signed request.

    Checks run in a fixed order and each raises with its own failure tag:
    header format, timestamp range, MAC encoding, MAC value, freshness.

    Args:
        header: Authorization header value
        method: HTTP method from the request line
        path: Raw request-line path without query string
        key: Shared secret
        now: Current unix time in seconds
        max_request_age: Allowed clock skew in seconds, past and future

    Raises:
        AuthError: On any verification failure
    """
    token = parse_authorization(header)

    # Compare HMAC in constant time
    expected = compute_mac(key, token.timestamp, method, path)
    if not hmac_mod.compare_digest(expected, token.mac):
        raise AuthError(AuthFailure.BAD_MAC, "hmac invalid")

    # Bound the replay window
    if abs(now - token.timestamp) > max_request_age:
        raise AuthError(
            AuthFailure.EXPIRED,
            f"hmac request age mismatch: timestamp={token.timestamp} now={now}",
        )


class Authenticator:
    """Authorizes inbound requests against the server's shared secret.

    Holds only read-only state, so one instance serves all request threads.
    """

    def __init__(
        self,
        key: bytes,
        max_request_age: int = DEFAULT_MAX_REQUEST_AGE,
        clock: Callable[[], float] = time.time,
        audit_log: Optional[logging.Logger] = None,
    ):
        self._key = key
        self.max_request_age = max_request_age
        self._clock = clock
        self._audit_log = audit_log or logger

    def authorize(
        self,
        header: Optional[str],
        method: str,
        path: str,
        now: Optional[int] = None,
        client: str = "-",
    ) -> Optional[AuthError]:
        """Authorize one request.

        Returns:
            None if the request is authorized, or the AuthError describing
            which check rejected it. The error is for local logging only.
        """
        if now is None:
            now = int(self._clock())
        try:
            verify_request(header, method, path, self._key, now, self.max_request_age)
        except AuthError as e:
            self._audit_log.warning(
                "%s - %s %s - auth failed (%s): %s",
                client, method, path, e.failure.value, e.message,
            )
            return e
        return None


def unauthorized_response(error: AuthError) -> Tuple[dict, int]:
    """Map an auth failure to the response sent to the client.

    Every failure gets the same body and status so the network never learns
    which check failed.
    """
    return {"error": {"code": "E300", "message": "unauthorized"}}, error.http_status
