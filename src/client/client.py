"""Clip client: copy to and paste from a pcopy server.

Every request is signed with the HMAC scheme from trust.signer and sent over
a session that trusts either the pinned certificate or the system roots.
"""

import logging
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

import requests
from requests.auth import AuthBase

from client.transport import trusted_session
from config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT, ClientConfig
from server.storage import validate_file_id
from trust.errors import ClipNotFoundError, TransportError, UnauthorizedError
from trust.signer import Signer, strip_query
from trust.store import TrustStore

logger = logging.getLogger(__name__)

DEFAULT_FILE_ID = "default"
CHUNK_SIZE = 64 * 1024


class HmacAuth(AuthBase):
    """requests auth hook adding the HMAC Authorization header.

    Signs the path exactly as it will appear in the request line, so the
    server can verify against its raw request-target.
    """

    def __init__(self, signer: Signer):
        self.signer = signer

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        path = strip_query(r.path_url)
        r.headers["Authorization"] = self.signer.header_value(r.method, path)
        return r


class PcopyClient:
    """Client for one pcopy server."""

    def __init__(
        self,
        trust_store: TrustStore,
        ca_cert: Optional[Path] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize client.

        Args:
            trust_store: Server address, key and optional pinned cert
            ca_cert: Extra root certificate (only used without a pinned cert)
            connect_timeout: Seconds to wait for TCP/TLS connect
            read_timeout: Seconds to wait for response data
            clock: Wall clock used for request timestamps
        """
        self.trust_store = trust_store
        self.ca_cert = ca_cert
        self.timeout = (connect_timeout, read_timeout)
        self.auth = HmacAuth(trust_store.signer(clock=clock))
        self.session = trusted_session(trust_store.pinned_cert, ca_cert)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @classmethod
    def from_config(cls, config: ClientConfig) -> "PcopyClient":
        return cls(
            TrustStore.from_config(config),
            ca_cert=config.ca_cert,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
        )

    def _url(self, path: str) -> str:
        return f"https://{self.trust_store.server_addr}{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send a signed request and map failures to the client error types.

        Raises:
            UnauthorizedError: On HTTP 401
            TransportError: On network/TLS failure
        """
        try:
            response = self.session.request(
                method, self._url(path), auth=self.auth, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code == 401:
            response.close()
            raise UnauthorizedError()
        return response

    def verify(self) -> None:
        """Check that the server accepts this client's key.

        Raises:
            UnauthorizedError: If the key is wrong (or clocks are too far apart)
            TransportError: On network failure
        """
        with self._request("GET", "/verify") as response:
            self._check_status(response, "/verify")

    def copy(self, data: Union[bytes, BinaryIO], file_id: str = DEFAULT_FILE_ID) -> None:
        """Upload a clip.

        Raises:
            InvalidFileIdError: If file_id is not [-_a-zA-Z0-9]+
            UnauthorizedError, TransportError
        """
        path = f"/clip/{validate_file_id(file_id)}"
        if not isinstance(data, bytes):
            data = data.read()
        logger.debug("Copying %d bytes to %s", len(data), path)
        with self._request("PUT", path, data=data) as response:
            self._check_status(response, path)

    def paste(self, writer: BinaryIO, file_id: str = DEFAULT_FILE_ID) -> int:
        """Download a clip into writer.

        Returns:
            Number of bytes written

        Raises:
            InvalidFileIdError: If file_id is not [-_a-zA-Z0-9]+
            ClipNotFoundError: If the server has no such clip
            UnauthorizedError, TransportError
        """
        path = f"/clip/{validate_file_id(file_id)}"
        written = 0
        with self._request("GET", path, stream=True) as response:
            if response.status_code == 404:
                raise ClipNotFoundError(file_id)
            self._check_status(response, path)
            try:
                for chunk in response.iter_content(CHUNK_SIZE):
                    writer.write(chunk)
                    written += len(chunk)
            except requests.exceptions.RequestException as e:
                raise TransportError(f"GET {path} failed: {e}") from e
        logger.debug("Pasted %d bytes from %s", written, path)
        return written

    @staticmethod
    def _check_status(response: requests.Response, path: str):
        if response.status_code != 200:
            raise TransportError(
                f"{response.request.method} {path} failed: HTTP {response.status_code}"
            )
