"""HTTP sessions with explicit TLS trust.

Each factory builds a separate requests.Session whose trust is fixed at
construction. There is no way to flip verification on an existing session,
so the insecure discovery session can't leak into authenticated traffic.
"""

import ssl
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter


class SSLContextAdapter(HTTPAdapter):
    """HTTPAdapter that verifies peers with a caller-supplied SSLContext."""

    def __init__(self, ssl_context: ssl.SSLContext, exclusive: bool = False, **kwargs):
        self._ssl_context = ssl_context
        self._exclusive = exclusive
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs["ssl_context"] = self._ssl_context
        if not self._ssl_context.check_hostname:
            pool_kwargs["assert_hostname"] = False
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)

    def cert_verify(self, conn, url, verify, cert):
        super().cert_verify(conn, url, verify, cert)
        if self._exclusive:
            # Keep requests from adding its CA bundle next to the pinned anchor
            conn.ca_certs = None
            conn.ca_cert_dir = None


def _session_with_context(context: ssl.SSLContext, exclusive: bool = False) -> requests.Session:
    session = requests.Session()
    session.mount("https://", SSLContextAdapter(context, exclusive=exclusive))
    return session


def verifying_session(ca_cert: Optional[Path] = None) -> requests.Session:
    """Session validating against system roots plus an optional extra root."""
    context = ssl.create_default_context()
    if ca_cert:
        context.load_verify_locations(cafile=str(ca_cert))
    return _session_with_context(context)


def pinned_session(pinned_cert: str) -> requests.Session:
    """Session that trusts only the pinned certificate(s).

    The pinned certificate is the sole trust anchor, so the host name is not
    checked against it: the peer has to present exactly that certificate.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_REQUIRED
    context.load_verify_locations(cadata=pinned_cert)
    return _session_with_context(context, exclusive=True)


def insecure_session() -> requests.Session:
    """Session without certificate verification, for the discovery fallback only."""
    session = requests.Session()
    session.verify = False
    # REQUESTS_CA_BUNDLE/CURL_CA_BUNDLE would otherwise override verify=False
    session.trust_env = False
    return session


def trusted_session(pinned_cert: str = "", ca_cert: Optional[Path] = None) -> requests.Session:
    """Session for authenticated traffic: pinned if a cert was pinned, else verifying."""
    if pinned_cert:
        return pinned_session(pinned_cert)
    return verifying_session(ca_cert)
