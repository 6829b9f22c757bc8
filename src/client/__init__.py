"""pcopy client package.

First-contact discovery (with certificate pinning) and the signed clip
client used after joining a server.
"""

from client.client import PcopyClient, HmacAuth
from client.discovery import (
    DiscoveryClient,
    DiscoveryResult,
    DiscoveryState,
    discover,
)
from client.transport import (
    verifying_session,
    pinned_session,
    insecure_session,
    trusted_session,
)

__all__ = [
    # Client
    "PcopyClient",
    "HmacAuth",
    # Discovery
    "DiscoveryClient",
    "DiscoveryResult",
    "DiscoveryState",
    "discover",
    # Transport
    "verifying_session",
    "pinned_session",
    "insecure_session",
    "trusted_session",
]
