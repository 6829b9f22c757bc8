"""Trust store committed by a client after discovery."""

import time
from dataclasses import dataclass, field
from typing import Callable, TYPE_CHECKING

from trust.signer import Signer

if TYPE_CHECKING:
    from client.discovery import DiscoveryResult
    from config import ClientConfig


@dataclass(frozen=True)
class TrustStore:
    """Everything a client trusts about one server.

    Built once (from discovery or from a saved config) and never mutated;
    persisting it is the config layer's job.
    """

    server_addr: str
    key: bytes = field(repr=False)
    salt: bytes
    pinned_cert: str = ""

    @property
    def has_pinned_cert(self) -> bool:
        """True when requests must be validated against the pinned certificate."""
        return bool(self.pinned_cert)

    def signer(self, clock: Callable[[], float] = time.time) -> Signer:
        """Return a Signer bound to this store's key."""
        return Signer(self.key, clock=clock)

    @classmethod
    def from_discovery(
        cls,
        server_addr: str,
        result: "DiscoveryResult",
        key: bytes,
    ) -> "TrustStore":
        """Commit a discovery result together with the derived key."""
        return cls(
            server_addr=server_addr,
            key=key,
            salt=result.salt,
            pinned_cert=result.pinned_cert,
        )

    @classmethod
    def from_config(cls, config: "ClientConfig") -> "TrustStore":
        """Load a store from a saved client config and its pinned cert file."""
        pinned_cert = ""
        if config.cert_file and config.cert_file.exists():
            pinned_cert = config.cert_file.read_text(encoding="ascii")
        return cls(
            server_addr=config.server_addr,
            key=config.key,
            salt=config.salt,
            pinned_cert=pinned_cert,
        )
