"""Key derivation for the shared secret."""

import hashlib
import secrets

SALT_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 10000


def generate_salt(length: int = SALT_LENGTH) -> bytes:
    """Generate a random salt for a new server."""
    return secrets.token_bytes(length)


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive the shared secret from a passphrase and the server's salt.

    Client and server run the same derivation, so a client that learned the
    salt through discovery ends up with the server's key without the key
    ever crossing the network.
    """
    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        PBKDF2_ITERATIONS,
        dklen=KEY_LENGTH,
    )
