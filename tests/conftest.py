"""Shared pytest fixtures for pcopy tests."""

import shutil
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ServerConfig  # noqa: E402
from trust.keys import derive_key  # noqa: E402

TEST_PASSWORD = "correct horse battery staple"
TEST_SALT = b"0123456789abcdef"

requires_openssl = pytest.mark.skipif(
    shutil.which("openssl") is None, reason="openssl CLI not available"
)


@pytest.fixture
def test_key():
    """Shared secret derived from the test password and salt."""
    return derive_key(TEST_PASSWORD, TEST_SALT)


@pytest.fixture
def tls_config(tmp_path):
    """Self-signed certificate for localhost / 127.0.0.1."""
    if shutil.which("openssl") is None:
        pytest.skip("openssl CLI not available")
    from server.tls import generate_self_signed_cert
    return generate_self_signed_cert(
        tmp_path / "certs" / "server.crt",
        tmp_path / "certs" / "server.key",
        hostname="localhost",
        ip_addresses=["127.0.0.1"],
        days=1,
        key_size=2048,  # Smaller for faster tests
    )


@pytest.fixture
def server_config(tmp_path, test_key, tls_config):
    """Server config bound to an OS-assigned localhost port."""
    return ServerConfig(
        key=test_key,
        salt=TEST_SALT,
        cert_file=tls_config.cert_path,
        key_file=tls_config.key_path,
        server_addr="localhost:2586",
        bind="127.0.0.1",
        port=0,  # Let OS assign port
        cache_dir=tmp_path / "cache",
    )


@pytest.fixture
def running_server(server_config, tls_config):
    """Start a pcopy server in a background thread.

    Yields a dict with host, port, server_addr, server and tls_config.
    """
    from server.httpd import Server

    server = Server(config=server_config, tls_config=tls_config)
    server.start()
    port = server.port

    server_thread = threading.Thread(target=server.serve_forever)
    server_thread.daemon = True
    server_thread.start()

    yield {
        "host": "127.0.0.1",
        "port": port,
        "server_addr": f"127.0.0.1:{port}",
        "server": server,
        "tls_config": tls_config,
    }

    server.shutdown()
    server_thread.join(timeout=5)
