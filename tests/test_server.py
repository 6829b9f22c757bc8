"""Tests for server/httpd.py - pcopy HTTPS server."""

import base64
import http.client
import json
import ssl
import time

import pytest

from conftest import TEST_SALT
from server.auth import Authenticator
from server.httpd import PROTOCOL_VERSION, Server, create_server
from trust.signer import sign


class TestServer:
    """Tests for Server initialization."""

    def test_init_defaults(self, server_config):
        server = Server(server_config)
        assert server.config is server_config
        assert server.tls_config is None
        assert server.server is None
        assert server.authenticator.max_request_age == server_config.max_request_age

    def test_port_before_start(self, server_config):
        server = Server(server_config)
        assert server.port == server_config.port

    def test_custom_authenticator(self, server_config):
        auth = Authenticator(b"other")
        assert Server(server_config, authenticator=auth).authenticator is auth

    def test_serve_forever_requires_start(self, server_config):
        with pytest.raises(RuntimeError):
            Server(server_config).serve_forever()

    def test_start_fails_without_cert(self, server_config, tmp_path):
        server_config.cert_file = tmp_path / "missing.crt"
        with pytest.raises(RuntimeError) as exc_info:
            Server(server_config).start()
        assert "TLS init failed" in str(exc_info.value)

    def test_start_loads_cert_from_config(self, server_config):
        server = Server(server_config)
        server.start()
        try:
            assert server.tls_config.cert_path == server_config.cert_file
            assert server.port != 0
            assert server_config.cache_dir.is_dir()
        finally:
            # Never served, so close the socket instead of shutdown()
            server.server.server_close()


class TestServerIntegration:
    """Integration tests for Server with real HTTPS requests."""

    def _create_https_connection(self, running_server):
        """Create HTTPS connection with self-signed cert."""
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return http.client.HTTPSConnection(running_server["host"], running_server["port"], context=context)

    def _request(self, running_server, method, path, body=None, key=None, timestamp=None, sign_path=None):
        """Send a request, signing it when key is given."""
        headers = {}
        if key is not None:
            if timestamp is None:
                timestamp = int(time.time())
            token = sign(key, method, sign_path or path.split("?", 1)[0], timestamp=timestamp)
            headers["Authorization"] = token.header_value()
        conn = self._create_https_connection(running_server)
        conn.request(method, path, body=body, headers=headers)
        response = conn.getresponse()
        data = response.read()
        conn.close()
        return response, data

    def test_info(self, running_server):
        """GET / returns version and salt without auth."""
        response, data = self._request(running_server, "GET", "/")

        assert response.status == 200
        assert response.getheader("Content-Type") == "application/json"
        info = json.loads(data)
        assert info["version"] == PROTOCOL_VERSION
        assert base64.b64decode(info["salt"]) == TEST_SALT

    def test_install(self, running_server):
        response, data = self._request(running_server, "GET", "/install")
        assert response.status == 200
        assert response.getheader("Content-Type") == "text/x-shellscript"
        assert b"pcopy join localhost:2586" in data

    def test_unknown_endpoint(self, running_server):
        response, data = self._request(running_server, "GET", "/unknown")
        assert response.status == 404
        assert json.loads(data)["error"]["code"] == "E100"

    def test_verify_without_auth(self, running_server):
        response, data = self._request(running_server, "GET", "/verify")
        assert response.status == 401
        assert json.loads(data) == {"error": {"code": "E300", "message": "unauthorized"}}

    def test_verify_with_auth(self, running_server, test_key):
        response, data = self._request(running_server, "GET", "/verify", key=test_key)
        assert response.status == 200
        assert data == b""

    def test_verify_wrong_key(self, running_server):
        response, _ = self._request(running_server, "GET", "/verify", key=b"wrong" * 8)
        assert response.status == 401

    def test_expired_request(self, running_server, test_key):
        response, data = self._request(
            running_server, "GET", "/verify", key=test_key, timestamp=int(time.time()) - 3600,
        )
        assert response.status == 401
        assert json.loads(data) == {"error": {"code": "E300", "message": "unauthorized"}}

    def test_token_bound_to_path(self, running_server, test_key):
        """A token signed for one clip doesn't work for another."""
        response, _ = self._request(
            running_server, "GET", "/clip/abc124", key=test_key, sign_path="/clip/abc123",
        )
        assert response.status == 401

    def test_put_then_get(self, running_server, test_key):
        response, _ = self._request(running_server, "PUT", "/clip/abc123", body=b"hello pcopy", key=test_key)
        assert response.status == 200

        response, data = self._request(running_server, "GET", "/clip/abc123", key=test_key)
        assert response.status == 200
        assert data == b"hello pcopy"
        assert response.getheader("Content-Type") == "text/plain; charset=utf-8"
        assert response.getheader("Content-Length") == str(len(b"hello pcopy"))
        assert response.getheader("Content-Disposition") is None

    def test_put_overwrites(self, running_server, test_key):
        self._request(running_server, "PUT", "/clip/abc", body=b"one", key=test_key)
        self._request(running_server, "PUT", "/clip/abc", body=b"two", key=test_key)
        _, data = self._request(running_server, "GET", "/clip/abc", key=test_key)
        assert data == b"two"

    def test_put_stores_in_cache_dir(self, running_server, test_key, server_config):
        self._request(running_server, "PUT", "/clip/stored", body=b"\x00\x01", key=test_key)
        assert (server_config.cache_dir / "stored").read_bytes() == b"\x00\x01"

    def test_empty_clip(self, running_server, test_key):
        self._request(running_server, "PUT", "/clip/empty", body=b"", key=test_key)
        response, data = self._request(running_server, "GET", "/clip/empty", key=test_key)
        assert response.status == 200
        assert data == b""

    def test_download_query_not_signed(self, running_server, test_key):
        """The query string is excluded from the signed path."""
        self._request(running_server, "PUT", "/clip/notes", body=b"some notes", key=test_key)

        response, data = self._request(running_server, "GET", "/clip/notes?download=1", key=test_key)

        assert response.status == 200
        assert data == b"some notes"
        assert response.getheader("Content-Disposition") == "attachment; filename=notes.txt"

    def test_html_served_as_plain_text(self, running_server, test_key):
        self._request(running_server, "PUT", "/clip/page", body=b"<html><script>x</script>", key=test_key)
        response, _ = self._request(running_server, "GET", "/clip/page", key=test_key)
        assert response.getheader("Content-Type") == "text/plain; charset=utf-8"

    def test_get_missing_clip(self, running_server, test_key):
        response, data = self._request(running_server, "GET", "/clip/missing", key=test_key)
        assert response.status == 404
        assert json.loads(data)["error"]["code"] == "E200"

    @pytest.mark.parametrize("path", ["/clip/a.b", "/clip/a%2Fb", "/clip/a/b", "/clip/"])
    def test_invalid_clip_id(self, running_server, test_key, path):
        """Signed requests for invalid identifiers get 400."""
        response, data = self._request(running_server, "PUT", path, body=b"x", key=test_key)
        assert response.status == 400
        assert json.loads(data)["error"]["code"] == "E101"

    def test_invalid_clip_id_unauthenticated(self, running_server):
        """Authorization runs before identifier validation."""
        response, _ = self._request(running_server, "PUT", "/clip/a.b", body=b"x")
        assert response.status == 401

    def test_unauthenticated_put_stores_nothing(self, running_server, server_config):
        response, _ = self._request(running_server, "PUT", "/clip/sneaky", body=b"x")
        assert response.status == 401
        assert not (server_config.cache_dir / "sneaky").exists()

    def test_put_without_content_length(self, running_server, test_key):
        conn = self._create_https_connection(running_server)
        conn.putrequest("PUT", "/clip/nolength")
        token = sign(test_key, "PUT", "/clip/nolength", timestamp=int(time.time()))
        conn.putheader("Authorization", token.header_value())
        conn.endheaders()
        response = conn.getresponse()
        response.read()
        conn.close()

        assert response.status == 411

    def test_aborted_upload_keeps_previous_clip(self, running_server, test_key, server_config):
        """A body cut short by a disconnect never replaces the stored clip."""
        self._request(running_server, "PUT", "/clip/abc", body=b"original", key=test_key)

        conn = self._create_https_connection(running_server)
        conn.putrequest("PUT", "/clip/abc")
        token = sign(test_key, "PUT", "/clip/abc", timestamp=int(time.time()))
        conn.putheader("Authorization", token.header_value())
        conn.putheader("Content-Length", "100")
        conn.endheaders()
        conn.send(b"trunc")
        conn.close()

        deadline = time.time() + 5
        while time.time() < deadline and list(server_config.cache_dir.glob(".*.tmp")):
            time.sleep(0.05)

        _, data = self._request(running_server, "GET", "/clip/abc", key=test_key)
        assert data == b"original"

    def test_negative_content_length(self, running_server, test_key):
        conn = self._create_https_connection(running_server)
        conn.putrequest("PUT", "/clip/neg")
        token = sign(test_key, "PUT", "/clip/neg", timestamp=int(time.time()))
        conn.putheader("Authorization", token.header_value())
        conn.putheader("Content-Length", "-1")
        conn.endheaders()
        response = conn.getresponse()
        response.read()
        conn.close()

        assert response.status == 400

    def test_plain_http_rejected(self, running_server):
        """The port only speaks TLS."""
        conn = http.client.HTTPConnection(running_server["host"], running_server["port"], timeout=5)
        with pytest.raises((http.client.HTTPException, ConnectionError, OSError)):
            conn.request("GET", "/")
            conn.getresponse()
        conn.close()


class TestCreateServer:
    """Tests for create_server factory function."""

    def test_creates_server_instance(self, server_config, tls_config):
        server = create_server(server_config, tls_config)
        assert isinstance(server, Server)
        assert server.tls_config is tls_config
        assert server.server is None
