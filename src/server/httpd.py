"""Main HTTPS server.

Endpoints:
- GET /            Discovery info (version, salt), unauthenticated
- GET /verify      Authenticated no-op, lets a client check its key
- GET /install     Install script, unauthenticated
- GET /clip/<id>   Authenticated clip download
- PUT /clip/<id>   Authenticated clip upload
"""

import base64
import json
import logging
import re
import shutil
import signal
import ssl
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import parse_qs

from config import ServerConfig
from server.auth import Authenticator, unauthorized_response
from server.content_type import ContentTypeWriter
from server.install import render_install_script
from server.storage import ClipStore, IncompleteUploadError, InvalidFileIdError
from server.tls import TLSConfig
from trust.signer import strip_query

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
COPY_BUFFER_SIZE = 64 * 1024

CLIP_PATH_PATTERN = re.compile(r"^/clip/([^/]+)$")


class PcopyHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the read-only request context."""

    daemon_threads = True

    def __init__(self, server_address, config: ServerConfig, authenticator: Authenticator, store: ClipStore):
        self.config = config
        self.authenticator = authenticator
        self.store = store
        super().__init__(server_address, ServerHandler)

    def handle_error(self, request, client_address):
        """Log per-connection failures instead of printing tracebacks to stderr.

        Clients that reject the certificate abort the handshake, so TLS
        errors here are expected during discovery.
        """
        exc = sys.exc_info()[1]
        if isinstance(exc, (ssl.SSLError, ConnectionError, TimeoutError)):
            logger.debug("%s - connection error: %s", client_address[0], exc)
            return
        logger.exception("%s - unhandled error", client_address[0])


class ServerHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the pcopy server."""

    server: PcopyHTTPServer
    server_version = "pcopy"
    timeout = 30

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)

    def send_json(self, data: dict, status: int = 200):
        """Send JSON response."""
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def send_bytes(self, content: bytes, status: int, content_type: str):
        """Send bytes response."""
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        self.wfile.write(content)

    def fail(self, status: int, code: str, message: str):
        """Log a failure locally and send a JSON error."""
        logger.warning("%s - %s %s - %s", self.address_string(), self.command, self.path, message)
        self.send_json({"error": {"code": code, "message": message}}, status)

    @property
    def request_path(self) -> str:
        """Raw request-line path without the query string."""
        return strip_query(self.path)

    def do_GET(self):
        """Handle GET requests."""
        path = self.request_path

        if path == "/":
            self._handle_info()
            return

        if path == "/install":
            script = render_install_script(self.server.config.server_addr)
            self.send_bytes(script.encode("utf-8"), 200, "text/x-shellscript")
            return

        if path == "/verify":
            if self._authorize():
                self.send_bytes(b"", 200, "text/plain")
            return

        if path.startswith("/clip/"):
            self._handle_clip()
            return

        self.send_json({"error": {"code": "E100", "message": f"Unknown endpoint: {path}"}}, 404)

    def do_PUT(self):
        """Handle PUT requests."""
        if self.request_path.startswith("/clip/"):
            self._handle_clip()
            return

        self.send_json({"error": {"code": "E100", "message": f"Unknown endpoint: {self.request_path}"}}, 404)

    def _handle_info(self):
        self.send_json({
            "version": PROTOCOL_VERSION,
            "salt": base64.b64encode(self.server.config.salt).decode("ascii"),
        })

    def _authorize(self) -> bool:
        """Authorize the current request, sending 401 if it fails."""
        error = self.server.authenticator.authorize(
            self.headers.get("Authorization"),
            self.command,
            self.request_path,
            client=self.address_string(),
        )
        if error is None:
            return True
        body, status = unauthorized_response(error)
        self.send_json(body, status)
        return False

    def _handle_clip(self):
        """Handle /clip/<id>. Authorization runs before anything touches storage."""
        if not self._authorize():
            return

        match = CLIP_PATH_PATTERN.match(self.request_path)
        try:
            if not match:
                raise InvalidFileIdError(self.request_path[len("/clip/"):])
            file_id = match.group(1)
            if self.command == "PUT":
                self._put_clip(file_id)
            else:
                self._get_clip(file_id)
        except InvalidFileIdError as e:
            self.fail(400, e.code, e.message)

    def _get_clip(self, file_id: str):
        try:
            reader = self.server.store.open_reader(file_id)
        except FileNotFoundError:
            self.fail(404, "E200", f"Clip not found: {file_id}")
            return

        values = parse_qs(self.path.partition("?")[2], keep_blank_values=True).get("download")
        download = bool(values) and values[0] not in ("0", "false")

        with reader:
            self.send_response(200)
            self.send_header("Content-Length", str(reader.seek(0, 2)))
            reader.seek(0)
            writer = ContentTypeWriter(self, filename=file_id, download=download)
            shutil.copyfileobj(reader, writer, COPY_BUFFER_SIZE)
            writer.close()

    def _put_clip(self, file_id: str):
        length_header = self.headers.get("Content-Length")
        if length_header is None:
            self.fail(411, "E102", "Content-Length required")
            return
        try:
            length = int(length_header)
            if length < 0:
                raise ValueError(length_header)
        except ValueError:
            self.fail(400, "E102", f"Invalid Content-Length: {length_header}")
            return

        try:
            self.server.store.write(file_id, self.rfile, length, COPY_BUFFER_SIZE)
        except IncompleteUploadError as e:
            self.fail(400, e.code, e.message)
            return
        except OSError as e:
            self.fail(500, "E500", f"Failed to store clip: {e}")
            return

        self.send_bytes(b"", 200, "text/plain")


class Server:
    """HTTPS server for pcopy clips."""

    def __init__(
        self,
        config: ServerConfig,
        tls_config: Optional[TLSConfig] = None,
        authenticator: Optional[Authenticator] = None,
    ):
        """Initialize server.

        Args:
            config: Server configuration (bind, port, key, salt, TLS files)
            tls_config: TLS configuration (loaded from config paths if None)
            authenticator: Request authenticator (built from config if None)
        """
        self.config = config
        self.tls_config = tls_config
        self.authenticator = authenticator or Authenticator(
            config.key, max_request_age=config.max_request_age,
        )
        self.server: Optional[PcopyHTTPServer] = None

    @property
    def port(self) -> int:
        """Actual listening port (differs from config when config.port is 0)."""
        if self.server:
            return self.server.server_address[1]
        return self.config.port

    def start(self):
        """Bind the socket and wrap it with TLS.

        Raises:
            RuntimeError: If server cannot be started
        """
        if self.tls_config is None:
            try:
                self.tls_config = TLSConfig.from_paths(self.config.cert_file, self.config.key_file)
            except (FileNotFoundError, ValueError) as e:
                logger.error("Failed to load TLS cert: %s", e)
                raise RuntimeError(f"TLS init failed: {e}") from e

        try:
            self.config.cache_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(f"Cache dir init failed: {e}") from e

        self.server = PcopyHTTPServer(
            (self.config.bind, self.config.port),
            config=self.config,
            authenticator=self.authenticator,
            store=ClipStore(self.config.cache_dir),
        )
        self.server.socket = self.tls_config.server_context().wrap_socket(
            self.server.socket,
            server_side=True,
            # Handshake in the request thread so a stalled peer only blocks itself
            do_handshake_on_connect=False,
        )

        logger.info("Server starting on https://%s:%d", self.config.bind, self.port)
        logger.info("Certificate fingerprint: %s", self.tls_config.fingerprint)
        logger.info("Clip cache: %s", self.config.cache_dir)

        if threading.current_thread() is threading.main_thread():
            self._setup_signal_handlers()

    def serve_forever(self):
        """Start serving requests."""
        if not self.server:
            raise RuntimeError("Server not started")

        server = self.server
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
        finally:
            server.server_close()

    def shutdown(self):
        """Stop serve_forever and close the socket."""
        logger.info("Shutting down server")

        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None

    def _setup_signal_handlers(self):
        def handle_sigterm(signum, frame):
            """Handle SIGTERM for graceful shutdown."""
            logger.info("Received SIGTERM")
            sys.exit(0)

        signal.signal(signal.SIGTERM, handle_sigterm)


def create_server(config: ServerConfig, tls_config: Optional[TLSConfig] = None) -> Server:
    """Create a server instance (not yet started)."""
    return Server(config=config, tls_config=tls_config)
