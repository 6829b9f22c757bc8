"""CLI for the server commands.

Provides:
- setup: create server.yaml with a fresh salt, derived key and TLS cert
- serve: run the HTTPS server in the foreground
"""

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from client.discovery import split_server_addr
from config import (
    DEFAULT_BIND,
    DEFAULT_CACHE_DIR,
    DEFAULT_MAX_REQUEST_AGE,
    DEFAULT_PORT,
    SERVER_CONFIG_NAME,
    ConfigError,
    ServerConfig,
    get_config_dir,
    load_server_config,
    save_server_config,
)
from server.httpd import Server
from server.tls import generate_self_signed_cert
from trust.keys import derive_key, generate_salt

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def read_new_password() -> str:
    """Read a new password from PCOPY_PASSWORD or prompt twice."""
    if password := os.environ.get("PCOPY_PASSWORD"):
        return password
    password = getpass.getpass("Enter password: ")
    if password != getpass.getpass("Confirm password: "):
        raise ConfigError("Passwords do not match")
    if not password:
        raise ConfigError("Password must not be empty")
    return password


def handle_setup(argv) -> int:
    """Handle 'setup': write server.yaml and generate a certificate."""
    parser = argparse.ArgumentParser(
        prog="pcopy setup",
        description="Create the server configuration",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--server-addr", "-s",
        default="",
        help="Address clients use to reach this server (host:port); enables /install",
    )
    parser.add_argument("--bind", "-b", default=DEFAULT_BIND, help="Address to bind to")
    parser.add_argument("--port", "-p", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument("--cache-dir", type=Path, default=DEFAULT_CACHE_DIR, help="Clip storage directory")
    parser.add_argument(
        "--max-request-age",
        type=int,
        default=DEFAULT_MAX_REQUEST_AGE,
        help="Accepted clock skew for signed requests, in seconds",
    )
    parser.add_argument("--config", "-c", type=Path, help="Config file (default: <config dir>/server.yaml)")
    parser.add_argument("--force", action="store_true", help="Overwrite existing config and certificate")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    config_path = args.config or get_config_dir() / SERVER_CONFIG_NAME
    if config_path.exists() and not args.force:
        logger.error("Config already exists: %s (use --force to overwrite)", config_path)
        return 1

    hostname = None
    if args.server_addr:
        try:
            hostname, _ = split_server_addr(args.server_addr)
        except ValueError as e:
            logger.error("%s", e)
            return 1

    try:
        password = read_new_password()
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    salt = generate_salt()
    config = ServerConfig(
        key=derive_key(password, salt),
        salt=salt,
        cert_file=config_path.parent / "server.crt",
        key_file=config_path.parent / "server.key",
        server_addr=args.server_addr,
        bind=args.bind,
        port=args.port,
        cache_dir=args.cache_dir,
        max_request_age=args.max_request_age,
    )

    try:
        tls_config = generate_self_signed_cert(
            config.cert_file, config.key_file, hostname=hostname, force=args.force,
        )
        path = save_server_config(config, config_path)
    except Exception as e:
        logger.error("Setup failed: %s", e)
        return 1

    print(f"Server config written to {path}")
    print(f"Certificate fingerprint (SHA256): {tls_config.fingerprint}")
    if args.server_addr:
        print(f"Clients can join with: pcopy join {args.server_addr}")
    return 0


def handle_serve(argv) -> int:
    """Handle 'serve': run the server in the foreground."""
    parser = argparse.ArgumentParser(
        prog="pcopy serve",
        description="Run the pcopy server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", "-c", type=Path, help="Config file (default: <config dir>/server.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        config = load_server_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    server = Server(config)
    try:
        server.start()
    except (RuntimeError, OSError) as e:
        logger.error("Failed to start server: %s", e)
        return 1

    server.serve_forever()
    return 0


COMMANDS = {
    "setup": (handle_setup, "Create server config, key and certificate"),
    "serve": (handle_serve, "Run the server"),
}


if __name__ == "__main__":
    sys.exit(handle_serve(sys.argv[1:]))
