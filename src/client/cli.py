"""CLI for the client commands.

Provides:
- join: discover a server, derive the key, verify it and save the config
- copy: upload stdin as a clip
- paste: write a clip to stdout
- verify: check the saved key against the server
"""

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from client.client import DEFAULT_FILE_ID, PcopyClient
from client.discovery import DiscoveryClient
from config import (
    DEFAULT_ALIAS,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    ClientConfig,
    ConfigError,
    load_client_config,
    save_client_config,
)
from trust.errors import (
    ClipNotFoundError,
    DiscoveryFormatError,
    PcopyError,
    TransportError,
    UnauthorizedError,
)
from trust.keys import derive_key
from trust.store import TrustStore

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CLIENT_ERROR = 1  # Bad args, missing config, invalid clip id
EXIT_TRANSPORT_ERROR = 2  # Network, TLS, bad discovery response
EXIT_UNAUTHORIZED = 3  # Wrong password or clock skew


def exit_code_for(error: PcopyError) -> int:
    """Map a client error to the CLI exit code."""
    if isinstance(error, UnauthorizedError):
        return EXIT_UNAUTHORIZED
    if isinstance(error, (TransportError, DiscoveryFormatError)):
        return EXIT_TRANSPORT_ERROR
    return EXIT_CLIENT_ERROR


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",  # Simple format for CLI output
    )


def _add_common_args(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--alias", "-a",
        default=DEFAULT_ALIAS,
        help="Name of the joined server config",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Override config directory. Env: PCOPY_CONFIG_DIR",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")


def _load_client(args) -> PcopyClient:
    return PcopyClient.from_config(load_client_config(args.alias, args.config_dir))


def handle_join(argv) -> int:
    """Handle 'join': first contact with a server."""
    parser = argparse.ArgumentParser(
        prog="pcopy join",
        description="Join a pcopy server (discover, pin certificate, save key)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("server", help="Server address (host:port)")
    parser.add_argument(
        "--ca-cert",
        type=Path,
        help="Extra root certificate to trust before falling back to pinning",
    )
    parser.add_argument("--connect-timeout", type=float, default=DEFAULT_CONNECT_TIMEOUT)
    parser.add_argument("--read-timeout", type=float, default=DEFAULT_READ_TIMEOUT)
    _add_common_args(parser)
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    discovery = DiscoveryClient(
        args.server,
        ca_cert=args.ca_cert,
        connect_timeout=args.connect_timeout,
        read_timeout=args.read_timeout,
    )
    try:
        result = discovery.discover()
    except PcopyError as e:
        logger.error("Error: %s - %s", e.code, e.message)
        return exit_code_for(e)

    password = os.environ.get("PCOPY_PASSWORD") or getpass.getpass(f"Password for {args.server}: ")
    trust_store = TrustStore.from_discovery(args.server, result, derive_key(password, result.salt))

    try:
        with PcopyClient(
            trust_store,
            ca_cert=args.ca_cert,
            connect_timeout=args.connect_timeout,
            read_timeout=args.read_timeout,
        ) as client:
            client.verify()
    except UnauthorizedError as e:
        logger.error("Error: invalid password (or server clock out of sync)")
        return exit_code_for(e)
    except PcopyError as e:
        logger.error("Error: %s - %s", e.code, e.message)
        return exit_code_for(e)

    config = ClientConfig(
        server_addr=args.server,
        key=trust_store.key,
        salt=trust_store.salt,
        ca_cert=args.ca_cert.resolve() if args.ca_cert else None,
        connect_timeout=args.connect_timeout,
        read_timeout=args.read_timeout,
    )
    try:
        path = save_client_config(
            config, args.alias, args.config_dir, pinned_cert=trust_store.pinned_cert,
        )
    except OSError as e:
        logger.error("Error: failed to save config: %s", e)
        return EXIT_CLIENT_ERROR

    logger.info("Joined %s, config saved to %s", args.server, path)
    if trust_store.has_pinned_cert:
        logger.info("Pinned certificate: %s", config.cert_file)
    return EXIT_SUCCESS


def handle_copy(argv) -> int:
    """Handle 'copy': upload stdin."""
    parser = argparse.ArgumentParser(prog="pcopy copy", description="Copy stdin to the server")
    parser.add_argument("id", nargs="?", default=DEFAULT_FILE_ID, help="Clip identifier")
    _add_common_args(parser)
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        with _load_client(args) as client:
            client.copy(sys.stdin.buffer, args.id)
    except ConfigError as e:
        logger.error("Error: %s", e)
        return EXIT_CLIENT_ERROR
    except PcopyError as e:
        logger.error("Error: %s - %s", e.code, e.message)
        return exit_code_for(e)
    return EXIT_SUCCESS


def handle_paste(argv) -> int:
    """Handle 'paste': write a clip to stdout."""
    parser = argparse.ArgumentParser(prog="pcopy paste", description="Paste a clip to stdout")
    parser.add_argument("id", nargs="?", default=DEFAULT_FILE_ID, help="Clip identifier")
    _add_common_args(parser)
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        with _load_client(args) as client:
            client.paste(sys.stdout.buffer, args.id)
        sys.stdout.buffer.flush()
    except ConfigError as e:
        logger.error("Error: %s", e)
        return EXIT_CLIENT_ERROR
    except ClipNotFoundError as e:
        logger.error("Error: %s", e.message)
        return EXIT_CLIENT_ERROR
    except PcopyError as e:
        logger.error("Error: %s - %s", e.code, e.message)
        return exit_code_for(e)
    return EXIT_SUCCESS


def handle_verify(argv) -> int:
    """Handle 'verify': check the saved key."""
    parser = argparse.ArgumentParser(prog="pcopy verify", description="Check the saved key against the server")
    _add_common_args(parser)
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        with _load_client(args) as client:
            client.verify()
    except ConfigError as e:
        logger.error("Error: %s", e)
        return EXIT_CLIENT_ERROR
    except PcopyError as e:
        logger.error("Error: %s - %s", e.code, e.message)
        return exit_code_for(e)

    logger.info("Key accepted by %s", client.trust_store.server_addr)
    return EXIT_SUCCESS


COMMANDS = {
    "join": (handle_join, "Join a server (discovery + certificate pinning)"),
    "copy": (handle_copy, "Copy stdin to a clip"),
    "paste": (handle_paste, "Paste a clip to stdout"),
    "verify": (handle_verify, "Check the saved key against the server"),
}
