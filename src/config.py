"""pcopy configuration management.

Configuration is stored as YAML in the config directory:
- server.yaml: Server settings (listen address, key, salt, TLS files, cache)
- <alias>.yaml: Client settings for one joined server
- <alias>.crt: Pinned certificate for that server (only when self-signed)

Config directory resolution order:
1. $PCOPY_CONFIG_DIR environment variable
2. ~/.config/pcopy/ (if it exists)
3. /etc/pcopy/ (if it exists)
4. ~/.config/pcopy/ (created on first save)
"""

import base64
import binascii
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_PORT = 2586
DEFAULT_BIND = "0.0.0.0"
DEFAULT_ALIAS = "default"
DEFAULT_MAX_REQUEST_AGE = 60
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_CACHE_DIR = Path("/var/cache/pcopy")

SERVER_CONFIG_NAME = "server.yaml"


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class ServerConfig:
    """Configuration for the pcopy server."""

    key: bytes = field(repr=False)
    salt: bytes
    cert_file: Path
    key_file: Path
    server_addr: str = ""  # Advertised host:port, used by /install
    bind: str = DEFAULT_BIND
    port: int = DEFAULT_PORT
    cache_dir: Path = DEFAULT_CACHE_DIR
    max_request_age: int = DEFAULT_MAX_REQUEST_AGE

    def __post_init__(self):
        self.cert_file = Path(self.cert_file)
        self.key_file = Path(self.key_file)
        self.cache_dir = Path(self.cache_dir)

    def to_dict(self) -> dict:
        return {
            "server_addr": self.server_addr,
            "bind": self.bind,
            "port": self.port,
            "key": _b64encode(self.key),
            "salt": _b64encode(self.salt),
            "cert_file": str(self.cert_file),
            "key_file": str(self.key_file),
            "cache_dir": str(self.cache_dir),
            "max_request_age": self.max_request_age,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        missing = [k for k in ("key", "salt", "cert_file", "key_file") if not data.get(k)]
        if missing:
            raise ConfigError(f"Server config missing required keys: {', '.join(missing)}")
        return cls(
            key=_b64decode(data["key"], "key"),
            salt=_b64decode(data["salt"], "salt"),
            cert_file=Path(data["cert_file"]),
            key_file=Path(data["key_file"]),
            server_addr=data.get("server_addr") or "",
            bind=data.get("bind") or DEFAULT_BIND,
            port=int(data.get("port") or DEFAULT_PORT),
            cache_dir=Path(data.get("cache_dir") or DEFAULT_CACHE_DIR),
            max_request_age=int(data.get("max_request_age") or DEFAULT_MAX_REQUEST_AGE),
        )


@dataclass
class ClientConfig:
    """Configuration for one server a client has joined."""

    server_addr: str
    key: bytes = field(repr=False)
    salt: bytes
    cert_file: Optional[Path] = None  # Pinned certificate, if the server is self-signed
    ca_cert: Optional[Path] = None  # Extra root given at join time
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT

    def __post_init__(self):
        if isinstance(self.cert_file, str):
            self.cert_file = Path(self.cert_file)
        if isinstance(self.ca_cert, str):
            self.ca_cert = Path(self.ca_cert)

    def to_dict(self) -> dict:
        data = {
            "server_addr": self.server_addr,
            "key": _b64encode(self.key),
            "salt": _b64encode(self.salt),
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
        }
        if self.cert_file:
            data["cert_file"] = str(self.cert_file)
        if self.ca_cert:
            data["ca_cert"] = str(self.ca_cert)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ClientConfig":
        missing = [k for k in ("server_addr", "key", "salt") if not data.get(k)]
        if missing:
            raise ConfigError(f"Client config missing required keys: {', '.join(missing)}")
        cert_file = data.get("cert_file")
        ca_cert = data.get("ca_cert")
        return cls(
            server_addr=data["server_addr"],
            key=_b64decode(data["key"], "key"),
            salt=_b64decode(data["salt"], "salt"),
            cert_file=Path(cert_file) if cert_file else None,
            ca_cert=Path(ca_cert) if ca_cert else None,
            connect_timeout=float(data.get("connect_timeout") or DEFAULT_CONNECT_TIMEOUT),
            read_timeout=float(data.get("read_timeout") or DEFAULT_READ_TIMEOUT),
        )


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid base64 for '{name}': {e}") from e


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def _write_atomic(path: Path, content: str, mode: int = 0o600):
    """Write a file via temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def get_config_dir() -> Path:
    """Discover the pcopy config directory (see module docstring)."""
    if env_path := os.environ.get("PCOPY_CONFIG_DIR"):
        return Path(env_path)

    user_dir = Path.home() / ".config" / "pcopy"
    if user_dir.exists():
        return user_dir

    system_dir = Path("/etc/pcopy")
    if system_dir.exists():
        return system_dir

    return user_dir


def client_config_path(alias: str = DEFAULT_ALIAS, config_dir: Optional[Path] = None) -> Path:
    return (config_dir or get_config_dir()) / f"{alias}.yaml"


def pinned_cert_path(alias: str = DEFAULT_ALIAS, config_dir: Optional[Path] = None) -> Path:
    return (config_dir or get_config_dir()) / f"{alias}.crt"


def load_server_config(path: Optional[Path] = None) -> ServerConfig:
    """Load server.yaml.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    path = path or get_config_dir() / SERVER_CONFIG_NAME
    if not path.exists():
        raise ConfigError(f"Server config not found: {path}. Run: pcopy setup")
    return ServerConfig.from_dict(_parse_yaml(path))


def save_server_config(config: ServerConfig, path: Optional[Path] = None) -> Path:
    path = path or get_config_dir() / SERVER_CONFIG_NAME
    _write_atomic(path, yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    return path


def load_client_config(alias: str = DEFAULT_ALIAS, config_dir: Optional[Path] = None) -> ClientConfig:
    """Load the client config for an alias.

    Raises:
        ConfigError: If the alias has not been joined yet
    """
    path = client_config_path(alias, config_dir)
    if not path.exists():
        raise ConfigError(f"Client config not found: {path}. Run: pcopy join <server>")
    return ClientConfig.from_dict(_parse_yaml(path))


def save_client_config(
    config: ClientConfig,
    alias: str = DEFAULT_ALIAS,
    config_dir: Optional[Path] = None,
    pinned_cert: str = "",
) -> Path:
    """Save a client config, writing the pinned certificate next to it.

    The pinned cert is written verbatim and config.cert_file is pointed at
    it. Without a pinned cert any stale <alias>.crt is removed.
    """
    cert_path = pinned_cert_path(alias, config_dir)
    if pinned_cert:
        _write_atomic(cert_path, pinned_cert)
        config.cert_file = cert_path
    else:
        cert_path.unlink(missing_ok=True)
        config.cert_file = None

    path = client_config_path(alias, config_dir)
    _write_atomic(path, yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    return path
