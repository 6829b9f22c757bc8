"""Tests for config.py - YAML configuration and config dir discovery."""

import base64
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_MAX_REQUEST_AGE,
    DEFAULT_PORT,
    ClientConfig,
    ConfigError,
    ServerConfig,
    client_config_path,
    get_config_dir,
    load_client_config,
    load_server_config,
    pinned_cert_path,
    save_client_config,
    save_server_config,
)

KEY = b"\x01" * 32
SALT = b"\x02" * 16


def _server_config(tmp_path):
    return ServerConfig(
        key=KEY,
        salt=SALT,
        cert_file=tmp_path / "server.crt",
        key_file=tmp_path / "server.key",
        server_addr="pcopy.example.com:2586",
        cache_dir=tmp_path / "cache",
    )


class TestGetConfigDir:
    """Tests for get_config_dir."""

    def test_env_var_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PCOPY_CONFIG_DIR", str(tmp_path))
        assert get_config_dir() == tmp_path

    def test_user_dir_when_present(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PCOPY_CONFIG_DIR", raising=False)
        (tmp_path / ".config" / "pcopy").mkdir(parents=True)
        with patch("config.Path.home", return_value=tmp_path):
            assert get_config_dir() == tmp_path / ".config" / "pcopy"

    def test_falls_back_to_user_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PCOPY_CONFIG_DIR", raising=False)
        with patch("config.Path.home", return_value=tmp_path), \
                patch("config.Path.exists", return_value=False):
            assert get_config_dir() == tmp_path / ".config" / "pcopy"

    def test_alias_paths(self, tmp_path):
        assert client_config_path("work", tmp_path) == tmp_path / "work.yaml"
        assert pinned_cert_path("work", tmp_path) == tmp_path / "work.crt"


class TestServerConfig:
    """Tests for server.yaml handling."""

    def test_save_and_load(self, tmp_path):
        path = save_server_config(_server_config(tmp_path), tmp_path / "server.yaml")
        loaded = load_server_config(path)

        assert loaded.key == KEY
        assert loaded.salt == SALT
        assert loaded.cert_file == tmp_path / "server.crt"
        assert loaded.server_addr == "pcopy.example.com:2586"
        assert loaded.port == DEFAULT_PORT
        assert loaded.max_request_age == DEFAULT_MAX_REQUEST_AGE

    def test_file_is_private(self, tmp_path):
        path = save_server_config(_server_config(tmp_path), tmp_path / "server.yaml")
        assert path.stat().st_mode & 0o777 == 0o600
        assert not (tmp_path / "server.yaml.tmp").exists()

    def test_key_stored_as_base64(self, tmp_path):
        path = save_server_config(_server_config(tmp_path), tmp_path / "server.yaml")
        data = yaml.safe_load(path.read_text())
        assert base64.b64decode(data["key"]) == KEY

    def test_key_not_in_repr(self, tmp_path):
        assert repr(KEY) not in repr(_server_config(tmp_path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_server_config(tmp_path / "server.yaml")
        assert "pcopy setup" in str(exc_info.value)

    def test_missing_required_keys(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("port: 1234\n")
        with pytest.raises(ConfigError) as exc_info:
            load_server_config(path)
        assert "key" in str(exc_info.value)

    def test_invalid_base64(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("key: '!!!'\nsalt: AAAA\ncert_file: a\nkey_file: b\n")
        with pytest.raises(ConfigError):
            load_server_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_server_config(path)

    def test_default_path_from_config_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PCOPY_CONFIG_DIR", str(tmp_path))
        path = save_server_config(_server_config(tmp_path))
        assert path == tmp_path / "server.yaml"
        assert load_server_config().salt == SALT


class TestClientConfig:
    """Tests for <alias>.yaml handling."""

    def test_save_and_load_without_cert(self, tmp_path):
        config = ClientConfig(server_addr="pcopy.example.com:2586", key=KEY, salt=SALT)
        save_client_config(config, "default", tmp_path)

        loaded = load_client_config("default", tmp_path)
        assert loaded.server_addr == "pcopy.example.com:2586"
        assert loaded.key == KEY
        assert loaded.cert_file is None
        assert loaded.connect_timeout == DEFAULT_CONNECT_TIMEOUT
        assert not (tmp_path / "default.crt").exists()

    def test_pinned_cert_written_next_to_config(self, tmp_path):
        config = ClientConfig(server_addr="10.0.0.1:2586", key=KEY, salt=SALT)
        save_client_config(config, "home", tmp_path, pinned_cert="PEM DATA\n")

        assert (tmp_path / "home.crt").read_text() == "PEM DATA\n"
        assert (tmp_path / "home.crt").stat().st_mode & 0o777 == 0o600
        loaded = load_client_config("home", tmp_path)
        assert loaded.cert_file == tmp_path / "home.crt"

    def test_rejoin_without_cert_removes_stale_pin(self, tmp_path):
        config = ClientConfig(server_addr="10.0.0.1:2586", key=KEY, salt=SALT)
        save_client_config(config, "home", tmp_path, pinned_cert="OLD PEM\n")
        save_client_config(config, "home", tmp_path)

        assert not (tmp_path / "home.crt").exists()
        assert load_client_config("home", tmp_path).cert_file is None

    def test_timeouts_and_ca_cert_round_trip(self, tmp_path):
        config = ClientConfig(
            server_addr="h:1", key=KEY, salt=SALT, ca_cert=tmp_path / "root.crt",
            connect_timeout=3.5, read_timeout=7.0,
        )
        save_client_config(config, "t", tmp_path)
        loaded = load_client_config("t", tmp_path)
        assert loaded.ca_cert == tmp_path / "root.crt"
        assert (loaded.connect_timeout, loaded.read_timeout) == (3.5, 7.0)

    def test_missing_alias(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_client_config("nope", tmp_path)
        assert "pcopy join" in str(exc_info.value)

    def test_missing_required_keys(self, tmp_path):
        (tmp_path / "bad.yaml").write_text("server_addr: h:1\n")
        with pytest.raises(ConfigError):
            load_client_config("bad", tmp_path)

    def test_cert_file_accepts_str(self):
        config = ClientConfig(server_addr="h:1", key=KEY, salt=SALT, cert_file="/tmp/x.crt")
        assert config.cert_file == Path("/tmp/x.crt")
