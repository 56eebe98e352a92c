"""Tests for configuration loading and validation."""
from __future__ import annotations

import pytest

from wireguard_exporter.config import (
    DEFAULT_PORT,
    AppConfig,
    ConfigError,
    ExporterConfig,
    ServerConfig,
    apply_overrides,
    load_config,
    validate,
)


class TestDefaults:
    def test_default_flags(self):
        """No file and no flags give the documented defaults."""
        config = validate(apply_overrides(load_config(None)))

        assert config.exporter.interfaces == []
        assert config.exporter.interval_s == 5.0
        assert config.server.listen_target() == f":{DEFAULT_PORT}"
        assert config.server.host == "0.0.0.0"
        assert not config.server.auth_enabled

    def test_custom_interfaces_and_port(self):
        """Interface list and port overrides are applied."""
        config = validate(apply_overrides(load_config(None), interfaces="wg0,wg1", port=8080))

        assert config.exporter.interfaces == ["wg0", "wg1"]
        assert config.server.listen_target() == ":8080"

    def test_custom_listen_address(self):
        """The listen address override shows up in the listen target."""
        config = validate(
            apply_overrides(load_config(None), port=8080, listen_address="127.0.0.1")
        )

        assert config.exporter.interfaces == []
        assert config.server.listen_target() == "127.0.0.1:8080"
        assert config.server.host == "127.0.0.1"

    def test_blank_interface_list_means_discover(self):
        """A blank interface list selects discovery."""
        config = apply_overrides(load_config(None), interfaces=" , ")

        assert config.exporter.interfaces == []


class TestLoadConfig:
    def test_reads_file(self, tmp_path):
        """Every key of both sections is read from the file."""
        path = tmp_path / "exporter.cfg"
        path.write_text(
            "[exporter]\n"
            "interfaces = wg0, wg2\n"
            "interval_s = 10\n"
            "stale_timeout_s = 0\n"
            "wg_path = /usr/bin/wg\n"
            "[server]\n"
            "listen_address = 10.0.0.1\n"
            "port = 9100\n"
            "auth_user = prom\n"
            "auth_pass = secret\n"
        )

        config = validate(load_config(path))

        assert config.exporter == ExporterConfig(
            interfaces=["wg0", "wg2"],
            interval_s=10.0,
            query_timeout_s=3.0,
            stale_timeout_s=0.0,
            wg_path="/usr/bin/wg",
        )
        assert config.server.listen_target() == "10.0.0.1:9100"
        assert config.server.auth_enabled

    def test_missing_sections_use_defaults(self, tmp_path):
        """Absent sections fall back to defaults."""
        path = tmp_path / "empty.cfg"
        path.write_text("")

        assert load_config(path) == AppConfig()

    def test_missing_file(self, tmp_path):
        """A path that does not exist raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.cfg")

    def test_bad_number(self, tmp_path):
        """A non-numeric value raises ConfigError."""
        path = tmp_path / "bad.cfg"
        path.write_text("[server]\nport = ninety\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_flags_override_file(self, tmp_path):
        """Command line values win over the file."""
        path = tmp_path / "exporter.cfg"
        path.write_text("[exporter]\ninterfaces = wg0\n[server]\nport = 9100\n")

        config = apply_overrides(load_config(path), interfaces="wg5", interval_s=2.5)

        assert config.exporter.interfaces == ["wg5"]
        assert config.exporter.interval_s == 2.5
        assert config.server.port == 9100


class TestValidate:
    @pytest.mark.parametrize(
        "config",
        [
            AppConfig(server=ServerConfig(port=0)),
            AppConfig(server=ServerConfig(port=70000)),
            AppConfig(exporter=ExporterConfig(interval_s=0)),
            AppConfig(exporter=ExporterConfig(query_timeout_s=-1)),
            AppConfig(exporter=ExporterConfig(stale_timeout_s=-5)),
            AppConfig(exporter=ExporterConfig(interfaces=["wg0/../etc"])),
            AppConfig(exporter=ExporterConfig(interfaces=["a-very-long-interface-name"])),
            AppConfig(exporter=ExporterConfig(interfaces=["wg0", "wg0"])),
            AppConfig(server=ServerConfig(auth_user="prom")),
            AppConfig(server=ServerConfig(auth_pass="secret")),
        ],
    )
    def test_rejects(self, config):
        """Each invalid setting raises ConfigError."""
        with pytest.raises(ConfigError):
            validate(config)

    def test_accepts_defaults(self):
        """The default configuration validates."""
        assert validate(AppConfig()) == AppConfig()
