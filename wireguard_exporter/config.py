from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
import configparser
import re

DEFAULT_PORT = 9011
DEFAULT_INTERVAL_S = 5.0
DEFAULT_QUERY_TIMEOUT_S = 3.0
DEFAULT_STALE_TIMEOUT_S = 300.0

# Linux limits interface names to IFNAMSIZ - 1 characters.
_INTERFACE_RE = re.compile(r"^[A-Za-z0-9_.=+-]{1,15}$")


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ExporterConfig:
    interfaces: list[str] = field(default_factory=list)
    interval_s: float = DEFAULT_INTERVAL_S
    query_timeout_s: float = DEFAULT_QUERY_TIMEOUT_S
    stale_timeout_s: float = DEFAULT_STALE_TIMEOUT_S
    wg_path: str = "wg"


@dataclass(frozen=True)
class ServerConfig:
    listen_address: str = ""
    port: int = DEFAULT_PORT
    auth_user: str | None = None
    auth_pass: str | None = None

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_user and self.auth_pass)

    @property
    def host(self) -> str:
        return self.listen_address or "0.0.0.0"

    def listen_target(self) -> str:
        """Return ``host:port``, or ``:port`` when listening on all addresses."""
        return f"{self.listen_address}:{self.port}"


@dataclass(frozen=True)
class AppConfig:
    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load settings from a CFG file; every key is optional."""
    if path is None:
        return AppConfig()
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        exporter = ExporterConfig(
            interfaces=_get_list(parser.get("exporter", "interfaces", fallback=None)),
            interval_s=parser.getfloat("exporter", "interval_s", fallback=DEFAULT_INTERVAL_S),
            query_timeout_s=parser.getfloat(
                "exporter", "query_timeout_s", fallback=DEFAULT_QUERY_TIMEOUT_S
            ),
            stale_timeout_s=parser.getfloat(
                "exporter", "stale_timeout_s", fallback=DEFAULT_STALE_TIMEOUT_S
            ),
            wg_path=parser.get("exporter", "wg_path", fallback="wg"),
        )
        server = ServerConfig(
            listen_address=parser.get("server", "listen_address", fallback="").strip(),
            port=parser.getint("server", "port", fallback=DEFAULT_PORT),
            auth_user=_get_optional(parser.get("server", "auth_user", fallback=None)),
            auth_pass=_get_optional(parser.get("server", "auth_pass", fallback=None)),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e

    return AppConfig(exporter=exporter, server=server)


def apply_overrides(
    config: AppConfig,
    *,
    interfaces: str | None = None,
    port: int | None = None,
    listen_address: str | None = None,
    auth_user: str | None = None,
    auth_pass: str | None = None,
    interval_s: float | None = None,
    query_timeout_s: float | None = None,
    stale_timeout_s: float | None = None,
    wg_path: str | None = None,
) -> AppConfig:
    """Return ``config`` with every non-None command line value applied."""
    exporter = config.exporter
    server = config.server
    if interfaces is not None:
        exporter = replace(exporter, interfaces=_get_list(interfaces))
    if interval_s is not None:
        exporter = replace(exporter, interval_s=interval_s)
    if query_timeout_s is not None:
        exporter = replace(exporter, query_timeout_s=query_timeout_s)
    if stale_timeout_s is not None:
        exporter = replace(exporter, stale_timeout_s=stale_timeout_s)
    if wg_path is not None:
        exporter = replace(exporter, wg_path=wg_path)
    if port is not None:
        server = replace(server, port=port)
    if listen_address is not None:
        server = replace(server, listen_address=listen_address.strip())
    if auth_user is not None:
        server = replace(server, auth_user=_get_optional(auth_user))
    if auth_pass is not None:
        server = replace(server, auth_pass=_get_optional(auth_pass))
    return AppConfig(exporter=exporter, server=server)


def validate(config: AppConfig) -> AppConfig:
    exporter = config.exporter
    server = config.server
    if not 0 < server.port <= 65535:
        raise ConfigError(f"port must be between 1 and 65535, got {server.port}")
    if exporter.interval_s <= 0:
        raise ConfigError(f"interval must be positive, got {exporter.interval_s}")
    if exporter.query_timeout_s <= 0:
        raise ConfigError(f"query timeout must be positive, got {exporter.query_timeout_s}")
    if exporter.stale_timeout_s < 0:
        raise ConfigError(f"stale timeout must not be negative, got {exporter.stale_timeout_s}")
    for name in exporter.interfaces:
        if not _INTERFACE_RE.match(name):
            raise ConfigError(f"invalid interface name: {name!r}")
    if len(set(exporter.interfaces)) != len(exporter.interfaces):
        raise ConfigError(f"duplicate interface in {','.join(exporter.interfaces)}")
    if bool(server.auth_user) != bool(server.auth_pass):
        raise ConfigError("basic auth needs both a user and a password")
    return config
