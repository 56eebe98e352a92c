from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from ipaddress import IPv4Network, IPv6Network, ip_network
import logging
import subprocess

from wireguard_exporter.errors import (
    InterfaceNotFound,
    ParseError,
    PermissionDenied,
    QueryFailed,
)
from wireguard_exporter.logging_utils import TRACE_LEVEL
from wireguard_exporter.models import DeviceSnapshot, RawPeer

# Interface label used for errors raised while enumerating devices.
ALL_INTERFACES = "*"
KEY_LENGTH = 32
PEER_FIELDS = 8
INTERFACE_FIELDS = 4

_NOT_FOUND_MARKERS = ("no such device", "does not exist")
_PERMISSION_MARKERS = ("operation not permitted", "permission denied")


class DeviceQuery:
    """Reads live WireGuard device state through the ``wg`` tool.

    Every call runs the tool again; nothing is cached between calls and
    failures are raised to the caller without retrying.
    """

    def __init__(
        self,
        interfaces: list[str] | None = None,
        wg_path: str = "wg",
        timeout_s: float = 3.0,
    ) -> None:
        self.interfaces = list(interfaces or [])
        self.wg_path = wg_path
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def discovers(self) -> bool:
        """True when interfaces are enumerated on every call instead of configured."""
        return not self.interfaces

    def list_interfaces(self) -> list[str]:
        """Return the configured interfaces, or every live device if none were given."""
        if self.interfaces:
            return list(self.interfaces)
        output = self._run_wg(ALL_INTERFACES, ["show", "interfaces"])
        names = sorted(set(output.split()))
        self.logger.debug("Discovered WireGuard interfaces: %s", names)
        return names

    def query_device(self, name: str) -> DeviceSnapshot:
        output = self._run_wg(name, ["show", name, "dump"])
        lines = [line for line in output.splitlines() if line.strip()]
        if not lines:
            raise ParseError(name, "empty dump output")

        public_key, listen_port = self._parse_interface_line(name, lines[0])
        peers = tuple(self._parse_peer_line(name, line) for line in lines[1:])
        self.logger.debug("Queried %s: %s peers", name, len(peers))
        return DeviceSnapshot(
            interface=name,
            peers=peers,
            public_key=public_key,
            listen_port=listen_port,
        )

    def _run_wg(self, interface: str, args: list[str]) -> str:
        command = [self.wg_path, *args]
        try:
            result = subprocess.run(
                command,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout_s,
            )
        except FileNotFoundError:
            raise QueryFailed(interface, f"command not found: {self.wg_path}") from None
        except subprocess.TimeoutExpired:
            raise QueryFailed(
                interface, f"timed out after {self.timeout_s}s: {' '.join(command)}"
            ) from None
        except OSError as e:
            raise QueryFailed(interface, f"failed to run {self.wg_path}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self.logger.log(TRACE_LEVEL, "stderr: %s", stderr)
            lowered = stderr.lower()
            if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
                raise InterfaceNotFound(interface, stderr or "no such device")
            if any(marker in lowered for marker in _PERMISSION_MARKERS):
                raise PermissionDenied(interface, stderr or "permission denied")
            raise QueryFailed(
                interface,
                f"{' '.join(command)} exited with {result.returncode}: {stderr}",
            )
        # dump output contains the private key, so only its size is traced
        self.logger.log(
            TRACE_LEVEL, "%s returned %s lines", " ".join(command), len(result.stdout.splitlines())
        )
        return result.stdout

    def _parse_interface_line(self, name: str, line: str) -> tuple[bytes | None, int | None]:
        parts = line.split("\t")
        if len(parts) != INTERFACE_FIELDS:
            raise ParseError(name, f"expected {INTERFACE_FIELDS} interface fields, got {len(parts)}")
        public_key = None if parts[1] == "(none)" else _decode_key(name, parts[1])
        listen_port = _parse_int(name, "listen port", parts[2]) if parts[2] not in ("", "0") else None
        return public_key, listen_port

    def _parse_peer_line(self, name: str, line: str) -> RawPeer:
        parts = line.split("\t")
        if len(parts) != PEER_FIELDS:
            raise ParseError(name, f"expected {PEER_FIELDS} peer fields, got {len(parts)}")
        public_key, _preshared, endpoint, allowed_ips, handshake, rx, tx, keepalive = parts

        handshake_s = _parse_int(name, "latest handshake", handshake)
        last_handshake = (
            datetime.fromtimestamp(handshake_s, tz=timezone.utc) if handshake_s > 0 else None
        )
        return RawPeer(
            public_key=_decode_key(name, public_key),
            endpoint=_parse_endpoint(name, endpoint),
            allowed_ips=_parse_allowed_ips(name, allowed_ips),
            last_handshake=last_handshake,
            rx_bytes=_parse_int(name, "transfer rx", rx),
            tx_bytes=_parse_int(name, "transfer tx", tx),
            persistent_keepalive=None if keepalive == "off" else _parse_int(name, "keepalive", keepalive),
        )


def _decode_key(name: str, value: str) -> bytes:
    try:
        key = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ParseError(name, f"invalid base64 key: {value!r}") from None
    if len(key) != KEY_LENGTH:
        raise ParseError(name, f"key has {len(key)} bytes, expected {KEY_LENGTH}")
    return key


def _parse_int(name: str, field_name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ParseError(name, f"invalid {field_name}: {value!r}") from None


def _parse_endpoint(name: str, value: str) -> tuple[str, int] | None:
    if value == "(none)" or not value:
        return None
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ParseError(name, f"invalid endpoint: {value!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port_number = _parse_int(name, "endpoint port", port)
    if not 0 <= port_number <= 65535:
        raise ParseError(name, f"endpoint port out of range: {value!r}")
    return host, port_number


def _parse_allowed_ips(name: str, value: str) -> frozenset[IPv4Network | IPv6Network]:
    if value == "(none)" or not value:
        return frozenset()
    try:
        return frozenset(ip_network(item.strip(), strict=False) for item in value.split(","))
    except ValueError:
        raise ParseError(name, f"invalid allowed ips: {value!r}") from None
