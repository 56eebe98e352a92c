from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import IPv4Network, IPv6Network


@dataclass(frozen=True)
class RawPeer:
    public_key: bytes
    endpoint: tuple[str, int] | None
    allowed_ips: frozenset[IPv4Network | IPv6Network]
    last_handshake: datetime | None
    rx_bytes: int
    tx_bytes: int
    persistent_keepalive: int | None = None


@dataclass(frozen=True)
class DeviceSnapshot:
    interface: str
    peers: tuple[RawPeer, ...]
    public_key: bytes | None = None
    listen_port: int | None = None


@dataclass(frozen=True)
class PeerStat:
    interface: str
    public_key: str
    endpoint: str | None
    allowed_ips: tuple[str, ...] = field(default_factory=tuple)
    # None means the peer has never completed a handshake.
    last_handshake_s: int | None = None
    rx_bytes: int = 0
    tx_bytes: int = 0
    persistent_keepalive_s: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.interface, self.public_key)
