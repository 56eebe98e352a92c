"""Normalize raw device snapshots into peer statistics."""
from __future__ import annotations

import base64

from wireguard_exporter.errors import ParseError
from wireguard_exporter.models import DeviceSnapshot, PeerStat, RawPeer

COUNTER_LIMIT = 2**64


def encode_key(key: bytes) -> str:
    """Return the canonical padded base64 form used as the ``public_key`` label."""
    return base64.b64encode(key).decode("ascii")


def format_endpoint(endpoint: tuple[str, int] | None) -> str | None:
    if endpoint is None:
        return None
    host, port = endpoint
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse(snapshot: DeviceSnapshot) -> list[PeerStat]:
    """Convert every peer of ``snapshot`` in order.

    Raises ParseError when a counter is outside the unsigned 64-bit range
    or the same key appears twice.
    """
    stats: list[PeerStat] = []
    seen: set[str] = set()
    for peer in snapshot.peers:
        stat = parse_peer(snapshot.interface, peer)
        if stat.public_key in seen:
            raise ParseError(snapshot.interface, f"duplicate peer {stat.public_key}")
        seen.add(stat.public_key)
        stats.append(stat)
    return stats


def parse_peer(interface: str, peer: RawPeer) -> PeerStat:
    for label, value in (("rx bytes", peer.rx_bytes), ("tx bytes", peer.tx_bytes)):
        if not 0 <= value < COUNTER_LIMIT:
            raise ParseError(interface, f"{label} out of range: {value}")

    handshake = None
    if peer.last_handshake is not None:
        handshake = int(peer.last_handshake.timestamp())
        if handshake <= 0:
            handshake = None

    return PeerStat(
        interface=interface,
        public_key=encode_key(peer.public_key),
        endpoint=format_endpoint(peer.endpoint),
        allowed_ips=tuple(str(network) for network in sorted(peer.allowed_ips, key=_network_order)),
        last_handshake_s=handshake,
        rx_bytes=peer.rx_bytes,
        tx_bytes=peer.tx_bytes,
        persistent_keepalive_s=peer.persistent_keepalive or None,
    )


def _network_order(network) -> tuple[int, int, int]:
    return (network.version, int(network.network_address), network.prefixlen)
