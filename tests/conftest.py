"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import base64
from datetime import datetime, timezone
from ipaddress import ip_network

from prometheus_client.parser import text_string_to_metric_families

from wireguard_exporter.models import DeviceSnapshot, RawPeer


KEY_A = "HYf+yNzgj3uhARFlNy3Pawuk/yLC+WYoY2qwjjlSxxI="
KEY_B = "x" * 42 + "Q="
KEY_C = "3" * 42 + "g="
KEY_ZERO = "A" * 43 + "="
PRIVATE_KEY = "y" * 42 + "E="

HANDSHAKE_T0 = 1700000000

WG0_DUMP = (
    f"{PRIVATE_KEY}\t{KEY_C}\t51820\toff\n"
    f"{KEY_A}\t(none)\t203.0.113.5:51820\t10.0.0.2/32,fd00::2/128\t{HANDSHAKE_T0}\t100\t50\t25\n"
    f"{KEY_B}\t(none)\t(none)\t10.0.0.3/32\t0\t0\t0\toff\n"
)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "concurrency: mark test as exercising reader/writer threads"
    )


def make_peer(
    key: str,
    rx: int = 0,
    tx: int = 0,
    handshake: int | None = None,
    endpoint: tuple[str, int] | None = None,
    allowed_ips: tuple[str, ...] = (),
    keepalive: int | None = None,
) -> RawPeer:
    """Build a RawPeer from a base64 key and plain values."""
    return RawPeer(
        public_key=base64.b64decode(key),
        endpoint=endpoint,
        allowed_ips=frozenset(ip_network(ip) for ip in allowed_ips),
        last_handshake=(
            datetime.fromtimestamp(handshake, tz=timezone.utc) if handshake else None
        ),
        rx_bytes=rx,
        tx_bytes=tx,
        persistent_keepalive=keepalive,
    )


def make_snapshot(
    interface: str,
    *peers: RawPeer,
    public_key: str | None = None,
    listen_port: int | None = None,
) -> DeviceSnapshot:
    """Build a DeviceSnapshot holding ``peers`` in order."""
    return DeviceSnapshot(
        interface=interface,
        peers=tuple(peers),
        public_key=base64.b64decode(public_key) if public_key else None,
        listen_port=listen_port,
    )


def rendered_samples(output: bytes) -> dict[tuple[str, tuple[tuple[str, str], ...]], float]:
    """Parse exposition text into {(sample name, sorted labels): value}."""
    samples = {}
    for family in text_string_to_metric_families(output.decode("utf-8")):
        for sample in family.samples:
            samples[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
    return samples


def rendered_peers(output: bytes, interface: str | None = None) -> set[tuple[str, str]]:
    """Return the (interface, public_key) pairs carrying a peer info series."""
    peers = set()
    for (name, labels), _value in rendered_samples(output).items():
        if name != "wireguard_peer_info":
            continue
        label_map = dict(labels)
        if interface is None or label_map["interface"] == interface:
            peers.add((label_map["interface"], label_map["public_key"]))
    return peers
