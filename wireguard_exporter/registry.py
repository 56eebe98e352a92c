from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import threading
import time
from types import MappingProxyType
from typing import Callable, Iterator, Mapping

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from wireguard_exporter.errors import RegistryError, WireGuardError
from wireguard_exporter.logging_utils import TRACE_LEVEL
from wireguard_exporter.models import PeerStat

PEER_LABELS = ["interface", "public_key"]


@dataclass(frozen=True)
class MetricSeries:
    """Last published values for one (interface, public_key) pair."""

    endpoint: str
    allowed_ips: str
    last_handshake_s: int | None
    rx_bytes: int
    tx_bytes: int
    persistent_keepalive_s: int | None = None


@dataclass(frozen=True)
class InterfaceStatus:
    up: bool = False
    last_success: float | None = None
    # Device identity from the last published cycle.
    public_key: str | None = None
    listen_port: int | None = None
    errors: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))


@dataclass
class CycleHandle:
    """Staging area for one interface's poll result.

    Nothing observed through a handle is visible to readers until
    ``MetricRegistry.end_cycle`` publishes it.
    """

    interface: str
    started_at: float
    public_key: str | None = None
    listen_port: int | None = None
    staged: dict[str, MetricSeries] = field(default_factory=dict)
    closed: bool = False


class MetricRegistry:
    """Process-wide WireGuard peer metrics with per-interface atomic publication.

    A single writer (the poll loop) stages observations in a ``CycleHandle``;
    ``end_cycle`` swaps the interface's whole series map in one step under a
    short lock. Readers copy the outer map under the same lock and build the
    exposition outside of it, so a render never waits on a device query.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._clock = clock
        self._lock = threading.Lock()
        self._series: dict[str, Mapping[str, MetricSeries]] = {}
        self._status: dict[str, InterfaceStatus] = {}
        self._registry = CollectorRegistry(auto_describe=False)
        self._registry.register(self)

    @property
    def collector_registry(self) -> CollectorRegistry:
        return self._registry

    def begin_cycle(
        self,
        interface: str,
        public_key: str | None = None,
        listen_port: int | None = None,
    ) -> CycleHandle:
        self.logger.log(TRACE_LEVEL, "Begin cycle for %s", interface)
        return CycleHandle(
            interface=interface,
            started_at=self._clock(),
            public_key=public_key,
            listen_port=listen_port,
        )

    def observe(self, handle: CycleHandle, peer: PeerStat) -> None:
        if handle.closed:
            raise RegistryError(f"cycle for {handle.interface} is already closed")
        if peer.interface != handle.interface:
            raise RegistryError(
                f"peer from {peer.interface} observed in cycle for {handle.interface}"
            )
        with self._lock:
            previous = self._series.get(handle.interface, {}).get(peer.public_key)
        if previous is not None:
            for label, old, new in (
                ("rx", previous.rx_bytes, peer.rx_bytes),
                ("tx", previous.tx_bytes, peer.tx_bytes),
            ):
                if new < old:
                    self.logger.warning(
                        "%s counter for %s on %s went backwards (%s -> %s), publishing as reported",
                        label,
                        peer.public_key,
                        handle.interface,
                        old,
                        new,
                    )
        if peer.public_key in handle.staged:
            self.logger.debug(
                "Peer %s observed twice on %s, keeping latest", peer.public_key, handle.interface
            )
        handle.staged[peer.public_key] = MetricSeries(
            endpoint=peer.endpoint or "",
            allowed_ips=",".join(peer.allowed_ips),
            last_handshake_s=peer.last_handshake_s,
            rx_bytes=peer.rx_bytes,
            tx_bytes=peer.tx_bytes,
            persistent_keepalive_s=peer.persistent_keepalive_s,
        )

    def end_cycle(self, handle: CycleHandle) -> None:
        """Publish the staged series, evicting peers not observed in this cycle."""
        if handle.closed:
            raise RegistryError(f"cycle for {handle.interface} is already closed")
        handle.closed = True
        published = MappingProxyType(dict(handle.staged))
        now = self._clock()
        with self._lock:
            previous = self._series.get(handle.interface, {})
            self._series[handle.interface] = published
            status = self._status.get(handle.interface, InterfaceStatus())
            self._status[handle.interface] = replace(
                status,
                up=True,
                last_success=now,
                public_key=handle.public_key,
                listen_port=handle.listen_port,
            )
        evicted = set(previous) - set(published)
        if evicted:
            self.logger.info(
                "Evicted %s stale peer(s) from %s", len(evicted), handle.interface
            )
        self.logger.debug(
            "Published %s peer(s) for %s", len(published), handle.interface
        )

    def abort_cycle(self, handle: CycleHandle) -> None:
        """Discard a cycle without touching what is already published."""
        if handle.closed:
            return
        handle.closed = True
        handle.staged.clear()
        self.logger.debug("Aborted cycle for %s", handle.interface)

    def mark_success(self, interface: str) -> None:
        """Record a successful query of ``interface`` that publishes no peers."""
        now = self._clock()
        with self._lock:
            status = self._status.get(interface, InterfaceStatus())
            self._status[interface] = replace(status, up=True, last_success=now)

    def mark_failure(self, interface: str, error: WireGuardError) -> None:
        with self._lock:
            status = self._status.get(interface, InterfaceStatus())
            errors = dict(status.errors)
            errors[error.kind] = errors.get(error.kind, 0) + 1
            self._status[interface] = replace(
                status, up=False, errors=MappingProxyType(errors)
            )

    def drop_interface(self, interface: str) -> int:
        """Remove every peer series of ``interface``; returns how many were removed."""
        with self._lock:
            removed = self._series.pop(interface, {})
        if removed:
            self.logger.info("Dropped %s series for %s", len(removed), interface)
        return len(removed)

    def last_success(self, interface: str) -> float | None:
        with self._lock:
            status = self._status.get(interface)
        return status.last_success if status else None

    def interfaces(self) -> list[str]:
        with self._lock:
            return sorted(set(self._series) | set(self._status))

    def series(self) -> set[tuple[str, str]]:
        with self._lock:
            snapshot = dict(self._series)
        return {(iface, key) for iface, peers in snapshot.items() for key in peers}

    def render(self) -> bytes:
        """Return the text exposition of the current state."""
        return generate_latest(self._registry)

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            series = dict(self._series)
            status = dict(self._status)

        handshake = GaugeMetricFamily(
            "wireguard_peer_last_handshake_seconds",
            "Unix time of the last handshake with the peer",
            labels=PEER_LABELS,
        )
        received = CounterMetricFamily(
            "wireguard_peer_receive_bytes",
            "Bytes received from the peer as reported by the device",
            labels=PEER_LABELS,
        )
        transmitted = CounterMetricFamily(
            "wireguard_peer_transmit_bytes",
            "Bytes sent to the peer as reported by the device",
            labels=PEER_LABELS,
        )
        info = GaugeMetricFamily(
            "wireguard_peer_info",
            "Peer present in the last completed poll of its interface",
            labels=PEER_LABELS + ["endpoint", "allowed_ips"],
        )
        keepalive = GaugeMetricFamily(
            "wireguard_peer_persistent_keepalive_seconds",
            "Configured persistent keepalive interval of the peer",
            labels=PEER_LABELS,
        )
        for interface in sorted(series):
            peers = series[interface]
            for public_key in sorted(peers):
                entry = peers[public_key]
                labels = [interface, public_key]
                if entry.last_handshake_s is not None:
                    handshake.add_metric(labels, entry.last_handshake_s)
                received.add_metric(labels, entry.rx_bytes)
                transmitted.add_metric(labels, entry.tx_bytes)
                info.add_metric(labels + [entry.endpoint, entry.allowed_ips], 1)
                if entry.persistent_keepalive_s is not None:
                    keepalive.add_metric(labels, entry.persistent_keepalive_s)
        yield handshake
        yield received
        yield transmitted
        yield info
        yield keepalive

        up = GaugeMetricFamily(
            "wireguard_interface_up",
            "Whether the last query of the interface succeeded",
            labels=["interface"],
        )
        last_success = GaugeMetricFamily(
            "wireguard_interface_last_success_timestamp_seconds",
            "Unix time of the last successful poll of the interface",
            labels=["interface"],
        )
        errors = CounterMetricFamily(
            "wireguard_interface_query_errors",
            "Failed queries of the interface by error kind",
            labels=["interface", "error"],
        )
        device_info = GaugeMetricFamily(
            "wireguard_interface_info",
            "Public key and listen port of the interface from its last completed poll",
            labels=["interface", "public_key", "listen_port"],
        )
        for interface in sorted(status):
            state = status[interface]
            up.add_metric([interface], 1 if state.up else 0)
            if state.last_success is not None:
                last_success.add_metric([interface], state.last_success)
            for kind in sorted(state.errors):
                errors.add_metric([interface, kind], state.errors[kind])
            if state.public_key is not None or state.listen_port is not None:
                device_info.add_metric(
                    [
                        interface,
                        state.public_key or "",
                        "" if state.listen_port is None else str(state.listen_port),
                    ],
                    1,
                )
        yield up
        yield last_success
        yield errors
        yield device_info
