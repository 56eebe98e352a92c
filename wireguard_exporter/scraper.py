from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from wireguard_exporter.device import ALL_INTERFACES, DeviceQuery
from wireguard_exporter.errors import InterfaceNotFound, QueryFailed, WireGuardError
from wireguard_exporter.parser import encode_key, parse
from wireguard_exporter.registry import MetricRegistry


class Scraper:
    """Polls every interface on a fixed interval and folds the results into the registry.

    This is the only writer of the registry. A failure on one interface is
    logged and leaves that interface's published series untouched; the
    remaining interfaces are still polled.
    """

    def __init__(
        self,
        device: DeviceQuery,
        registry: MetricRegistry,
        interval_s: float = 5.0,
        stale_timeout_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.device = device
        self.registry = registry
        self.interval_s = interval_s
        self.stale_timeout_s = stale_timeout_s
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def poll_once(self) -> dict[str, bool]:
        """Poll each interface once; returns whether each one was updated."""
        try:
            interfaces = self.device.list_interfaces()
        except WireGuardError as e:
            self.logger.error("Failed to list WireGuard interfaces: %s", e)
            self.registry.mark_failure(e.interface, e)
            interfaces = []
        else:
            if self.device.discovers:
                self.registry.mark_success(ALL_INTERFACES)
            self._mark_unlisted(interfaces)

        results: dict[str, bool] = {}
        for name in interfaces:
            results[name] = self._poll_interface(name)

        self._evict_stale()
        return results

    def _poll_interface(self, name: str) -> bool:
        handle = None
        try:
            snapshot = self.device.query_device(name)
            peers = parse(snapshot)
            handle = self.registry.begin_cycle(
                name,
                public_key=encode_key(snapshot.public_key) if snapshot.public_key else None,
                listen_port=snapshot.listen_port,
            )
            for peer in peers:
                self.registry.observe(handle, peer)
            self.registry.end_cycle(handle)
            return True
        except WireGuardError as e:
            self._record_failure(name, e)
        except Exception as e:
            self.logger.exception("Unexpected error while polling %s", name)
            self._record_failure(name, QueryFailed(name, str(e)))
        finally:
            if handle is not None:
                self.registry.abort_cycle(handle)
        return False

    def _mark_unlisted(self, listed: list[str]) -> None:
        # Series of unlisted interfaces are left for the staleness timeout.
        for name in self.registry.interfaces():
            if name == ALL_INTERFACES or name in listed:
                continue
            self._record_failure(name, InterfaceNotFound(name, "no longer listed"))

    def _record_failure(self, name: str, error: WireGuardError) -> None:
        self.logger.warning("Skipping %s this tick (%s): %s", name, error.kind, error.message)
        self.registry.mark_failure(name, error)

    def _evict_stale(self) -> None:
        if self.stale_timeout_s <= 0:
            return
        now = self._clock()
        for name in self.registry.interfaces():
            if name == ALL_INTERFACES:
                continue
            last_success = self.registry.last_success(name)
            if last_success is not None and now - last_success > self.stale_timeout_s:
                if self.registry.drop_interface(name):
                    self.logger.warning(
                        "No successful poll of %s for %.0fs, dropped its peer series",
                        name,
                        now - last_success,
                    )

    def run(self) -> None:
        self.logger.info("Polling WireGuard interfaces every %s seconds.", self.interval_s)
        while not self._stop.is_set():
            started = time.monotonic()
            self.poll_once()
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, self.interval_s - elapsed))
        self.logger.info("Scraper stopped.")

    def start(self) -> threading.Thread:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="wireguard-scraper", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
