"""WireGuard Prometheus exporter."""

from wireguard_exporter.config import AppConfig, load_config
from wireguard_exporter.device import DeviceQuery
from wireguard_exporter.parser import parse
from wireguard_exporter.registry import MetricRegistry
from wireguard_exporter.scraper import Scraper

__all__ = [
    "AppConfig",
    "DeviceQuery",
    "MetricRegistry",
    "Scraper",
    "load_config",
    "parse",
]
