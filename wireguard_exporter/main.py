from __future__ import annotations

import argparse
import logging
import sys

from wireguard_exporter.config import (
    DEFAULT_PORT,
    ConfigError,
    apply_overrides,
    load_config,
    validate,
)
from wireguard_exporter.device import DeviceQuery
from wireguard_exporter.logging_utils import configure_logging, resolve_log_level
from wireguard_exporter.registry import MetricRegistry
from wireguard_exporter.scraper import Scraper
from wireguard_exporter.server import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WireGuard Prometheus exporter")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CFG configuration file (command line flags take precedence)",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help=f"The port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "-l",
        "--listen-address",
        default=None,
        help="The address to listen on (default: all interfaces)",
    )
    parser.add_argument(
        "-i",
        "--interfaces",
        default=None,
        help="Comma-separated list of interfaces (default: every WireGuard device)",
    )
    parser.add_argument("--auth-user", default=None, help="Basic auth username (optional)")
    parser.add_argument("--auth-pass", default=None, help="Basic auth password (optional)")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls of the WireGuard devices",
    )
    parser.add_argument(
        "--query-timeout",
        type=float,
        default=None,
        help="Seconds to wait for a single device query",
    )
    parser.add_argument(
        "--stale-timeout",
        type=float,
        default=None,
        help="Drop an interface's peer series after this many seconds without "
             "a successful poll (0 keeps them forever)",
    )
    parser.add_argument("--wg-path", default=None, help="Path to the wg tool")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll once, print the metrics to stdout and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    logger = logging.getLogger("wireguard_exporter")

    try:
        config = validate(
            apply_overrides(
                load_config(args.config),
                interfaces=args.interfaces,
                port=args.port,
                listen_address=args.listen_address,
                auth_user=args.auth_user,
                auth_pass=args.auth_pass,
                interval_s=args.interval,
                query_timeout_s=args.query_timeout,
                stale_timeout_s=args.stale_timeout,
                wg_path=args.wg_path,
            )
        )
    except (ConfigError, FileNotFoundError) as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    exporter = config.exporter
    registry = MetricRegistry()
    device = DeviceQuery(
        interfaces=exporter.interfaces,
        wg_path=exporter.wg_path,
        timeout_s=exporter.query_timeout_s,
    )
    scraper = Scraper(
        device,
        registry,
        interval_s=exporter.interval_s,
        stale_timeout_s=exporter.stale_timeout_s,
    )

    if args.once:
        logger.info("Single-run mode enabled; exiting after one poll.")
        scraper.poll_once()
        sys.stdout.write(registry.render().decode("utf-8"))
        return 0

    if exporter.interfaces:
        logger.info("Monitoring interfaces: %s", ", ".join(exporter.interfaces))
    else:
        logger.info("No interfaces configured; monitoring every WireGuard device.")

    scraper.start()
    app = create_app(registry, config.server)
    logger.info("Starting Wireguard exporter on %s", config.server.listen_target())
    try:
        app.run(
            host=config.server.host,
            port=config.server.port,
            debug=False,
            use_reloader=False,
            threaded=True,
        )
    except KeyboardInterrupt:
        logger.debug("Interrupted, shutting down")
    finally:
        scraper.stop(timeout=exporter.query_timeout_s + 1)
        logger.info("Wireguard exporter stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
