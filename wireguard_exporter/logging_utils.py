from __future__ import annotations

import logging

from colorlog import ColoredFormatter

TRACE_LEVEL = 5
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


def configure_logging(level: int) -> None:
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)
    formatter = ColoredFormatter(
        "%(log_color)s" + LOG_FORMAT,
        log_colors={
            "TRACE": "cyan",
            "DEBUG": "blue",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler])
    # werkzeug logs one line per scrape; keep it out of INFO output
    logging.getLogger("werkzeug").setLevel(
        level if level <= logging.DEBUG else logging.WARNING
    )


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    name = fallback.upper()
    if name == "TRACE":
        return TRACE_LEVEL
    return logging._nameToLevel.get(name, logging.INFO)
