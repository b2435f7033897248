from __future__ import annotations

import logging
import sys
import time
from logging.handlers import TimedRotatingFileHandler

from tracker_engine.config import LoggingConfig

TRACE_LEVEL = 5
ROOT_LOGGER_NAME = "tracker_engine"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logging.addLevelName(TRACE_LEVEL, "TRACE")

_configured = False


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime


def _formatter(utc: bool) -> logging.Formatter:
    if utc:
        return _UTCFormatter(LOG_FORMAT)
    return logging.Formatter(LOG_FORMAT)


def _level_value(level: str) -> int:
    if level == "TRACE":
        return TRACE_LEVEL
    return int(logging.getLevelName(level))


def configure_logging(config: LoggingConfig, *, force: bool = False) -> logging.Logger:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured and not force:
        return root

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(_level_value(config.level))
    root.propagate = False
    formatter = _formatter(config.utc)

    if config.output in {"console", "both"}:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.output in {"file", "both"}:
        config.directory.mkdir(parents=True, exist_ok=True)
        path = config.directory / config.filename
        if config.daily_rotation:
            file_handler: logging.Handler = TimedRotatingFileHandler(
                path,
                when="midnight",
                backupCount=config.retention_days,
                encoding="utf-8",
                utc=config.utc,
            )
        else:
            file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured = True
    root.debug(
        "Logging configured level=%s output=%s directory=%s",
        config.level,
        config.output,
        config.directory,
    )
    return root


def get_logger(name: str) -> logging.Logger:
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
