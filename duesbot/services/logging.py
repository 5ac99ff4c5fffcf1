"""Logging setup for the bot, webhook server and enforcement loop.

Everything goes to stdout and, when ``DuesConfig.log_file`` is set, to that
file as well. ``LOG_LEVEL`` sets the root level. The enforcement loop logs one
line per reminder, collection and eviction, so it has its own level
(``DUES_ENFORCEMENT_LOG_LEVEL``) that can be raised on busy deployments
without hiding the rest of the service.
"""

import logging
import sys
from pathlib import Path

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENFORCEMENT_LOGGER = "duesbot.services.enforcement_service"

# Per-request HTTP logging from the Telegram client and the webhook server
_QUIET_LOGGERS = ("httpx", "telegram.ext.Updater", "uvicorn.access")

_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(name: str) -> int:
    """Resolve a level name such as ``"warning"``.

    Raises:
        ValueError: If the name is not a standard logging level
    """
    normalized = (name or "").strip().upper()
    if normalized not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {name!r}, expected one of {', '.join(LOG_LEVELS)}")
    return logging.getLevelName(normalized)


def setup_server_logging(config) -> list[logging.Handler]:
    """Install the root handlers described by ``config``.

    Replaces any handlers already on the root logger, so calling it twice does
    not duplicate output. Returns the installed handlers.
    """
    level = parse_level(config.log_level)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    enforcement_level = config.enforcement_log_level or config.log_level
    logging.getLogger(ENFORCEMENT_LOGGER).setLevel(parse_level(enforcement_level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handlers


__all__ = ["setup_server_logging", "parse_level", "ENFORCEMENT_LOGGER", "LOG_LEVELS"]
