"""Runtime configuration for the dues enforcement service.

Loads settings from .env file and environment variables with sensible defaults.
Validates values and provides clear error messages.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from duesbot.services.clock import get_timezone
from duesbot.services.logging import parse_level

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class DuesConfig:
    """Configuration for the dues service and its enforcement loop."""

    database_url: str = "sqlite:///./duesbot.db"
    """SQLAlchemy database URL (default: local SQLite)"""

    log_file: str = "logs/server.log"
    """Path to log file (default: logs/server.log, empty for stdout only)"""

    log_level: str = "INFO"
    """Root log level name"""

    enforcement_log_level: str | None = None
    """Log level of the enforcement loop (default: same as log_level)"""

    tick_interval_seconds: int = 6 * 60 * 60
    """Seconds between enforcement ticks (default: 6 hours)"""

    first_tick_delay_seconds: int = 30
    """Delay before the first tick after startup"""

    timezone: str = "UTC"
    """IANA timezone used for billing-day arithmetic"""

    currency_symbol: str = "₦"
    """Symbol shown in rendered amounts"""

    batch_mode: bool = False
    """Queue collections/evictions per group and flush them together"""

    @property
    def tzinfo(self):
        return get_timezone(self.timezone)


def _int_env(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_config() -> DuesConfig:
    """
    Load configuration from .env file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (DATABASE_URL, DUES_TICK_INTERVAL_SECONDS, etc.)
    2. .env file in project root
    3. Default values

    Returns:
        DuesConfig with all settings

    Raises:
        ValueError: If a value is invalid (non-numeric interval, unknown timezone
            or log level)
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    config = DuesConfig(
        database_url=os.getenv("DATABASE_URL", DuesConfig.database_url),
        log_file=os.getenv("LOG_FILE", DuesConfig.log_file),
        log_level=os.getenv("LOG_LEVEL", DuesConfig.log_level),
        enforcement_log_level=os.getenv("DUES_ENFORCEMENT_LOG_LEVEL") or None,
        tick_interval_seconds=_int_env(
            "DUES_TICK_INTERVAL_SECONDS", DuesConfig.tick_interval_seconds, minimum=1
        ),
        first_tick_delay_seconds=_int_env(
            "DUES_FIRST_TICK_DELAY_SECONDS", DuesConfig.first_tick_delay_seconds, minimum=0
        ),
        timezone=os.getenv("DUES_TIMEZONE", DuesConfig.timezone),
        currency_symbol=os.getenv("DUES_CURRENCY_SYMBOL", DuesConfig.currency_symbol),
        batch_mode=os.getenv("DUES_BATCH_MODE", "false").strip().lower() in _TRUE_VALUES,
    )

    # Fail fast on an unknown timezone or log level
    get_timezone(config.timezone)
    parse_level(config.log_level)
    if config.enforcement_log_level:
        parse_level(config.enforcement_log_level)

    return config


__all__ = ["DuesConfig", "load_config"]
