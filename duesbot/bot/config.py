"""Telegram bot configuration from environment variables."""

import logging
from typing import Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class BotConfig(BaseSettings):
    """Bot configuration loaded from environment variables.

    Pydantic automatically loads values from:
    1. OS environment variables (at instantiation time)
    2. .env file (if env_file is set)

    Instantiate after the environment is loaded; the lazy loader below does.
    """

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields in .env file
    )

    telegram_bot_token: str
    telegram_bot_name: str = "duesbot"

    # Public URL Telegram posts updates to (webhook mode only)
    webhook_url: str = ""

    def validate(self) -> None:
        """Validate required configuration is present."""
        if not self.telegram_bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")


_bot_config_instance: Optional[BotConfig] = None


def get_bot_config() -> BotConfig:
    """Get or create bot config instance (lazy, after .env is loaded)."""
    global _bot_config_instance
    if _bot_config_instance is None:
        _bot_config_instance = BotConfig()
        _bot_config_instance.validate()
    return _bot_config_instance


class _BotConfigProxy:
    """Proxy to provide attribute access while lazy-loading the config."""

    def __getattr__(self, name: str):
        return getattr(get_bot_config(), name)


bot_config = _BotConfigProxy()

__all__ = ["BotConfig", "bot_config", "get_bot_config"]
