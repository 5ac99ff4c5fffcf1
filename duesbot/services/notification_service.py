"""Notification service for sending Telegram messages."""

import logging

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class NotificationService:
    """Telegram notification sink for reminders, notices and group announcements."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(
        self, chat_id: str, text: str, reply_markup=None, parse_mode="HTML"
    ) -> None:
        """Send message to a Telegram chat.

        Args:
            chat_id: Telegram chat ID (user for private notices, group for announcements)
            text: Message text
            reply_markup: Optional telegram reply_markup
            parse_mode: Message parse mode (HTML or Markdown). Default: HTML.
        """
        await self.bot.send_message(
            chat_id=int(chat_id), text=text, reply_markup=reply_markup, parse_mode=parse_mode
        )

    async def notify(self, destination: str, text: str) -> None:
        """Fire-and-forget delivery; failures are logged and swallowed.

        Members who never opened a private chat with the bot cannot be
        messaged, which must not interrupt enforcement.
        """
        try:
            await self.send_message(destination, text)
        except (TelegramError, ValueError) as e:
            logger.warning("Could not notify %s: %s", destination, e)
        except Exception as e:
            logger.error("Unexpected error notifying %s: %s", destination, e, exc_info=True)


__all__ = ["NotificationService"]
