"""Telegram bot application factory."""

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from duesbot.bot.config import bot_config
from duesbot.bot.handlers import handle_dues_command, help_text
from duesbot.bot.runtime import RUNTIME_KEY, DuesRuntime


async def handle_start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: private chats get the command overview."""
    if not update.message:
        return
    await update.message.reply_text(help_text(), parse_mode="HTML")


async def create_bot_app(runtime: DuesRuntime | None = None) -> Application:
    """Create the Telegram bot application and register the dues handlers.

    Args:
        runtime: Shared dues runtime; when omitted the caller must store one in
            ``app.bot_data[RUNTIME_KEY]`` before updates are processed.
    """
    app = Application.builder().token(bot_config.telegram_bot_token).build()

    if runtime is not None:
        app.bot_data[RUNTIME_KEY] = runtime

    app.add_handler(CommandHandler("start", handle_start_command))
    app.add_handler(CommandHandler("dues", handle_dues_command))

    return app


__all__ = ["create_bot_app", "handle_start_command"]
