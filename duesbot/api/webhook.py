"""FastAPI webhook endpoint for Telegram updates."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from telegram import Update
from telegram.ext import Application

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Dues Bot",
    description="Recurring group dues - Telegram bot",
    version="0.1.0",
)

# Global bot application reference (set via setup_webhook_route or directly for testing)
_bot_app: Optional[Application] = None


async def setup_webhook_route(bot_app: Application) -> None:
    """Set up the bot application for webhook processing.

    Args:
        bot_app: Telegram bot Application instance
    """
    global _bot_app
    _bot_app = bot_app


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {"status": "ok"}


@app.post("/webhook/telegram")
async def telegram_webhook(update: dict) -> dict:
    """Receive Telegram updates and dispatch to bot handlers.

    Args:
        update: Telegram Update object (as JSON)

    Returns:
        {"ok": True} response as per Telegram webhook protocol
    """
    if not _bot_app:
        logger.error("Bot application not initialized")
        raise HTTPException(status_code=503, detail="Bot not initialized")

    try:
        telegram_update = Update.de_json(update, _bot_app.bot)
        if telegram_update:
            chat_id = telegram_update.effective_chat.id if telegram_update.effective_chat else None
            logger.debug(
                "webhook.telegram: update_id=%d chat_id=%s",
                telegram_update.update_id,
                chat_id,
            )
            await _bot_app.process_update(telegram_update)
        return {"ok": True}
    except Exception as e:
        logger.error("Error processing update: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e


__all__ = ["app", "setup_webhook_route"]
