"""Main application entry point."""

import argparse
import asyncio
import logging
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker
from telegram.ext import Application

from duesbot.api.webhook import app, setup_webhook_route
from duesbot.bot import create_bot_app
from duesbot.bot.config import bot_config
from duesbot.bot.runtime import RUNTIME_KEY, DuesRuntime, build_runtime
from duesbot.services import create_db_engine, upgrade_db
from duesbot.services.config import DuesConfig, load_config
from duesbot.services.logging import setup_server_logging

logger = logging.getLogger(__name__)

# Global bot application instance
bot_app: Optional[Application] = None


async def run_enforcement_loop(
    runtime: DuesRuntime, interval_seconds: int, first_delay_seconds: int = 30
) -> None:
    """Run an enforcement tick every ``interval_seconds`` until cancelled.

    A failing tick is logged; the loop keeps its schedule.
    """
    scheduler = runtime.build_scheduler()
    logger.info(
        "Starting dues enforcement loop (every %ds, first tick in %ds)",
        interval_seconds,
        first_delay_seconds,
    )
    await asyncio.sleep(first_delay_seconds)
    while True:
        try:
            await scheduler.tick()
        except Exception as e:
            logger.error("Dues enforcement tick failed: %s", e, exc_info=True)
        await asyncio.sleep(interval_seconds)


async def initialize_bot(config: DuesConfig) -> Application:
    """Create the bot application and attach the dues runtime."""
    global bot_app
    logger.info("Initializing Telegram bot...")

    upgrade_db(config.database_url)
    engine = create_db_engine(config.database_url)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    bot_app = await create_bot_app()
    bot_app.bot_data[RUNTIME_KEY] = build_runtime(bot_app.bot, config, session_factory)

    logger.info("Bot initialized successfully")
    return bot_app


async def run_webhook_mode(config: DuesConfig, host: str = "0.0.0.0", port: int = 8000):
    """Run application in webhook mode (production)."""
    logger.info("Starting bot in webhook mode on %s:%d", host, port)
    application = await initialize_bot(config)
    await setup_webhook_route(application)

    await application.initialize()
    await application.start()

    webhook_url = bot_config.webhook_url.strip()
    if webhook_url:
        logger.info("Setting Telegram webhook to %s", webhook_url)
        try:
            await application.bot.set_webhook(url=webhook_url, drop_pending_updates=True)
            logger.info("Webhook registered successfully with Telegram")
        except Exception as e:
            logger.error("Failed to set webhook: %s", e, exc_info=True)
    else:
        logger.warning("WEBHOOK_URL not set in environment")

    enforcement = asyncio.create_task(
        run_enforcement_loop(
            application.bot_data[RUNTIME_KEY],
            config.tick_interval_seconds,
            config.first_tick_delay_seconds,
        )
    )

    logger.info("Starting Uvicorn server on %s:%d...", host, port)
    server = uvicorn.Server(uvicorn.Config(app=app, host=host, port=port, log_level="info"))
    try:
        await server.serve()
    finally:
        enforcement.cancel()
        await application.stop()
        await application.shutdown()
        logger.info("Bot Application shutdown complete")


async def run_polling_mode(config: DuesConfig):
    """Run application in polling mode (development)."""
    logger.info("Starting bot in polling mode...")
    application = await initialize_bot(config)

    await application.initialize()
    await application.start()
    await application.updater.start_polling(
        allowed_updates=None,  # Get all updates
        drop_pending_updates=False,
    )
    logger.info("Bot started (polling)")

    enforcement = asyncio.create_task(
        run_enforcement_loop(
            application.bot_data[RUNTIME_KEY],
            config.tick_interval_seconds,
            config.first_tick_delay_seconds,
        )
    )
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown requested")
    finally:
        enforcement.cancel()
        await application.updater.stop()
        await application.stop()
        await application.shutdown()
        logger.info("Bot stopped")


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Dues Bot")
    parser.add_argument(
        "--mode",
        choices=["webhook", "polling"],
        default=None,  # Auto-detect from WEBHOOK_URL
        help="Run mode (default: webhook if WEBHOOK_URL is set, else polling)",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    config = load_config()
    setup_server_logging(config)

    mode = args.mode or ("webhook" if bot_config.webhook_url.strip() else "polling")
    logger.info("Run mode: %s", mode)

    if mode == "webhook":
        asyncio.run(run_webhook_mode(config, args.host, args.port))
    else:
        asyncio.run(run_polling_mode(config))


if __name__ == "__main__":
    main()
