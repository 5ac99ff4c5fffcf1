"""Tests for the bot application factory and the enforcement loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.ext import CommandHandler

from duesbot import main
from duesbot.bot import config as bot_config_module
from duesbot.bot import create_bot_app
from duesbot.bot.runtime import RUNTIME_KEY


@pytest.fixture
def bot_token(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
    monkeypatch.setattr(bot_config_module, "_bot_config_instance", None)


@pytest.mark.unit
class TestCreateBotApp:
    @pytest.mark.asyncio
    async def test_registers_commands(self, bot_token):
        app = await create_bot_app()

        commands = {
            command
            for handler in app.handlers[0]
            if isinstance(handler, CommandHandler)
            for command in handler.commands
        }
        assert commands == {"start", "dues"}
        assert RUNTIME_KEY not in app.bot_data

    @pytest.mark.asyncio
    async def test_stores_runtime(self, bot_token):
        runtime = MagicMock()

        app = await create_bot_app(runtime)

        assert app.bot_data[RUNTIME_KEY] is runtime


@pytest.mark.unit
class TestEnforcementLoop:
    @pytest.mark.asyncio
    async def test_failed_tick_does_not_stop_loop(self, monkeypatch):
        scheduler = MagicMock()
        scheduler.tick = AsyncMock(side_effect=[RuntimeError("database is locked"), None])
        runtime = MagicMock()
        runtime.build_scheduler.return_value = scheduler
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])
        monkeypatch.setattr(main.asyncio, "sleep", sleep)

        with pytest.raises(asyncio.CancelledError):
            await main.run_enforcement_loop(runtime, interval_seconds=60, first_delay_seconds=5)

        assert scheduler.tick.await_count == 2
        assert [call.args[0] for call in sleep.await_args_list] == [5, 60, 60]
