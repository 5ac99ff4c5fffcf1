"""Tests for webhook endpoint - Telegram update processing."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from telegram import Bot
from telegram.ext import Application

from duesbot.api import webhook
from duesbot.api.webhook import app, setup_webhook_route


@pytest.fixture
def client(monkeypatch):
    """Test client with no bot application registered."""
    monkeypatch.setattr(webhook, "_bot_app", None)
    return TestClient(app)


@pytest.fixture
def mock_bot_app():
    """Create a mock Telegram bot application."""
    mock_app = MagicMock(spec=Application)
    mock_app.bot = MagicMock(spec=Bot)
    mock_app.process_update = AsyncMock()
    return mock_app


UPDATE = {
    "update_id": 1,
    "message": {
        "message_id": 1,
        "date": 1234567890,
        "chat": {"id": -100, "type": "supergroup", "title": "Test Group"},
        "from": {"id": 123, "is_bot": False, "first_name": "Test"},
        "text": "/dues status",
    },
}


class TestWebhookHealthCheck:
    """Tests for health check endpoint."""

    def test_health_check_returns_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestWebhookTelegramEndpoint:
    """Tests for Telegram webhook endpoint."""

    def test_bot_not_initialized(self, client):
        """Webhook returns 503 until a bot application is registered."""
        response = client.post("/webhook/telegram", json={"update_id": 1})

        assert response.status_code == 503
        assert "Bot not initialized" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_setup_webhook_route_registers_app(self, client, mock_bot_app):
        await setup_webhook_route(mock_bot_app)

        response = client.post("/webhook/telegram", json=UPDATE)

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        mock_bot_app.process_update.assert_awaited_once()
        update = mock_bot_app.process_update.call_args.args[0]
        assert update.effective_chat.id == -100
        assert update.message.text == "/dues status"

    def test_update_without_message(self, client, mock_bot_app, monkeypatch):
        monkeypatch.setattr(webhook, "_bot_app", mock_bot_app)

        response = client.post("/webhook/telegram", json={"update_id": 2})

        assert response.status_code == 200
        mock_bot_app.process_update.assert_awaited_once()

    def test_processing_error_returns_500(self, client, mock_bot_app, monkeypatch):
        monkeypatch.setattr(webhook, "_bot_app", mock_bot_app)
        mock_bot_app.process_update.side_effect = RuntimeError("handler crashed")

        response = client.post("/webhook/telegram", json=UPDATE)

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"

    def test_invalid_body(self, client, mock_bot_app, monkeypatch):
        monkeypatch.setattr(webhook, "_bot_app", mock_bot_app)

        response = client.post("/webhook/telegram", content=b"not json")

        assert response.status_code == 422
        mock_bot_app.process_update.assert_not_called()
