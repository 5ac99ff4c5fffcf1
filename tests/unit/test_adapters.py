"""Tests for the Telegram and wallet adapters behind the dues ports."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import BadRequest, Forbidden, TimedOut

from duesbot.services.group_service import GroupService
from duesbot.services.membership_service import TelegramMembershipService
from duesbot.services.notification_service import NotificationService
from duesbot.services.wallet_service import LocalWalletService


def admin(user_id, is_bot=False):
    member = MagicMock()
    member.user.id = user_id
    member.user.is_bot = is_bot
    return member


@pytest.mark.unit
class TestLocalWalletService:
    """SQL-backed wallet balances."""

    @pytest.mark.asyncio
    async def test_unknown_owner_has_zero_balance(self, session_factory):
        wallet = LocalWalletService(session_factory)

        assert await wallet.get_balance("1") == Decimal("0")

    @pytest.mark.asyncio
    async def test_credit_creates_account_then_accumulates(self, session_factory):
        wallet = LocalWalletService(session_factory)

        assert await wallet.credit("1", Decimal("100"), "top-up") is True
        assert await wallet.credit("1", Decimal("50.25"), "top-up") is True

        assert await wallet.get_balance("1") == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_debit_within_balance(self, session_factory):
        wallet = LocalWalletService(session_factory)
        await wallet.credit("1", Decimal("100"), "top-up")

        assert await wallet.debit("1", Decimal("40"), "dues") is True
        assert await wallet.get_balance("1") == Decimal("60")

    @pytest.mark.asyncio
    async def test_debit_never_overdraws(self, session_factory):
        wallet = LocalWalletService(session_factory)
        await wallet.credit("1", Decimal("10"), "top-up")

        assert await wallet.debit("1", Decimal("10.01"), "dues") is False
        assert await wallet.debit("2", Decimal("1"), "dues") is False
        assert await wallet.get_balance("1") == Decimal("10")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    async def test_non_positive_amounts_rejected(self, session_factory, amount):
        wallet = LocalWalletService(session_factory)

        assert await wallet.credit("1", amount, "top-up") is False
        assert await wallet.debit("1", amount, "dues") is False


@pytest.mark.unit
class TestNotificationService:
    """Telegram delivery of notices."""

    @pytest.mark.asyncio
    async def test_send_message_uses_html(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await NotificationService(bot).notify("-100", "<b>hi</b>")

        bot.send_message.assert_awaited_once_with(
            chat_id=-100, text="<b>hi</b>", reply_markup=None, parse_mode="HTML"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [Forbidden("bot was blocked by the user"), TimedOut(), RuntimeError("boom")]
    )
    async def test_notify_swallows_failures(self, error):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=error)

        await NotificationService(bot).notify("1", "hello")

        bot.send_message.assert_awaited_once()


@pytest.mark.unit
class TestTelegramMembershipService:
    """Kicking and listing group members through the Bot API."""

    @pytest.mark.asyncio
    async def test_remove_member_bans_then_unbans(self):
        bot = MagicMock()
        bot.ban_chat_member = AsyncMock(return_value=True)
        bot.unban_chat_member = AsyncMock(return_value=True)

        removed = await TelegramMembershipService(bot).remove_member("-100", "7")

        assert removed is True
        bot.ban_chat_member.assert_awaited_once_with(chat_id=-100, user_id=7)
        bot.unban_chat_member.assert_awaited_once_with(
            chat_id=-100, user_id=7, only_if_banned=True
        )

    @pytest.mark.asyncio
    async def test_unconfirmed_ban_is_not_removal(self):
        bot = MagicMock()
        bot.ban_chat_member = AsyncMock(return_value=False)
        bot.unban_chat_member = AsyncMock()

        assert await TelegramMembershipService(bot).remove_member("-100", "7") is False
        bot.unban_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refused_removal(self):
        bot = MagicMock()
        bot.ban_chat_member = AsyncMock(side_effect=BadRequest("Not enough rights"))

        assert await TelegramMembershipService(bot).remove_member("-100", "7") is False

    @pytest.mark.asyncio
    async def test_list_members_merges_admins_and_known_subscribers(
        self, session_factory, make_group
    ):
        make_group(members=("2", "3"))
        bot = MagicMock()
        bot.get_chat_administrators = AsyncMock(
            return_value=[admin(1), admin(2), admin(99, is_bot=True)]
        )

        members = await TelegramMembershipService(bot, session_factory).list_members("-100")

        assert members == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_list_members_without_admin_access(self, session_factory, make_group):
        make_group(members=("5",))
        bot = MagicMock()
        bot.get_chat_administrators = AsyncMock(side_effect=Forbidden("bot is not a member"))

        members = await TelegramMembershipService(bot, session_factory).list_members("-100")

        assert members == ["5"]

    @pytest.mark.asyncio
    async def test_list_members_ignores_other_groups(self, session_factory, db_session, make_group):
        make_group(group_id="-200", members=("8",))
        bot = MagicMock()
        bot.get_chat_administrators = AsyncMock(return_value=[])

        members = await TelegramMembershipService(bot, session_factory).list_members("-100")

        assert members == []
        assert GroupService(db_session).count_subscribers("-200") == 1
