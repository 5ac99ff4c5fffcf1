"""Helpers shared by the /dues command handlers."""

import logging

from telegram import Update
from telegram.constants import ChatMemberStatus, ChatType
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from duesbot.services.errors import (
    AlreadyEnrolled,
    AlreadyPaid,
    ConfigurationError,
    DuesError,
    GroupNotConfigured,
    InsufficientFunds,
    InvalidAmount,
    MembershipRemovalFailed,
    NotEnrolled,
    TransferFailed,
)
from duesbot.services.localizer import format_money, t
from duesbot.services.messages import fmt_amount, mention

logger = logging.getLogger(__name__)

_ADMIN_STATUSES = {ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER}


async def reply(update: Update, text: str) -> None:
    await update.message.reply_text(text, parse_mode="HTML")


def is_group_chat(update: Update) -> bool:
    return update.effective_chat is not None and update.effective_chat.type in (
        ChatType.GROUP,
        ChatType.SUPERGROUP,
    )


async def is_chat_admin(context: ContextTypes.DEFAULT_TYPE, chat_id: int, user_id: int) -> bool:
    """Whether the user administers the chat (creator included)."""
    try:
        member = await context.bot.get_chat_member(chat_id=chat_id, user_id=user_id)
    except TelegramError as e:
        logger.warning("Could not check admin status of %s in %s: %s", user_id, chat_id, e)
        return False
    return member.status in _ADMIN_STATUSES


def resolve_target(update: Update, args: list[str]) -> tuple[str | None, list[str]]:
    """Find the member an admin command is about.

    The replied-to message's author wins; otherwise the first argument must be
    a numeric Telegram user id.

    Returns:
        (target id or None, remaining arguments)
    """
    replied = update.message.reply_to_message
    if replied is not None and replied.from_user is not None:
        return str(replied.from_user.id), args
    if args and args[0].lstrip("-").isdigit():
        return args[0], args[1:]
    return None, args


def render_error(error: DuesError, symbol: str) -> str:
    """Localized, actionable text for a domain error."""
    if isinstance(error, NotEnrolled):
        return t("errors.not_enrolled", member=mention(error.subscriber_id))
    if isinstance(error, AlreadyEnrolled):
        return t("enroll.already", member=mention(error.subscriber_id))
    if isinstance(error, GroupNotConfigured):
        return t("setup.not_configured")
    if isinstance(error, InsufficientFunds):
        key = "errors.insufficient_wallet" if error.source == "wallet" else "errors.insufficient_dedicated"
        return t(
            key,
            required=format_money(error.required, symbol),
            available=format_money(error.available, symbol),
            shortfall=format_money(error.shortfall, symbol),
            shortfall_raw=fmt_amount(error.shortfall),
        )
    if isinstance(error, AlreadyPaid):
        return t("pay.already_paid", period_key=error.period_key)
    if isinstance(error, InvalidAmount):
        return t("errors.invalid_amount")
    if isinstance(error, TransferFailed):
        return t("errors.transfer_failed" if error.refunded else "errors.transfer_unrefunded")
    if isinstance(error, MembershipRemovalFailed):
        return t("eviction.failed", member=mention(error.subscriber_id))
    if isinstance(error, ConfigurationError):
        return t("settings.invalid", reason=str(error))
    return t("errors.generic")


__all__ = [
    "reply",
    "is_group_chat",
    "is_chat_admin",
    "resolve_target",
    "render_error",
]
