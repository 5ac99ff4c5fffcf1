"""Telegram group membership adapter."""

import logging

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from telegram import Bot
from telegram.error import BadRequest, TelegramError

from duesbot.models.subscriber import Subscriber

logger = logging.getLogger(__name__)


class TelegramMembershipService:
    """Removes members from and lists members of Telegram groups.

    Removal is a ban followed by an unban, so the member is kicked but may
    rejoin later. The Bot API cannot enumerate ordinary members, so
    ``list_members`` returns the chat administrators (bots excluded) merged
    with members already known from subscriber records.
    """

    def __init__(self, bot: Bot, session_factory: sessionmaker | None = None):
        self.bot = bot
        self.session_factory = session_factory

    async def remove_member(self, group_id: str, subscriber_id: str) -> bool:
        """Kick a member; True only if Telegram confirmed it."""
        chat_id, user_id = int(group_id), int(subscriber_id)
        try:
            banned = await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id)
            if banned:
                await self.bot.unban_chat_member(
                    chat_id=chat_id, user_id=user_id, only_if_banned=True
                )
            return bool(banned)
        except BadRequest as e:
            logger.warning("Telegram refused to remove %s from %s: %s", user_id, chat_id, e)
            return False
        except TelegramError as e:
            logger.error("Error removing %s from %s: %s", user_id, chat_id, e, exc_info=True)
            return False

    async def list_members(self, group_id: str) -> list[str]:
        members: list[str] = []
        try:
            admins = await self.bot.get_chat_administrators(chat_id=int(group_id))
            members.extend(str(admin.user.id) for admin in admins if not admin.user.is_bot)
        except TelegramError as e:
            logger.warning("Could not list administrators of %s: %s", group_id, e)

        if self.session_factory is not None:
            with self.session_factory() as db:
                known = (
                    db.execute(
                        select(Subscriber.subscriber_id).where(
                            Subscriber.group_id == str(group_id)
                        )
                        .order_by(Subscriber.id)
                    )
                    .scalars()
                    .all()
                )
            members.extend(known)

        return list(dict.fromkeys(members))


__all__ = ["TelegramMembershipService"]
