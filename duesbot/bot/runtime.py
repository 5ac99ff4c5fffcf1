"""Shared dues runtime stored in the bot application's ``bot_data``."""

from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Callable

from sqlalchemy.orm import sessionmaker
from telegram import Bot
from telegram.ext import ContextTypes

from duesbot.services.collaborators import MembershipGateway, NotificationSink, WalletGateway
from duesbot.services.config import DuesConfig
from duesbot.services.enforcement_service import EnforcementScheduler
from duesbot.services.membership_service import TelegramMembershipService
from duesbot.services.notification_service import NotificationService
from duesbot.services.policy_service import PolicyCache
from duesbot.services.wallet_service import LocalWalletService

RUNTIME_KEY = "dues_runtime"


@dataclass
class DuesRuntime:
    """Collaborators and settings shared by handlers and the enforcement loop."""

    session_factory: sessionmaker
    wallet: WalletGateway
    membership: MembershipGateway
    notifier: NotificationSink
    policy_cache: PolicyCache = field(default_factory=PolicyCache)
    tz: tzinfo = timezone.utc
    currency_symbol: str = "₦"
    batch_mode: bool = False
    clock: Callable[[], datetime] | None = None

    def now(self) -> datetime:
        """Current time in the billing timezone."""
        if self.clock is not None:
            return self.clock().astimezone(self.tz)
        return datetime.now(self.tz)

    def build_scheduler(self) -> EnforcementScheduler:
        return EnforcementScheduler(
            session_factory=self.session_factory,
            wallet=self.wallet,
            membership=self.membership,
            notifier=self.notifier,
            policy_cache=self.policy_cache,
            tz=self.tz,
            currency_symbol=self.currency_symbol,
            batch_mode=self.batch_mode,
        )


def build_runtime(bot: Bot, config: DuesConfig, session_factory: sessionmaker) -> DuesRuntime:
    """Wire the shipped adapters around a Telegram bot."""
    return DuesRuntime(
        session_factory=session_factory,
        wallet=LocalWalletService(session_factory),
        membership=TelegramMembershipService(bot, session_factory),
        notifier=NotificationService(bot),
        tz=config.tzinfo,
        currency_symbol=config.currency_symbol,
        batch_mode=config.batch_mode,
    )


def get_runtime(context: ContextTypes.DEFAULT_TYPE) -> DuesRuntime:
    return context.bot_data[RUNTIME_KEY]


__all__ = ["DuesRuntime", "RUNTIME_KEY", "build_runtime", "get_runtime"]
