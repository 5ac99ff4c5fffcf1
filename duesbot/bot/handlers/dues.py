"""/dues command: dispatcher and member sub-commands."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session
from telegram import Update
from telegram.ext import ContextTypes

from duesbot.bot.handlers import admin_dues
from duesbot.bot.handlers.common import (
    is_chat_admin,
    is_group_chat,
    render_error,
    reply,
)
from duesbot.bot.runtime import DuesRuntime, get_runtime
from duesbot.services.collection_service import CollectionEngine, parse_amount
from duesbot.services.errors import DuesError, GroupNotConfigured
from duesbot.services.group_service import GroupService
from duesbot.services.ledger_service import LedgerService
from duesbot.services.localizer import format_money, t
from duesbot.services.messages import fmt_amount, fmt_date, mention, state_label
from duesbot.services.period_service import compute_period, enforceable_periods
from duesbot.services.policy_service import PolicyService
from duesbot.services.report_service import ReportService
from duesbot.services.status import EnforcementState

logger = logging.getLogger(__name__)

# Sub-commands that always need a chat administrator
ADMIN_ALWAYS = {"setup", "evict", "disable"}
# Sub-commands restricted to administrators when the policy's admin-only flag is on
ADMIN_WHEN_RESTRICTED = {"add", "defaulters", "stats"}


def help_text() -> str:
    return "\n\n".join([t("help.title"), t("help.member"), t("help.admin")])


async def handle_dues_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /dues <sub-command> [args].

    Resolves the sub-command, enforces admin gating and renders domain errors
    as actionable replies.
    """
    if not update.message or not update.message.text:
        logger.warning("Received /dues without message text")
        return

    parts = update.message.text.split()
    sub = parts[1].lower() if len(parts) > 1 else "help"
    args = parts[2:]

    if sub == "help":
        await reply(update, help_text())
        return

    if not is_group_chat(update):
        await reply(update, t("setup.group_only"))
        return

    handler = SUBCOMMANDS.get(sub)
    if handler is None:
        await reply(update, t("help.unknown", command=sub))
        return

    runtime = get_runtime(context)
    chat_id = update.effective_chat.id
    user_id = update.effective_user.id
    db = runtime.session_factory()
    try:
        policy_service = PolicyService(db, runtime.policy_cache)
        if sub != "setup":
            GroupService(db, policy_service).require_active_group(str(chat_id))

        needs_admin = sub in ADMIN_ALWAYS or (
            sub in ADMIN_WHEN_RESTRICTED and _restricted(policy_service, chat_id)
        )
        if needs_admin and not await is_chat_admin(context, chat_id, user_id):
            await reply(update, t("errors.admin_only"))
            return

        logger.info("Processing /dues %s from %s in chat %s", sub, user_id, chat_id)
        await handler(update, context, runtime, db, args)

    except DuesError as e:
        logger.info("/dues %s in chat %s rejected: %s", sub, chat_id, e)
        await reply(update, render_error(e, runtime.currency_symbol))
    except Exception as e:
        logger.error("Error in /dues %s handler: %s", sub, e, exc_info=True)
        await reply(update, t("errors.generic"))
    finally:
        db.close()


def _restricted(policy_service: PolicyService, chat_id: int) -> bool:
    try:
        return policy_service.get_policy(str(chat_id)).admin_only
    except GroupNotConfigured:
        return False


async def handle_status(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Show the caller's state for the active period and both balances."""
    symbol = runtime.currency_symbol
    reports = ReportService(db, PolicyService(db, runtime.policy_cache), runtime.wallet)
    status = await reports.subscriber_status(
        str(update.effective_user.id), str(update.effective_chat.id), runtime.now()
    )
    period = status.period

    if status.paid or (status.state == EnforcementState.UNBILLED and period.is_overdue):
        action = t("status.action_paid")
    elif period.is_overdue:
        action = t(
            "status.action_overdue", days=period.days_overdue, grace_left=status.grace_days_left
        )
    else:
        action = t("status.action_pending", days=period.days_until_due)

    text = t(
        "status.report",
        state=state_label(status.state),
        period_start=fmt_date(period.period_start),
        due_date=fmt_date(period.due_date),
        fee=format_money(status.fee, symbol),
        action=action,
        wallet=format_money(status.wallet_balance, symbol),
        balance=format_money(status.dedicated_balance, symbol),
    )
    if not status.paid and status.state != EnforcementState.UNBILLED:
        if status.shortfall > 0:
            text += t(
                "status.shortfall_hint",
                shortfall=format_money(status.shortfall, symbol),
                shortfall_raw=fmt_amount(status.shortfall),
            )
        else:
            text += t("status.ready_hint")
    await reply(update, text)


async def handle_pay(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Pay the oldest owed period (arrears first) from the caller's dedicated balance."""
    chat_id, user_id = str(update.effective_chat.id), str(update.effective_user.id)
    policy_service = PolicyService(db, runtime.policy_cache)
    policy = policy_service.get_policy(chat_id)
    subscriber = GroupService(db, policy_service).get_subscriber(user_id, chat_id)
    now = runtime.now()
    *arrears, current = enforceable_periods(policy, now, policy.grace_period_days)
    period = LedgerService(db).oldest_unpaid(subscriber, arrears) or current

    receipt = CollectionEngine(db, runtime.wallet).pay_now(subscriber, period, policy, now)
    await reply(
        update,
        t(
            "pay.done",
            amount=format_money(receipt.amount, runtime.currency_symbol),
            period_start=fmt_date(period.period_start),
            due_date=fmt_date(period.due_date),
            balance=format_money(receipt.new_balance, runtime.currency_symbol),
        ),
    )


async def handle_wallet(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """/dues wallet [transfer <amount> | add <id> <amount> | check <id>]."""
    action = args[0].lower() if args else ""
    if action == "transfer":
        await _wallet_transfer(update, runtime, db, args[1:])
        return
    if action in ("add", "check"):
        if not await is_chat_admin(context, update.effective_chat.id, update.effective_user.id):
            await reply(update, t("errors.admin_only"))
            return
        if action == "add":
            await admin_dues.handle_wallet_add(update, runtime, db, args[1:])
        else:
            await admin_dues.handle_wallet_check(update, runtime, db, args[1:])
        return
    if action:
        await reply(update, t("wallet.usage"))
        return

    chat_id, user_id = str(update.effective_chat.id), str(update.effective_user.id)
    symbol = runtime.currency_symbol
    policy_service = PolicyService(db, runtime.policy_cache)
    policy = policy_service.get_policy(chat_id)
    subscriber = GroupService(db, policy_service).get_subscriber(user_id, chat_id)
    wallet_balance = await runtime.wallet.get_balance(user_id)
    dedicated = Decimal(str(subscriber.dedicated_balance))
    period = compute_period(policy, runtime.now())

    await reply(
        update,
        t(
            "wallet.overview",
            wallet=format_money(wallet_balance, symbol),
            balance=format_money(dedicated, symbol),
            total=format_money(wallet_balance + dedicated, symbol),
            due_date=fmt_date(period.due_date),
            fee=format_money(policy.fee_amount, symbol),
        ),
    )


async def _wallet_transfer(
    update: Update, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    if not args:
        await reply(update, t("wallet.usage"))
        return
    amount = parse_amount(args[0])
    engine = CollectionEngine(db, runtime.wallet)
    result = await engine.transfer_in(
        str(update.effective_user.id), str(update.effective_chat.id), amount
    )
    symbol = runtime.currency_symbol
    await reply(
        update,
        t(
            "wallet.transfer_done",
            amount=format_money(result.amount, symbol),
            wallet=format_money(result.wallet_balance, symbol),
            balance=format_money(result.dedicated_balance, symbol),
        ),
    )


async def handle_join(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Enroll the caller in the group's dues."""
    chat_id, user_id = str(update.effective_chat.id), str(update.effective_user.id)
    policy_service = PolicyService(db, runtime.policy_cache)
    subscriber = GroupService(db, policy_service).enroll(user_id, chat_id)
    policy = policy_service.get_policy(chat_id)
    period = compute_period(policy, runtime.now())
    await reply(
        update,
        t(
            "enroll.done",
            member=mention(user_id, update.effective_user.first_name),
            balance=format_money(subscriber.dedicated_balance, runtime.currency_symbol),
            fee=format_money(policy.fee_amount, runtime.currency_symbol),
            due_date=fmt_date(period.due_date),
        ),
    )


SUBCOMMANDS = {
    "status": handle_status,
    "pay": handle_pay,
    "wallet": handle_wallet,
    "join": handle_join,
    "setup": admin_dues.handle_setup,
    "add": admin_dues.handle_add,
    "defaulters": admin_dues.handle_defaulters,
    "evict": admin_dues.handle_evict,
    "disable": admin_dues.handle_disable,
    "stats": admin_dues.handle_stats,
    "settings": admin_dues.handle_settings,
}


__all__ = ["handle_dues_command", "help_text", "SUBCOMMANDS"]
