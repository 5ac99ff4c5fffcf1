"""/dues administration sub-commands.

Admin gating happens in the dispatcher (handle_dues_command); settings
changes and wallet credits re-check it here because the same sub-command
also has a member-facing read-only form.
"""

import logging

from sqlalchemy.orm import Session
from telegram import Update
from telegram.ext import ContextTypes

from duesbot.bot.handlers.common import is_chat_admin, reply, resolve_target
from duesbot.bot.runtime import DuesRuntime
from duesbot.models.billing_policy import CycleKind
from duesbot.models.payment_event import PaymentMethod
from duesbot.services.collection_service import parse_amount
from duesbot.services.errors import ConfigurationError, InvalidAmount
from duesbot.services.eviction_service import MANUAL_REASON, EvictionExecutor
from duesbot.services.group_service import GroupService
from duesbot.services.ledger_service import LedgerService
from duesbot.services.localizer import format_money, t
from duesbot.services.messages import (
    due_description,
    fmt_date,
    manual_eviction_notice,
    mention,
    on_off,
    state_label,
)
from duesbot.services.period_service import compute_period
from duesbot.services.policy_service import PolicyService, parse_weekday
from duesbot.services.report_service import ReportService

logger = logging.getLogger(__name__)

_TOGGLES = {
    "autoevict": "auto_evict",
    "autocollect": "auto_collect",
    "autodeduct": "auto_collect",
    "adminonly": "admin_only",
}


def _parse_int(raw: str | None, message: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(message) from e


def _parse_toggle(raw: str | None) -> bool:
    value = (raw or "").lower()
    if value not in ("on", "off"):
        raise ConfigurationError("Use 'on' or 'off'")
    return value == "on"


async def _require_target(update: Update, args: list[str]) -> tuple[str | None, list[str]]:
    target, rest = resolve_target(update, args)
    if target is None:
        await reply(update, t("errors.missing_target"))
    return target, rest


async def handle_setup(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Enable dues in this group and enroll every known member."""
    chat = update.effective_chat
    chat_id = str(chat.id)
    members = await runtime.membership.list_members(chat_id)
    members.append(str(update.effective_user.id))

    policy_service = PolicyService(db, runtime.policy_cache)
    result = GroupService(db, policy_service).setup_group(
        chat_id, members, title=chat.title, now=runtime.now()
    )
    if result.already_active:
        await reply(update, t("setup.already_active"))
        return

    policy = result.policy
    period = compute_period(policy, runtime.now())
    await reply(
        update,
        t(
            "setup.done",
            enrolled=result.subscriber_count,
            fee=format_money(policy.fee_amount, runtime.currency_symbol),
            due_date=fmt_date(period.due_date),
            grace=policy.grace_period_days,
            auto_collect=on_off(policy.auto_collect),
        ),
    )


async def handle_add(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Enroll another member (reply to them or pass their id)."""
    target, _ = await _require_target(update, args)
    if target is None:
        return
    chat_id = str(update.effective_chat.id)
    policy_service = PolicyService(db, runtime.policy_cache)
    subscriber = GroupService(db, policy_service).enroll(target, chat_id, now=runtime.now())
    policy = policy_service.get_policy(chat_id)
    period = compute_period(policy, runtime.now())
    await reply(
        update,
        t(
            "enroll.done",
            member=mention(target),
            balance=format_money(subscriber.dedicated_balance, runtime.currency_symbol),
            fee=format_money(policy.fee_amount, runtime.currency_symbol),
            due_date=fmt_date(period.due_date),
        ),
    )


async def handle_wallet_add(
    update: Update, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Credit a member's dedicated balance (admin credit, not a payment)."""
    target, rest = await _require_target(update, args)
    if target is None:
        return
    if not rest:
        raise InvalidAmount(None)
    amount = parse_amount(rest[0])
    chat_id = str(update.effective_chat.id)
    subscriber = GroupService(db).get_subscriber(target, chat_id)
    receipt = LedgerService(db).record_admin_credit(
        subscriber, amount, actor_id=str(update.effective_user.id), now=runtime.now()
    )
    await reply(
        update,
        t(
            "wallet.credit_done",
            amount=format_money(receipt.amount, runtime.currency_symbol),
            member=mention(target),
            balance=format_money(receipt.new_balance, runtime.currency_symbol),
        ),
    )


async def handle_wallet_check(
    update: Update, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Show a member's balances, state and recent payments."""
    target, _ = await _require_target(update, args)
    if target is None:
        return
    symbol = runtime.currency_symbol
    reports = ReportService(db, PolicyService(db, runtime.policy_cache), runtime.wallet)
    status = await reports.subscriber_status(
        target, str(update.effective_chat.id), runtime.now(), history=5
    )
    history = "".join(
        t(
            "wallet.history_line",
            index=index,
            date=fmt_date(event.occurred_at),
            amount=format_money(event.amount, symbol),
            method=event.method,
        )
        for index, event in enumerate(status.recent, start=1)
    )
    await reply(
        update,
        t(
            "wallet.check",
            member=mention(target),
            joined=fmt_date(status.joined_at),
            wallet=format_money(status.wallet_balance, symbol),
            balance=format_money(status.dedicated_balance, symbol),
            state=state_label(status.state),
            count=status.payment_count,
            history=history,
        ),
    )


async def handle_defaulters(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """List members with an unpaid overdue period."""
    symbol = runtime.currency_symbol
    report = ReportService(db, PolicyService(db, runtime.policy_cache)).defaulters(
        str(update.effective_chat.id), runtime.now()
    )
    if not report.defaulters:
        await reply(
            update,
            t(
                "defaulters.none",
                count=report.subscriber_count,
                period_start=fmt_date(report.period.period_start),
                due_date=fmt_date(report.period.due_date),
            ),
        )
        return

    text = t(
        "defaulters.title",
        count=len(report.defaulters),
        fee=format_money(report.policy.fee_amount, symbol),
    )
    for index, defaulter in enumerate(report.defaulters, start=1):
        if defaulter.will_be_evicted:
            eviction = t("defaulters.will_evict")
        else:
            eviction = t("defaulters.grace_left", days=defaulter.grace_days_left)
        text += t(
            "defaulters.line",
            index=index,
            member=mention(defaulter.subscriber_id),
            days=defaulter.days_overdue,
            balance=format_money(defaulter.dedicated_balance, symbol),
            can_pay=t("defaulters.can_pay" if defaulter.can_pay_now else "defaulters.cannot_pay"),
            eviction=eviction,
        )
    await reply(update, text)


async def handle_evict(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Remove a member from the group and close their dues record."""
    target, _ = await _require_target(update, args)
    if target is None:
        return
    subscriber = GroupService(db).get_subscriber(target, str(update.effective_chat.id))
    record = await EvictionExecutor(db, runtime.membership).evict(
        subscriber,
        MANUAL_REASON,
        method=PaymentMethod.MANUAL_EVICTION,
        actor_id=str(update.effective_user.id),
        now=runtime.now(),
    )
    await reply(
        update,
        manual_eviction_notice(record.subscriber_id, record.final_balance, runtime.currency_symbol),
    )


async def handle_disable(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Stop enforcing dues in this group."""
    result = GroupService(db, PolicyService(db, runtime.policy_cache)).disable_group(
        str(update.effective_chat.id), actor_id=str(update.effective_user.id), now=runtime.now()
    )
    await reply(
        update,
        t("setup.disabled", members=result.subscriber_count, payments=result.payment_count),
    )


async def handle_stats(
    update: Update, context, runtime: DuesRuntime, db: Session, args: list[str]
) -> None:
    """Group-wide payment statistics and recent payments."""
    symbol = runtime.currency_symbol
    stats = ReportService(db, PolicyService(db, runtime.policy_cache)).group_stats(
        str(update.effective_chat.id), runtime.now()
    )
    text = t(
        "stats.report",
        members=stats.subscriber_count,
        payments=stats.payment_count,
        revenue=format_money(stats.revenue, symbol),
        evictions=stats.eviction_count,
        period_start=fmt_date(stats.period.period_start),
        due_date=fmt_date(stats.period.due_date),
        target=format_money(stats.period_target, symbol),
        rate=stats.payment_rate,
        paid=stats.paid_count,
    )
    text += "".join(
        t(
            "stats.recent_line",
            index=index,
            member=mention(event.subscriber_id),
            amount=format_money(event.amount, symbol),
            date=fmt_date(event.occurred_at),
        )
        for index, event in enumerate(stats.recent, start=1)
    )
    await reply(update, text)


async def handle_settings(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    runtime: DuesRuntime,
    db: Session,
    args: list[str],
) -> None:
    """Show the policy, or change one setting (administrators only)."""
    chat_id = str(update.effective_chat.id)
    policy_service = PolicyService(db, runtime.policy_cache)

    if not args:
        policy = policy_service.get_policy(chat_id)
        period = compute_period(policy, runtime.now())
        text = t(
            "settings.overview",
            fee=format_money(policy.fee_amount, runtime.currency_symbol),
            frequency=t(f"labels.{policy.cycle_kind.value}"),
            due=due_description(policy),
            due_date=fmt_date(period.due_date),
            grace=policy.grace_period_days,
            reminders=", ".join(str(day) for day in policy.reminder_offsets_days) or "-",
            auto_collect=on_off(policy.auto_collect),
            auto_evict=on_off(policy.auto_evict),
            admin_only=on_off(policy.admin_only),
        )
        await reply(update, text + t("settings.usage"))
        return

    if not await is_chat_admin(context, update.effective_chat.id, update.effective_user.id):
        await reply(update, t("errors.admin_only"))
        return

    key = args[0].lower()
    changes = _settings_changes(key, args[1:])
    if changes is None:
        await reply(update, t("settings.unknown", key=key))
        return

    policy = policy_service.update_policy(
        chat_id, actor_id=str(update.effective_user.id), **changes
    )
    period = compute_period(policy, runtime.now())
    await reply(update, t("settings.updated", due_date=fmt_date(period.due_date)))


def _settings_changes(key: str, values: list[str]) -> dict | None:
    """Translate ``/dues settings <key> <values...>`` into policy fields.

    Returns None for an unknown key.

    Raises:
        ConfigurationError: If the values are malformed
        InvalidAmount: If the amount is not a positive number
    """
    first = values[0] if values else None

    if key == "amount":
        if first is None:
            raise InvalidAmount(None)
        return {"fee_amount": parse_amount(first)}

    if key == "frequency":
        kind = (first or "").lower()
        if kind == CycleKind.MONTHLY.value:
            day = _parse_int(values[1] if len(values) > 1 else "1", "Monthly due day must be a number")
            if not 1 <= day <= 28:
                raise ConfigurationError("Monthly due day must be between 1 and 28")
            return {"cycle_kind": CycleKind.MONTHLY, "due_day_of_month": day}
        if kind == CycleKind.WEEKLY.value and len(values) > 1:
            return {"cycle_kind": CycleKind.WEEKLY, "due_weekday": parse_weekday(values[1])}
        raise ConfigurationError("Use 'frequency monthly <1-28>' or 'frequency weekly <day>'")

    if key == "grace":
        return {"grace_period_days": _parse_int(first, "Grace period must be a number of days")}

    if key == "reminders":
        raw = ",".join(values)
        days = [part for part in raw.replace(" ", "").split(",") if part]
        if not days:
            raise ConfigurationError("List reminder days, e.g. 7,3,1")
        return {
            "reminder_offsets_days": [
                _parse_int(day, "Reminder days must be numbers") for day in days
            ]
        }

    if key in _TOGGLES:
        return {_TOGGLES[key]: _parse_toggle(first)}

    return None


__all__ = [
    "handle_setup",
    "handle_add",
    "handle_wallet_add",
    "handle_wallet_check",
    "handle_defaulters",
    "handle_evict",
    "handle_disable",
    "handle_stats",
    "handle_settings",
]
