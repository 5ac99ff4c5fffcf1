"""Rendering of dues notices and reports from translations."""

import html
from decimal import Decimal

from duesbot.models.billing_policy import CycleKind
from duesbot.services.localizer import format_day, format_money, t
from duesbot.services.period_service import BillingPeriod
from duesbot.services.policy_service import PolicySettings
from duesbot.services.status import EnforcementState

_STATE_KEYS = {
    EnforcementState.PAID: "status.paid",
    EnforcementState.UNBILLED: "status.unbilled",
    EnforcementState.REMINDED: "status.pending",
    EnforcementState.DUE: "status.due_today",
    EnforcementState.GRACE_PERIOD: "status.grace",
    EnforcementState.OVERDUE: "status.overdue",
    EnforcementState.EVICTED: "status.overdue",
}

_WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

fmt_date = format_day


def fmt_amount(amount: Decimal) -> str:
    """Plain amount for pasting back into a command (no symbol, no separators)."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(value.quantize(Decimal("0.01")))


def mention(user_id: str, name: str | None = None) -> str:
    label = html.escape(name) if name else str(user_id)
    return f'<a href="tg://user?id={user_id}">{label}</a>'


def on_off(flag: bool) -> str:
    return t("labels.on") if flag else t("labels.off")


def state_label(state: EnforcementState) -> str:
    return t(_STATE_KEYS[state])


def weekday_name(weekday: int) -> str:
    return _WEEKDAY_NAMES[(int(weekday) - 1) % 7]


def due_description(policy: PolicySettings) -> str:
    if policy.cycle_kind == CycleKind.WEEKLY:
        return t("settings.weekly_due", weekday=weekday_name(policy.due_weekday))
    return t("settings.monthly_due", day=policy.due_day_of_month)


def reminder_text(
    policy: PolicySettings, period: BillingPeriod, balance: Decimal, symbol: str
) -> str:
    shortfall = max(Decimal("0"), policy.fee_amount - Decimal(balance))
    if shortfall > 0:
        readiness = t(
            "reminders.not_ready",
            shortfall=format_money(shortfall, symbol),
            shortfall_raw=fmt_amount(shortfall),
        )
    else:
        readiness = t("reminders.ready")
    return t(
        "reminders.due_soon",
        fee=format_money(policy.fee_amount, symbol),
        days=period.days_until_due,
        due_date=fmt_date(period.due_date),
        balance=format_money(balance, symbol),
        readiness=readiness,
    )


def collected_text(
    policy: PolicySettings, period: BillingPeriod, new_balance: Decimal, symbol: str
) -> str:
    return t(
        "collection.collected",
        fee=format_money(policy.fee_amount, symbol),
        period_start=fmt_date(period.period_start),
        due_date=fmt_date(period.due_date),
        balance=format_money(new_balance, symbol),
    )


def overdue_text(
    policy: PolicySettings, period: BillingPeriod, balance: Decimal, symbol: str
) -> str:
    shortfall = max(Decimal("0"), policy.fee_amount - Decimal(balance))
    return t(
        "collection.overdue",
        due_date=fmt_date(period.due_date),
        days=period.days_overdue,
        fee=format_money(policy.fee_amount, symbol),
        balance=format_money(balance, symbol),
        shortfall=format_money(shortfall, symbol),
        grace=policy.grace_period_days,
        grace_left=period.grace_days_left(policy.grace_period_days),
    )


def eviction_notice(
    subscriber_id: str, policy: PolicySettings, period: BillingPeriod, symbol: str
) -> str:
    return t(
        "eviction.group_notice",
        member=mention(subscriber_id),
        due_date=fmt_date(period.due_date),
        days=period.days_overdue,
        fee=format_money(policy.fee_amount, symbol),
    )


def manual_eviction_notice(subscriber_id: str, final_balance: Decimal, symbol: str) -> str:
    return t(
        "eviction.manual_notice",
        member=mention(subscriber_id),
        balance=format_money(final_balance, symbol),
    )


__all__ = [
    "fmt_date",
    "fmt_amount",
    "mention",
    "on_off",
    "state_label",
    "weekday_name",
    "due_description",
    "reminder_text",
    "collected_text",
    "overdue_text",
    "eviction_notice",
    "manual_eviction_notice",
]
