"""Billing period calculator.

Pure functions mapping (policy, now) to the active billing period. Nothing is
persisted: periods are re-derived on every evaluation so they always follow
the current policy.

Every boundary hangs off the due date:

    period = [previous due date + 1 day, 00:00 ; this due date, end of day]

so consecutive periods are contiguous and never overlap. The active period is
the one ending on the due date of the current month (monthly) or ISO week
(weekly); once that due date has passed the same period stays active and
overdue until the calendar rolls into the next month/week.

A period whose grace window runs past that rollover is not forgotten:
``enforceable_periods`` keeps it alongside the active one as arrears until
its grace has had a full period to play out.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from duesbot.models.billing_policy import CycleKind


@dataclass(frozen=True)
class BillingPeriod:
    """Derived billing window. Never stored."""

    period_start: datetime
    period_end: datetime
    due_instant: datetime
    is_overdue: bool
    days_until_due: int
    days_overdue: int

    @property
    def key(self) -> str:
        """Stable identifier of the period (its start date)."""
        return self.period_start.date().isoformat()

    @property
    def due_date(self) -> date:
        return self.due_instant.date()

    def contains(self, instant: datetime) -> bool:
        return self.period_start <= instant <= self.period_end

    def grace_end(self, grace_period_days: int) -> datetime:
        """Last instant of the grace window."""
        return self.due_instant + timedelta(days=grace_period_days)

    def is_past_grace(self, grace_period_days: int, now: datetime) -> bool:
        return now > self.grace_end(grace_period_days)

    def grace_days_left(self, grace_period_days: int) -> int:
        if not self.is_overdue:
            return grace_period_days
        return max(0, grace_period_days - self.days_overdue)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def monthly_due_date(year: int, month: int, due_day: int) -> date:
    """Due date in the given month, clamping the day to the month length.

    A due day of 31 resolves to the 28th/29th/30th in shorter months instead of
    spilling into the next month.
    """
    day = max(1, min(int(due_day), days_in_month(year, month)))
    return date(year, month, day)


def _previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def _start_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def _due_dates(policy, today: date) -> tuple[date, date]:
    """Return (previous due date, current due date) for the policy cadence."""
    if policy.cycle_kind == CycleKind.WEEKLY:
        weekday = max(1, min(int(policy.due_weekday), 7))
        due = today + timedelta(days=weekday - today.isoweekday())
        return due - timedelta(days=7), due

    due = monthly_due_date(today.year, today.month, policy.due_day_of_month)
    prev_year, prev_month = _previous_month(today.year, today.month)
    previous = monthly_due_date(prev_year, prev_month, policy.due_day_of_month)
    return previous, due


def compute_period(policy, now: datetime) -> BillingPeriod:
    """Compute the active billing period for ``policy`` at ``now``.

    Deterministic and side-effect free. ``policy`` only needs ``cycle_kind``,
    ``due_day_of_month`` and ``due_weekday`` attributes. Day arithmetic uses
    the calendar of ``now``'s timezone; naive datetimes are treated as UTC.

    Args:
        policy: BillingPolicy row or PolicySettings snapshot
        now: Evaluation instant

    Returns:
        BillingPeriod for the cycle ending on the current due date
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    previous_due, due = _due_dates(policy, now.date())
    return _build_period(previous_due, due, now)


def _build_period(previous_due: date, due: date, now: datetime) -> BillingPeriod:
    tz = now.tzinfo
    today = now.date()
    due_instant = _end_of_day(due, tz)

    is_overdue = now > due_instant
    if is_overdue:
        days_until_due = 0
        days_overdue = max(1, (today - due).days)
    else:
        days_until_due = max(0, (due - today).days)
        days_overdue = 0

    return BillingPeriod(
        period_start=_start_of_day(previous_due + timedelta(days=1), tz),
        period_end=due_instant,
        due_instant=due_instant,
        is_overdue=is_overdue,
        days_until_due=days_until_due,
        days_overdue=days_overdue,
    )


def following_period(policy, period: BillingPeriod) -> BillingPeriod:
    """Next period in the cycle, evaluated at the instant it opens."""
    due = period.due_date
    if policy.cycle_kind == CycleKind.WEEKLY:
        next_due = due + timedelta(days=7)
    else:
        year, month = (due.year + 1, 1) if due.month == 12 else (due.year, due.month + 1)
        next_due = monthly_due_date(year, month, policy.due_day_of_month)
    opens_at = period.period_end + timedelta(microseconds=1)
    return _build_period(due, next_due, opens_at)


_INSTANT = timedelta(microseconds=1)
_MAX_ARREARS = 8


def _cycle_start(policy, today: date) -> date:
    """First day of the month or ISO week that ``today`` falls in."""
    if policy.cycle_kind == CycleKind.WEEKLY:
        return today - timedelta(days=today.isoweekday() - 1)
    return today.replace(day=1)


def enforceable_periods(policy, now: datetime, grace_period_days: int) -> list[BillingPeriod]:
    """Periods that can still be enforced at ``now``, oldest first.

    The last element is always ``compute_period(policy, now)``. Earlier
    elements are arrears: past periods whose grace window was still open when
    the calendar rolled into the next month or week, so they stopped being
    the active period before eviction could fall due. Each is evaluated at
    ``now`` (overdue, with ``days_overdue`` counted from its own due date).

    An arrears period is kept while its grace window reaches the end of the
    period right before the active one. Past periods whose grace ran out
    while they were still active are never returned.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz = now.tzinfo
    current = compute_period(policy, now)
    cutoff = current.period_start - _INSTANT

    arrears = []
    rollover = _start_of_day(_cycle_start(policy, now.date()), tz)
    for _ in range(_MAX_ARREARS):
        last_active = rollover - _INSTANT
        previous_due, due = _due_dates(policy, last_active.date())
        past = _build_period(previous_due, due, now)
        grace_end = past.grace_end(grace_period_days)
        if grace_end < cutoff:
            break
        if grace_end >= last_active:
            arrears.append(past)
        rollover = _start_of_day(_cycle_start(policy, last_active.date()), tz)

    arrears.reverse()
    return arrears + [current]


__all__ = [
    "BillingPeriod",
    "compute_period",
    "enforceable_periods",
    "following_period",
    "monthly_due_date",
    "days_in_month",
]
