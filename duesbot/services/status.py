"""Per-subscriber enforcement state.

The state is never stored. It is projected from the billing period, the
ledger's paid flag and the subscriber's join time on every evaluation, so it
cannot drift from the clock or from policy edits.
"""

from datetime import datetime
from enum import Enum

from duesbot.services.clock import to_utc
from duesbot.services.period_service import BillingPeriod


class EnforcementState(str, Enum):
    """Where a subscriber stands for the active period."""

    UNBILLED = "unbilled"
    REMINDED = "reminded"
    DUE = "due"
    GRACE_PERIOD = "grace_period"
    OVERDUE = "overdue"
    EVICTED = "evicted"
    PAID = "paid"


def is_billed(period: BillingPeriod, joined_at: datetime | None) -> bool:
    """Members who joined after the due instant owe nothing for the period."""
    if joined_at is None:
        return True
    return to_utc(joined_at) <= to_utc(period.due_instant)


def project_state(
    policy,
    period: BillingPeriod,
    paid: bool,
    now: datetime,
    joined_at: datetime | None = None,
) -> EnforcementState:
    """Project the enforcement state for one subscriber.

    EVICTED means eviction is due (past grace with auto-evict on); OVERDUE
    means past grace with auto-evict off.
    """
    if paid:
        return EnforcementState.PAID
    if not is_billed(period, joined_at):
        return EnforcementState.UNBILLED

    if not period.is_overdue:
        if period.days_until_due == 0:
            return EnforcementState.DUE
        offsets = policy.reminder_offsets_days
        if offsets and period.days_until_due <= max(offsets):
            return EnforcementState.REMINDED
        return EnforcementState.UNBILLED

    if not period.is_past_grace(policy.grace_period_days, now):
        return EnforcementState.GRACE_PERIOD
    if policy.auto_evict:
        return EnforcementState.EVICTED
    return EnforcementState.OVERDUE


__all__ = ["EnforcementState", "project_state", "is_billed"]
