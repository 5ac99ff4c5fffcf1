"""Unit tests for enforcement state projection."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from duesbot.models.billing_policy import CycleKind
from duesbot.services.period_service import compute_period
from duesbot.services.policy_service import PolicySettings
from duesbot.services.status import EnforcementState, is_billed, project_state


def make_policy(**overrides) -> PolicySettings:
    values = {
        "group_id": "-100",
        "cycle_kind": CycleKind.MONTHLY,
        "due_day_of_month": 15,
        "due_weekday": 5,
        "fee_amount": Decimal("50000"),
        "grace_period_days": 3,
        "reminder_offsets_days": (7, 3, 1),
        "auto_collect": True,
        "auto_evict": True,
    }
    values.update(overrides)
    return PolicySettings(**values)


def utc(month, day, hour=12):
    return datetime(2026, month, day, hour, tzinfo=timezone.utc)


def state_at(now, paid=False, joined_at=None, **policy):
    policy = make_policy(**policy)
    return project_state(policy, compute_period(policy, now), paid, now, joined_at)


@pytest.mark.unit
class TestProjectState:
    def test_paid_wins(self):
        assert state_at(utc(3, 20), paid=True) == EnforcementState.PAID

    def test_outside_reminder_window(self):
        assert state_at(utc(3, 2)) == EnforcementState.UNBILLED

    def test_inside_reminder_window(self):
        assert state_at(utc(3, 12)) == EnforcementState.REMINDED

    def test_due_today(self):
        assert state_at(utc(3, 15)) == EnforcementState.DUE

    def test_grace_period(self):
        assert state_at(utc(3, 17)) == EnforcementState.GRACE_PERIOD

    def test_past_grace_with_auto_evict(self):
        assert state_at(utc(3, 19)) == EnforcementState.EVICTED

    def test_past_grace_without_auto_evict(self):
        assert state_at(utc(3, 19), auto_evict=False) == EnforcementState.OVERDUE

    def test_joined_after_due_is_unbilled(self):
        assert state_at(utc(3, 19), joined_at=utc(3, 16)) == EnforcementState.UNBILLED


@pytest.mark.unit
class TestIsBilled:
    def test_naive_join_time_treated_as_utc(self):
        period = compute_period(make_policy(), utc(3, 19))

        assert is_billed(period, datetime(2026, 3, 1)) is True
        assert is_billed(period, datetime(2026, 3, 16)) is False
        assert is_billed(period, None) is True
