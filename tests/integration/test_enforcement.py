"""Integration tests for the enforcement scheduler tick."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from duesbot.models.billing_policy import CycleKind
from duesbot.models.payment_event import PaymentEvent, PaymentMethod
from duesbot.models.reminder_marker import MarkerKind, ReminderMarker
from duesbot.models.subscriber import Subscriber
from duesbot.services.enforcement_service import EnforcementScheduler
from duesbot.services.group_service import GroupService
from duesbot.services.ledger_service import LedgerService
from duesbot.services.period_service import compute_period


def utc(month, day, hour=12):
    return datetime(2026, month, day, hour, tzinfo=timezone.utc)


async def tick_daily(scheduler, month, day, days):
    """Run one tick at noon on each of ``days`` consecutive days."""
    start = utc(month, day)
    return [await scheduler.tick(start + timedelta(days=n)) for n in range(days)]


@pytest.fixture
def scheduler(session_factory, wallet, membership, notifier, policy_cache):
    return EnforcementScheduler(
        session_factory,
        wallet,
        membership,
        notifier,
        policy_cache=policy_cache,
        currency_symbol="₦",
    )


def subscriber_ids(session_factory, group_id="-100") -> set[str]:
    with session_factory() as db:
        return set(
            db.execute(
                select(Subscriber.subscriber_id).where(Subscriber.group_id == group_id)
            ).scalars()
        )


def events(session_factory, method: PaymentMethod) -> list[PaymentEvent]:
    with session_factory() as db:
        return list(
            db.execute(select(PaymentEvent).where(PaymentEvent.method == method.value)).scalars()
        )


@pytest.mark.integration
class TestAutoCollection:
    @pytest.mark.asyncio
    async def test_collects_on_due_date(
        self, scheduler, session_factory, make_group, fund, notifier
    ):
        policy = make_group()
        fund("1", "-100", 60000)

        report = await scheduler.tick(utc(3, 1))

        assert report.collected == 1
        assert report.failures == 0
        with session_factory() as db:
            subscriber = GroupService(db).get_subscriber("1", "-100")
            assert subscriber.dedicated_balance == Decimal("10000")
            assert LedgerService(db).has_paid("1", "-100", compute_period(policy, utc(3, 1)))
        assert len(events(session_factory, PaymentMethod.AUTO_COLLECT)) == 1
        assert "DUES COLLECTED" in notifier.to("1")[0]

    @pytest.mark.asyncio
    async def test_repeated_ticks_collect_once(self, scheduler, session_factory, make_group, fund):
        make_group()
        fund("1", "-100", 200000)

        await scheduler.tick(utc(3, 1, 8))
        second = await scheduler.tick(utc(3, 1, 14))
        third = await scheduler.tick(utc(3, 3))

        assert second.collected == 0
        assert third.collected == 0
        assert len(events(session_factory, PaymentMethod.AUTO_COLLECT)) == 1

    @pytest.mark.asyncio
    async def test_late_funds_collected_during_grace(
        self, scheduler, session_factory, make_group, fund, membership
    ):
        make_group()

        await scheduler.tick(utc(3, 2))
        fund("1", "-100", 50000)
        report = await scheduler.tick(utc(3, 3))
        await scheduler.tick(utc(3, 6))

        assert report.collected == 1
        assert membership.removed == []
        assert subscriber_ids(session_factory) == {"1"}


@pytest.mark.integration
class TestReminders:
    @pytest.mark.asyncio
    async def test_one_reminder_for_matching_offset(
        self, scheduler, make_group, notifier
    ):
        make_group(due_day_of_month=15)

        report = await scheduler.tick(utc(3, 12))

        assert report.reminded == 1
        assert len(notifier.to("1")) == 1
        assert "due in <b>3 day(s)</b>" in notifier.to("1")[0]

    @pytest.mark.asyncio
    async def test_same_day_ticks_do_not_repeat_reminder(
        self, scheduler, make_group, notifier
    ):
        make_group(due_day_of_month=15)

        await scheduler.tick(utc(3, 12, 6))
        again = await scheduler.tick(utc(3, 12, 18))

        assert again.reminded == 0
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_offsets_fire_on_their_own_days(
        self, scheduler, session_factory, make_group, notifier
    ):
        make_group(due_day_of_month=15)

        counts = [(await scheduler.tick(utc(3, day))).reminded for day in (8, 10, 12, 13, 14)]

        assert counts == [1, 0, 1, 0, 1]
        with session_factory() as db:
            offsets = sorted(
                db.execute(
                    select(ReminderMarker.offset_days).where(
                        ReminderMarker.kind == MarkerKind.REMINDER.value
                    )
                ).scalars()
            )
        assert offsets == [1, 3, 7]

    @pytest.mark.asyncio
    async def test_reminder_mentions_shortfall(self, scheduler, make_group, fund, notifier):
        make_group(due_day_of_month=15)
        fund("1", "-100", 20000)

        await scheduler.tick(utc(3, 14))

        assert "/dues wallet transfer 30000" in notifier.to("1")[0]

    @pytest.mark.asyncio
    async def test_failed_due_day_collection_falls_back_to_reminder(
        self, scheduler, make_group, notifier
    ):
        make_group(reminder_offsets_days=[7, 3, 1, 0])

        report = await scheduler.tick(utc(3, 1))

        assert report.collected == 0
        assert report.reminded == 1

    @pytest.mark.asyncio
    async def test_old_markers_are_pruned(self, scheduler, session_factory, make_group):
        make_group(due_day_of_month=15)
        await scheduler.tick(utc(3, 12))

        await scheduler.tick(utc(4, 8))

        with session_factory() as db:
            keys = set(db.execute(select(ReminderMarker.period_key)).scalars())
        assert keys == {"2026-03-16"}


@pytest.mark.integration
class TestEscalation:
    @pytest.mark.asyncio
    async def test_eviction_after_grace(
        self, scheduler, session_factory, make_group, membership, notifier
    ):
        make_group(members=("1", "2"))

        report = await scheduler.tick(utc(3, 5))

        assert report.evicted == 2
        assert report.overdue_notices == 2
        assert subscriber_ids(session_factory) == set()
        assert sorted(membership.removed) == [("-100", "1"), ("-100", "2")]
        evictions = events(session_factory, PaymentMethod.EVICTION)
        assert {e.days_late for e in evictions} == {4}
        assert all(e.amount == Decimal("0") for e in evictions)
        assert len(notifier.to("-100")) == 2
        assert "DUES OVERDUE" in notifier.to("1")[0]

    @pytest.mark.asyncio
    async def test_one_overdue_notice_per_day_during_grace(
        self, scheduler, session_factory, make_group, notifier
    ):
        make_group()

        first = await scheduler.tick(utc(3, 2, 6))
        same_day = await scheduler.tick(utc(3, 2, 18))
        next_day = await scheduler.tick(utc(3, 3))

        assert (first.overdue_notices, same_day.overdue_notices, next_day.overdue_notices) == (
            1,
            0,
            1,
        )
        assert first.evicted == 0
        assert subscriber_ids(session_factory) == {"1"}

    @pytest.mark.asyncio
    async def test_no_eviction_when_auto_evict_off(
        self, scheduler, session_factory, make_group, membership
    ):
        make_group(auto_evict=False)

        report = await scheduler.tick(utc(3, 10))

        assert report.evicted == 0
        assert report.overdue_notices == 1
        assert membership.removed == []
        assert subscriber_ids(session_factory) == {"1"}

    @pytest.mark.asyncio
    async def test_paid_members_are_left_alone(
        self, scheduler, session_factory, db_session, make_group, fund, notifier
    ):
        policy = make_group()
        subscriber = fund("1", "-100", 50000)
        LedgerService(db_session).record_payment(
            subscriber, compute_period(policy, utc(3, 4)), Decimal("50000"), PaymentMethod.MANUAL
        )

        report = await scheduler.tick(utc(3, 5))

        assert report.evicted == 0
        assert notifier.sent == []
        assert subscriber_ids(session_factory) == {"1"}

    @pytest.mark.asyncio
    async def test_members_joining_after_due_date_are_not_billed(
        self, scheduler, session_factory, db_session, make_group, membership
    ):
        make_group(members=("1",))
        GroupService(db_session).enroll("2", "-100", now=utc(3, 3))

        await scheduler.tick(utc(3, 5))

        assert subscriber_ids(session_factory) == {"2"}
        assert membership.removed == [("-100", "1")]

    @pytest.mark.asyncio
    async def test_refused_removal_is_counted_and_retried(
        self, scheduler, session_factory, make_group, membership
    ):
        make_group(members=("1", "2"))
        membership.refuse.add("1")

        report = await scheduler.tick(utc(3, 5))

        assert report.failures == 1
        assert report.evicted == 1
        assert subscriber_ids(session_factory) == {"1"}

        membership.refuse.clear()
        retry = await scheduler.tick(utc(3, 5, 18))
        assert retry.evicted == 1
        assert subscriber_ids(session_factory) == set()


@pytest.mark.integration
class TestArrearsAfterRollover:
    """Grace windows that run past the end of their month or week."""

    @pytest.mark.asyncio
    async def test_weekly_friday_grace_spanning_the_weekend_evicts(
        self, scheduler, session_factory, make_group, membership
    ):
        # 2026-03-06 is a Friday; grace runs to Monday 03-09, after the ISO week rolled
        make_group(cycle_kind=CycleKind.WEEKLY, due_weekday=5, joined=utc(3, 1))

        reports = await tick_daily(scheduler, 3, 7, 14)

        assert sum(r.evicted for r in reports) == 1
        assert [r.evicted for r in reports].index(1) == 3
        assert [r.overdue_notices for r in reports][:4] == [1, 1, 1, 1]
        assert membership.removed == [("-100", "1")]
        (eviction,) = events(session_factory, PaymentMethod.EVICTION)
        assert eviction.days_late == 4

    @pytest.mark.asyncio
    async def test_sunday_due_date_is_escalated_in_the_next_week(
        self, scheduler, session_factory, make_group, notifier
    ):
        # 2026-03-08 is a Sunday
        make_group(cycle_kind=CycleKind.WEEKLY, due_weekday=7, joined=utc(3, 2))

        reports = await tick_daily(scheduler, 3, 2, 14)

        overdue = [text for text in notifier.to("1") if "DUES OVERDUE" in text]
        assert "<b>1 day(s) overdue</b>" in overdue[0]
        assert sum(r.overdue_notices for r in reports) == 4
        assert [r.evicted for r in reports].index(1) == 10
        assert subscriber_ids(session_factory) == set()
        assert len(notifier.to("-100")) == 1

    @pytest.mark.asyncio
    async def test_monthly_grace_crossing_into_next_month_evicts(
        self, scheduler, session_factory, make_group, membership
    ):
        make_group(due_day_of_month=28, grace_period_days=5)

        reports = await tick_daily(scheduler, 1, 29, 20)

        assert sum(r.evicted for r in reports) == 1
        # 2026-02-03 is the first day past the grace window
        assert [r.evicted for r in reports].index(1) == 5
        assert membership.removed == [("-100", "1")]
        (eviction,) = events(session_factory, PaymentMethod.EVICTION)
        assert eviction.days_late == 6

    @pytest.mark.asyncio
    async def test_arrears_collected_when_funds_arrive_after_rollover(
        self, scheduler, session_factory, make_group, fund, membership, notifier
    ):
        policy = make_group(cycle_kind=CycleKind.WEEKLY, due_weekday=5, joined=utc(3, 1))

        await scheduler.tick(utc(3, 7))
        fund("1", "-100", 60000)
        collected = await scheduler.tick(utc(3, 9))
        later = await scheduler.tick(utc(3, 10))

        assert collected.collected == 1
        assert later.evicted == 0
        assert membership.removed == []
        with session_factory() as db:
            ledger = LedgerService(db)
            assert ledger.has_paid("1", "-100", compute_period(policy, utc(3, 6)))
            assert not ledger.has_paid("1", "-100", compute_period(policy, utc(3, 9)))
            assert GroupService(db).get_subscriber("1", "-100").dedicated_balance == Decimal(
                "10000"
            )
        assert any("DUES COLLECTED" in text for text in notifier.to("1"))

    @pytest.mark.asyncio
    async def test_arrears_notice_not_repeated_on_the_same_day(
        self, scheduler, session_factory, make_group
    ):
        make_group(cycle_kind=CycleKind.WEEKLY, due_weekday=5, joined=utc(3, 1))

        first = await scheduler.tick(utc(3, 9, 6))
        again = await scheduler.tick(utc(3, 9, 18))

        assert (first.overdue_notices, again.overdue_notices) == (1, 0)
        with session_factory() as db:
            keys = set(db.execute(select(ReminderMarker.period_key)).scalars())
        assert keys == {"2026-02-28"}

    @pytest.mark.asyncio
    async def test_batch_mode_evicts_arrears(
        self, session_factory, wallet, membership, notifier, make_group
    ):
        make_group(
            members=("1", "2"), cycle_kind=CycleKind.WEEKLY, due_weekday=5, joined=utc(3, 1)
        )
        scheduler = EnforcementScheduler(
            session_factory, wallet, membership, notifier, batch_mode=True
        )

        report = await scheduler.tick(utc(3, 10))

        assert report.evicted == 2
        assert subscriber_ids(session_factory) == set()
        assert len(notifier.to("-100")) == 2

    @pytest.mark.asyncio
    async def test_paid_current_period_does_not_hide_arrears(
        self, scheduler, session_factory, db_session, make_group, fund, membership
    ):
        policy = make_group(cycle_kind=CycleKind.WEEKLY, due_weekday=5, joined=utc(3, 1))
        subscriber = fund("1", "-100", 50000)
        LedgerService(db_session).record_payment(
            subscriber, compute_period(policy, utc(3, 10)), Decimal("50000"), PaymentMethod.MANUAL
        )

        report = await scheduler.tick(utc(3, 10))

        assert report.evicted == 1
        assert membership.removed == [("-100", "1")]


@pytest.mark.integration
class TestTickIsolation:
    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_the_group(
        self, scheduler, session_factory, make_group, notifier, monkeypatch
    ):
        make_group(members=("1", "2"))
        original = notifier.notify

        async def flaky(destination, text):
            if destination == "1":
                raise RuntimeError("boom")
            await original(destination, text)

        monkeypatch.setattr(notifier, "notify", flaky)

        report = await scheduler.tick(utc(3, 5))

        assert report.failures == 1
        assert report.processed == 2
        assert subscriber_ids(session_factory) == {"1"}

    @pytest.mark.asyncio
    async def test_failing_group_does_not_stop_the_tick(
        self, scheduler, session_factory, make_group, monkeypatch
    ):
        make_group(group_id="-100")
        make_group(group_id="-200")
        original = scheduler._process_group

        async def flaky(group_id, now, report):
            if group_id == "-100":
                raise RuntimeError("database hiccup")
            await original(group_id, now, report)

        monkeypatch.setattr(scheduler, "_process_group", flaky)

        report = await scheduler.tick(utc(3, 5))

        assert report.groups == 2
        assert report.failures == 1
        assert report.evicted == 1
        assert subscriber_ids(session_factory, "-100") == {"1"}
        assert subscriber_ids(session_factory, "-200") == set()

    @pytest.mark.asyncio
    async def test_disabled_groups_are_skipped(
        self, scheduler, session_factory, db_session, make_group
    ):
        make_group()
        GroupService(db_session).disable_group("-100")

        report = await scheduler.tick(utc(3, 5))

        assert report.groups == 0
        assert subscriber_ids(session_factory) == {"1"}

    @pytest.mark.asyncio
    async def test_naive_now_is_localized(self, scheduler, make_group):
        make_group()

        report = await scheduler.tick(datetime(2026, 3, 5, 12))

        assert report.evicted == 1
        assert report.to_dict()["evicted"] == 1


@pytest.mark.integration
class TestBatchMode:
    @pytest.mark.asyncio
    async def test_batch_collects_and_evicts(
        self, session_factory, wallet, membership, notifier, policy_cache, make_group, fund
    ):
        make_group(group_id="-100", members=("1", "2"))
        make_group(group_id="-200", members=("3", "4"))
        fund("1", "-100", 50000)
        fund("2", "-100", 50000)
        scheduler = EnforcementScheduler(
            session_factory, wallet, membership, notifier, policy_cache, batch_mode=True
        )

        collected = await scheduler.tick(utc(3, 1))
        evicted = await scheduler.tick(utc(3, 5))

        assert collected.collected == 2
        assert evicted.evicted == 2
        assert sorted(membership.removed) == [("-200", "3"), ("-200", "4")]
        assert subscriber_ids(session_factory, "-100") == {"1", "2"}
        assert len(notifier.to("-200")) == 2

    @pytest.mark.asyncio
    async def test_batch_eviction_failure_is_counted(
        self, session_factory, wallet, membership, notifier, make_group
    ):
        make_group(members=("1", "2"))
        membership.refuse.add("2")
        scheduler = EnforcementScheduler(
            session_factory, wallet, membership, notifier, batch_mode=True
        )

        report = await scheduler.tick(utc(3, 5))

        assert report.evicted == 1
        assert report.failures == 1
        assert subscriber_ids(session_factory) == {"2"}
