"""Periodic dues enforcement.

One ``tick`` visits every active group, derives the billing period once per
group and walks its subscribers:

- paid (per the ledger) or joined after the due date: nothing to do
- before the due date: one reminder per configured offset
- due today or overdue: try auto-collection from the dedicated balance
- overdue and not collected: one overdue notice per day overdue, then
  eviction once the grace period is over and auto-evict is on

Arrears (a past period whose grace outlived its month or week, see
``enforceable_periods``) are settled first: collected if possible, otherwise
escalated against their own due date. The active period is only looked at
once no arrears are left unpaid.

Reminders and overdue notices are guarded by ReminderMarker rows, so ticks
can run more often than daily without repeating a notice. A failure on one
subscriber or one group is logged and counted; the tick carries on.

In batch mode collections and evictions are queued per group and flushed
together at the end of the group.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from duesbot.models.reminder_marker import MarkerKind, ReminderMarker
from duesbot.models.subscriber import Subscriber
from duesbot.services.collaborators import MembershipGateway, NotificationSink, WalletGateway
from duesbot.services.collection_service import CollectionEngine, CollectionResult
from duesbot.services.errors import MembershipRemovalFailed
from duesbot.services.eviction_service import (
    EvictionExecutor,
    EvictionRequest,
    overdue_reason,
)
from duesbot.services.group_service import GroupService
from duesbot.services.ledger_service import LedgerService
from duesbot.services.messages import (
    collected_text,
    eviction_notice,
    overdue_text,
    reminder_text,
)
from duesbot.services.period_service import BillingPeriod, enforceable_periods
from duesbot.services.policy_service import PolicyCache, PolicyService, PolicySettings
from duesbot.services.status import is_billed

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Counters for one enforcement tick."""

    groups: int = 0
    processed: int = 0
    reminded: int = 0
    collected: int = 0
    overdue_notices: int = 0
    evicted: int = 0
    failures: int = 0
    elapsed_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": self.groups,
            "processed": self.processed,
            "reminded": self.reminded,
            "collected": self.collected,
            "overdue_notices": self.overdue_notices,
            "evicted": self.evicted,
            "failures": self.failures,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class _GroupContext:
    db: Session
    policy: PolicySettings
    period: BillingPeriod
    arrears: list[BillingPeriod]
    now: datetime
    ledger: LedgerService
    collector: CollectionEngine
    evictor: EvictionExecutor
    queued_collections: list[tuple[Subscriber, BillingPeriod]] = field(default_factory=list)
    queued_evictions: list[tuple[EvictionRequest, BillingPeriod]] = field(default_factory=list)


class EnforcementScheduler:
    """Runs enforcement ticks over all active groups."""

    def __init__(
        self,
        session_factory: sessionmaker,
        wallet: WalletGateway,
        membership: MembershipGateway,
        notifier: NotificationSink,
        policy_cache: PolicyCache | None = None,
        tz: tzinfo = timezone.utc,
        currency_symbol: str = "",
        batch_mode: bool = False,
    ):
        """Initialize the scheduler.

        Args:
            session_factory: Factory for dues database sessions (one per group)
            wallet: Primary wallet collaborator
            membership: Group membership collaborator
            notifier: Notification sink for private notices and group announcements
            policy_cache: Shared policy cache (a private one is created if omitted)
            tz: Timezone whose calendar defines due days
            currency_symbol: Symbol used when rendering amounts
            batch_mode: Queue collections/evictions and flush per group
        """
        self.session_factory = session_factory
        self.wallet = wallet
        self.membership = membership
        self.notifier = notifier
        self.policy_cache = policy_cache if policy_cache is not None else PolicyCache()
        self.tz = tz
        self.currency_symbol = currency_symbol
        self.batch_mode = batch_mode

    def _localize(self, now: datetime | None) -> datetime:
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz)
        return now.astimezone(self.tz)

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run one enforcement pass. Never raises for per-group failures."""
        started = time.monotonic()
        now = self._localize(now)
        report = TickReport()

        with self.session_factory() as db:
            group_ids = [group.group_id for group in GroupService(db).list_active_groups()]

        if not group_ids:
            logger.info("No active dues groups")

        for group_id in group_ids:
            report.groups += 1
            try:
                await self._process_group(group_id, now, report)
            except Exception as e:
                report.failures += 1
                logger.error("Error processing dues group %s: %s", group_id, e, exc_info=True)

        report.elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Dues tick completed: %d groups, %d processed, %d reminded, %d collected, "
            "%d overdue notices, %d evicted, %d failures (%dms)",
            report.groups,
            report.processed,
            report.reminded,
            report.collected,
            report.overdue_notices,
            report.evicted,
            report.failures,
            report.elapsed_ms,
        )
        return report

    async def _process_group(self, group_id: str, now: datetime, report: TickReport) -> None:
        with self.session_factory() as db:
            policy_service = PolicyService(db, self.policy_cache)
            policy = policy_service.get_policy(group_id)
            *arrears, period = enforceable_periods(policy, now, policy.grace_period_days)
            ledger = LedgerService(db)
            ctx = _GroupContext(
                db=db,
                policy=policy,
                period=period,
                arrears=arrears,
                now=now,
                ledger=ledger,
                collector=CollectionEngine(db, self.wallet, ledger),
                evictor=EvictionExecutor(db, self.membership),
            )

            self._prune_markers(db, group_id, (arrears or [period])[0].key)
            subscribers = GroupService(db, policy_service).list_subscribers(group_id)
            logger.debug(
                "Processing %d subscriber(s) in group %s for period %s (%d in arrears)",
                len(subscribers),
                group_id,
                period.key,
                len(arrears),
            )

            for subscriber in subscribers:
                report.processed += 1
                subscriber_id = subscriber.subscriber_id
                try:
                    await self._process_subscriber(ctx, subscriber, report)
                except Exception as e:
                    db.rollback()
                    report.failures += 1
                    logger.error(
                        "Error processing subscriber %s in group %s: %s",
                        subscriber_id,
                        group_id,
                        e,
                        exc_info=True,
                    )

            if self.batch_mode:
                await self._flush(ctx, group_id, report)

    async def _process_subscriber(
        self, ctx: _GroupContext, subscriber: Subscriber, report: TickReport
    ) -> None:
        for period in ctx.arrears:
            if not self._owes(ctx, subscriber, period):
                continue
            if await self._collect(ctx, subscriber, period, report):
                if self.batch_mode:
                    return
                continue
            await self._escalate(ctx, subscriber, period, report)
            return

        period = ctx.period
        if not self._owes(ctx, subscriber, period):
            return

        collectible = period.is_overdue or period.days_until_due == 0
        if collectible and await self._collect(ctx, subscriber, period, report):
            return

        if not period.is_overdue:
            await self._remind(ctx, subscriber, report)
            return

        await self._escalate(ctx, subscriber, period, report)

    @staticmethod
    def _owes(ctx: _GroupContext, subscriber: Subscriber, period: BillingPeriod) -> bool:
        if not is_billed(period, subscriber.joined_at):
            return False
        return not ctx.ledger.has_paid(subscriber.subscriber_id, subscriber.group_id, period)

    async def _collect(
        self,
        ctx: _GroupContext,
        subscriber: Subscriber,
        period: BillingPeriod,
        report: TickReport,
    ) -> bool:
        """Collect ``period`` from the dedicated balance; True if collected or queued."""
        policy = ctx.policy
        if not policy.auto_collect:
            return False
        if self.batch_mode and subscriber.dedicated_balance >= policy.fee_amount:
            ctx.queued_collections.append((subscriber, period))
            return True
        result = ctx.collector.attempt_collection(subscriber, period, policy, ctx.now)
        if not result.collected:
            return False
        await self._after_collection(ctx, subscriber, period, result, report)
        return True

    async def _remind(self, ctx: _GroupContext, subscriber: Subscriber, report: TickReport) -> None:
        offset = ctx.period.days_until_due
        if offset not in ctx.policy.reminder_offsets_days:
            return
        if not self._claim_marker(ctx.db, subscriber, ctx.period.key, MarkerKind.REMINDER, offset):
            return
        await self.notifier.notify(
            subscriber.subscriber_id,
            reminder_text(
                ctx.policy, ctx.period, subscriber.dedicated_balance, self.currency_symbol
            ),
        )
        report.reminded += 1
        logger.info(
            "Sent %d-day dues reminder to %s in group %s",
            offset,
            subscriber.subscriber_id,
            subscriber.group_id,
        )

    async def _escalate(
        self,
        ctx: _GroupContext,
        subscriber: Subscriber,
        period: BillingPeriod,
        report: TickReport,
    ) -> None:
        policy = ctx.policy
        subscriber_id, group_id = subscriber.subscriber_id, subscriber.group_id

        if self._claim_marker(
            ctx.db, subscriber, period.key, MarkerKind.OVERDUE, period.days_overdue
        ):
            await self.notifier.notify(
                subscriber.subscriber_id,
                overdue_text(policy, period, subscriber.dedicated_balance, self.currency_symbol),
            )
            report.overdue_notices += 1
            logger.info(
                "Sent overdue notice to %s in group %s for period %s (%d days late)",
                subscriber.subscriber_id,
                subscriber.group_id,
                period.key,
                period.days_overdue,
            )

        if not (policy.auto_evict and period.is_past_grace(policy.grace_period_days, ctx.now)):
            return

        request = EvictionRequest(
            subscriber=subscriber,
            reason=overdue_reason(period.days_overdue, policy.grace_period_days),
            days_overdue=period.days_overdue,
        )
        if self.batch_mode:
            ctx.queued_evictions.append((request, period))
            return

        # Payment may have landed since the tick started
        if ctx.ledger.has_paid(subscriber.subscriber_id, subscriber.group_id, period):
            return
        try:
            await ctx.evictor.evict(
                subscriber,
                request.reason,
                days_overdue=request.days_overdue,
                now=ctx.now,
            )
        except MembershipRemovalFailed as e:
            report.failures += 1
            logger.warning("Eviction skipped: %s", e)
            return
        await self._announce_eviction(ctx, subscriber_id, group_id, period, report)

    async def _after_collection(
        self,
        ctx: _GroupContext,
        subscriber: Subscriber,
        period: BillingPeriod,
        result: CollectionResult,
        report: TickReport,
    ) -> None:
        report.collected += 1
        await self.notifier.notify(
            subscriber.subscriber_id,
            collected_text(ctx.policy, period, result.new_balance, self.currency_symbol),
        )
        logger.info(
            "Auto-collected %s from %s in group %s for period %s",
            ctx.policy.fee_amount,
            subscriber.subscriber_id,
            subscriber.group_id,
            period.key,
        )

    async def _announce_eviction(
        self,
        ctx: _GroupContext,
        subscriber_id: str,
        group_id: str,
        period: BillingPeriod,
        report: TickReport,
    ) -> None:
        report.evicted += 1
        await self.notifier.notify(
            group_id,
            eviction_notice(subscriber_id, ctx.policy, period, self.currency_symbol),
        )

    async def _flush(self, ctx: _GroupContext, group_id: str, report: TickReport) -> None:
        """Execute the group's queued collections and evictions."""
        notices = []
        for subscriber, period in ctx.queued_collections:
            subscriber_id = subscriber.subscriber_id
            try:
                result = ctx.collector.attempt_collection(subscriber, period, ctx.policy, ctx.now)
            except Exception as e:
                ctx.db.rollback()
                report.failures += 1
                logger.error(
                    "Queued collection failed for %s in group %s: %s",
                    subscriber_id,
                    group_id,
                    e,
                    exc_info=True,
                )
                continue
            if result.collected:
                report.collected += 1
                notices.append(
                    self.notifier.notify(
                        subscriber_id,
                        collected_text(
                            ctx.policy, period, result.new_balance, self.currency_symbol
                        ),
                    )
                )

        pending = [
            (request, period)
            for request, period in ctx.queued_evictions
            if not ctx.ledger.has_paid(request.subscriber.subscriber_id, group_id, period)
        ]
        if pending:
            periods = {request.subscriber.subscriber_id: period for request, period in pending}
            records, failures = await ctx.evictor.evict_many(
                [request for request, _ in pending], now=ctx.now
            )
            report.failures += len(failures)
            for record in records:
                report.evicted += 1
                notices.append(
                    self.notifier.notify(
                        group_id,
                        eviction_notice(
                            record.subscriber_id,
                            ctx.policy,
                            periods[record.subscriber_id],
                            self.currency_symbol,
                        ),
                    )
                )

        if notices:
            await asyncio.gather(*notices, return_exceptions=True)
        logger.info(
            "Flushed group %s: %d collection(s) queued, %d eviction(s) queued",
            group_id,
            len(ctx.queued_collections),
            len(ctx.queued_evictions),
        )

    @staticmethod
    def _claim_marker(
        db: Session, subscriber: Subscriber, period_key: str, kind: MarkerKind, offset: int
    ) -> bool:
        """Insert the marker for a notice; False if it was already sent."""
        exists = db.execute(
            select(ReminderMarker.id).where(
                ReminderMarker.subscriber_id == subscriber.subscriber_id,
                ReminderMarker.group_id == subscriber.group_id,
                ReminderMarker.period_key == period_key,
                ReminderMarker.kind == kind.value,
                ReminderMarker.offset_days == offset,
            )
        ).first()
        if exists is not None:
            return False
        try:
            db.add(
                ReminderMarker(
                    subscriber_id=subscriber.subscriber_id,
                    group_id=subscriber.group_id,
                    period_key=period_key,
                    kind=kind.value,
                    offset_days=offset,
                )
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    @staticmethod
    def _prune_markers(db: Session, group_id: str, period_key: str) -> None:
        """Drop markers of periods that can no longer be enforced."""
        result = db.execute(
            delete(ReminderMarker).where(
                ReminderMarker.group_id == str(group_id),
                ReminderMarker.period_key < period_key,
            )
        )
        db.commit()
        if result.rowcount:
            logger.debug("Pruned %d reminder marker(s) in group %s", result.rowcount, group_id)


__all__ = ["EnforcementScheduler", "TickReport"]
