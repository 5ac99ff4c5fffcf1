"""Read-only dues reports: member status, defaulters and group statistics."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from duesbot.models.payment_event import PaymentEvent
from duesbot.services.collaborators import WalletGateway
from duesbot.services.eviction_service import EVICTION_METHODS
from duesbot.services.group_service import GroupService
from duesbot.services.ledger_service import LedgerService
from duesbot.services.period_service import BillingPeriod, compute_period, enforceable_periods
from duesbot.services.policy_service import PolicyService, PolicySettings
from duesbot.services.status import EnforcementState, project_state

logger = logging.getLogger(__name__)


@dataclass
class SubscriberStatus:
    subscriber_id: str
    group_id: str
    state: EnforcementState
    period: BillingPeriod
    fee: Decimal
    dedicated_balance: Decimal
    wallet_balance: Decimal | None
    joined_at: datetime
    payment_count: int
    grace_days_left: int
    recent: list[PaymentEvent] = field(default_factory=list)

    @property
    def paid(self) -> bool:
        return self.state == EnforcementState.PAID

    @property
    def shortfall(self) -> Decimal:
        if self.paid:
            return Decimal("0")
        return max(Decimal("0"), self.fee - self.dedicated_balance)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "group_id": self.group_id,
            "state": self.state.value,
            "period_key": self.period.key,
            "due_date": self.period.due_date.isoformat(),
            "fee": self.fee,
            "dedicated_balance": self.dedicated_balance,
            "wallet_balance": self.wallet_balance,
            "shortfall": self.shortfall,
            "payment_count": self.payment_count,
            "grace_days_left": self.grace_days_left,
        }


@dataclass
class Defaulter:
    subscriber_id: str
    period: BillingPeriod
    days_overdue: int
    grace_days_left: int
    will_be_evicted: bool
    can_pay_now: bool
    dedicated_balance: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "period_key": self.period.key,
            "days_overdue": self.days_overdue,
            "grace_days_left": self.grace_days_left,
            "will_be_evicted": self.will_be_evicted,
            "can_pay_now": self.can_pay_now,
            "dedicated_balance": self.dedicated_balance,
        }


@dataclass
class DefaultersReport:
    policy: PolicySettings
    period: BillingPeriod
    subscriber_count: int
    defaulters: list[Defaulter]

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_key": self.period.key,
            "subscriber_count": self.subscriber_count,
            "defaulters": [d.to_dict() for d in self.defaulters],
        }


@dataclass
class GroupStats:
    policy: PolicySettings
    period: BillingPeriod
    subscriber_count: int
    payment_count: int
    revenue: Decimal
    eviction_count: int
    paid_count: int
    recent: list[PaymentEvent] = field(default_factory=list)

    @property
    def payment_rate(self) -> int:
        """Percentage of current subscribers who paid the active period."""
        if self.subscriber_count == 0:
            return 0
        return round(self.paid_count * 100 / self.subscriber_count)

    @property
    def period_target(self) -> Decimal:
        return self.policy.fee_amount * self.subscriber_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_count": self.subscriber_count,
            "payment_count": self.payment_count,
            "revenue": self.revenue,
            "eviction_count": self.eviction_count,
            "paid_count": self.paid_count,
            "payment_rate": self.payment_rate,
            "period_target": self.period_target,
            "period_key": self.period.key,
        }


class ReportService:
    """Builds reports for the command layer."""

    def __init__(
        self,
        db: Session,
        policy_service: PolicyService | None = None,
        wallet: WalletGateway | None = None,
    ):
        self.db = db
        self.policy_service = policy_service or PolicyService(db)
        self.groups = GroupService(db, self.policy_service)
        self.ledger = LedgerService(db)
        self.wallet = wallet

    async def subscriber_status(
        self, subscriber_id: str, group_id: str, now: datetime, history: int = 0
    ) -> SubscriberStatus:
        """Status of one member for the oldest period they still owe.

        Unpaid arrears take precedence over the active period.

        Raises:
            GroupNotConfigured: If the group has no policy
            NotEnrolled: If the member has no record
        """
        policy = self.policy_service.get_policy(group_id)
        subscriber = self.groups.get_subscriber(subscriber_id, group_id)
        *arrears, current = enforceable_periods(policy, now, policy.grace_period_days)
        period = self.ledger.oldest_unpaid(subscriber, arrears) or current
        paid = self.ledger.has_paid(subscriber_id, group_id, period)
        wallet_balance = None
        if self.wallet is not None:
            wallet_balance = await self.wallet.get_balance(str(subscriber_id))

        return SubscriberStatus(
            subscriber_id=subscriber.subscriber_id,
            group_id=subscriber.group_id,
            state=project_state(policy, period, paid, now, subscriber.joined_at),
            period=period,
            fee=policy.fee_amount,
            dedicated_balance=Decimal(str(subscriber.dedicated_balance)),
            wallet_balance=wallet_balance,
            joined_at=subscriber.joined_at,
            payment_count=subscriber.payment_count,
            grace_days_left=period.grace_days_left(policy.grace_period_days),
            recent=(
                self.ledger.recent_payments(group_id, subscriber_id, limit=history)
                if history
                else []
            ),
        )

    def defaulters(self, group_id: str, now: datetime) -> DefaultersReport:
        """Billed members with an unpaid overdue period, most overdue first.

        Arrears still under enforcement count as well as the active period,
        so a member does not drop off the list when the calendar rolls over.
        """
        policy = self.policy_service.get_policy(group_id)
        periods = enforceable_periods(policy, now, policy.grace_period_days)
        overdue = [p for p in periods if p.is_overdue]
        subscribers = self.groups.list_subscribers(group_id)

        defaulters = []
        for subscriber in subscribers:
            period = self.ledger.oldest_unpaid(subscriber, overdue)
            if period is None:
                continue
            state = project_state(policy, period, False, now, subscriber.joined_at)
            balance = Decimal(str(subscriber.dedicated_balance))
            defaulters.append(
                Defaulter(
                    subscriber_id=subscriber.subscriber_id,
                    period=period,
                    days_overdue=period.days_overdue,
                    grace_days_left=period.grace_days_left(policy.grace_period_days),
                    will_be_evicted=state == EnforcementState.EVICTED,
                    can_pay_now=balance >= policy.fee_amount,
                    dedicated_balance=balance,
                )
            )
        defaulters.sort(key=lambda d: d.days_overdue, reverse=True)

        logger.debug(
            "Found %d defaulter(s) out of %d subscriber(s) in group %s",
            len(defaulters),
            len(subscribers),
            group_id,
        )
        return DefaultersReport(
            policy=policy,
            period=periods[-1],
            subscriber_count=len(subscribers),
            defaulters=defaulters,
        )

    def group_stats(self, group_id: str, now: datetime, recent: int = 5) -> GroupStats:
        policy = self.policy_service.get_policy(group_id)
        period = compute_period(policy, now)
        subscriber_ids = {s.subscriber_id for s in self.groups.list_subscribers(group_id)}
        payment_count, revenue = self.ledger.paying_totals(group_id)
        evictions = sum(self.ledger.count_events(group_id, method) for method in EVICTION_METHODS)
        paid_ids = self.ledger.paid_subscriber_ids(group_id, period) & subscriber_ids

        return GroupStats(
            policy=policy,
            period=period,
            subscriber_count=len(subscriber_ids),
            payment_count=payment_count,
            revenue=revenue,
            eviction_count=evictions,
            paid_count=len(paid_ids),
            recent=self.ledger.recent_payments(group_id, limit=recent),
        )


__all__ = [
    "ReportService",
    "SubscriberStatus",
    "Defaulter",
    "DefaultersReport",
    "GroupStats",
]
