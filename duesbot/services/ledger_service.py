"""Payment ledger and payment-status resolution.

The ``payment_events`` table is append-only and is the only thing consulted to
decide whether a period is paid. Writes that touch both the ledger and a
subscriber's balance happen in one commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from duesbot.models.payment_event import PAYING_METHODS, PaymentEvent, PaymentMethod
from duesbot.models.subscriber import Subscriber
from duesbot.services.audit_service import AuditService
from duesbot.services.clock import to_utc, utc_now
from duesbot.services.errors import InsufficientFunds, InvalidAmount, NotEnrolled
from duesbot.services.period_service import BillingPeriod
from duesbot.services.status import is_billed

logger = logging.getLogger(__name__)

_PAYING_VALUES = [method.value for method in PAYING_METHODS]


@dataclass
class PaymentReceipt:
    """Outcome of a successful ledger write."""

    subscriber_id: str
    group_id: str
    amount: Decimal
    method: PaymentMethod
    new_balance: Decimal
    occurred_at: datetime
    period_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "subscriber_id": self.subscriber_id,
            "group_id": self.group_id,
            "amount": self.amount,
            "method": self.method.value,
            "new_balance": self.new_balance,
            "occurred_at": self.occurred_at.isoformat(),
            "period_key": self.period_key,
        }


def _paid_in_period_clause(period: BillingPeriod):
    start = to_utc(period.period_start)
    end = to_utc(period.period_end)
    return and_(
        PaymentEvent.method.in_(_PAYING_VALUES),
        or_(
            PaymentEvent.period_start == start,
            and_(
                PaymentEvent.period_start.is_(None),
                PaymentEvent.occurred_at.between(start, end),
            ),
        ),
    )


class LedgerService:
    """Service for payment ledger operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def has_paid(self, subscriber_id: str, group_id: str, period: BillingPeriod) -> bool:
        """Whether a paying event settles ``period`` for the subscriber.

        An event settles the period if it was recorded against the period
        (late payments included). Events that carry no period fall back to
        their timestamp. Admin credits and eviction entries never count.
        """
        stmt = (
            select(PaymentEvent.id)
            .where(
                PaymentEvent.subscriber_id == str(subscriber_id),
                PaymentEvent.group_id == str(group_id),
                _paid_in_period_clause(period),
            )
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    def oldest_unpaid(
        self, subscriber: Subscriber, periods: list[BillingPeriod]
    ) -> BillingPeriod | None:
        """First period in ``periods`` the subscriber is billed for and has not paid."""
        for period in periods:
            if not is_billed(period, subscriber.joined_at):
                continue
            if not self.has_paid(subscriber.subscriber_id, subscriber.group_id, period):
                return period
        return None

    def paid_subscriber_ids(self, group_id: str, period: BillingPeriod) -> set[str]:
        """Ids of every subscriber in the group who has paid ``period``."""
        stmt = select(PaymentEvent.subscriber_id).where(
            PaymentEvent.group_id == str(group_id),
            _paid_in_period_clause(period),
        )
        return {row[0] for row in self.db.execute(stmt).all()}

    def record_payment(
        self,
        subscriber: Subscriber,
        period: BillingPeriod,
        amount: Decimal,
        method: PaymentMethod,
        now: datetime | None = None,
    ) -> PaymentReceipt:
        """Debit the dedicated balance and append the payment event.

        The balance check and debit are one conditional UPDATE; the event row
        and the summary fields are committed together with it.

        Raises:
            InvalidAmount: If amount is not positive
            InsufficientFunds: If the dedicated balance does not cover amount
            NotEnrolled: If the subscriber record no longer exists
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(amount)
        now = to_utc(now or utc_now())
        row_id, subscriber_id, group_id = subscriber.id, subscriber.subscriber_id, subscriber.group_id

        try:
            result = self.db.execute(
                update(Subscriber)
                .where(
                    Subscriber.id == row_id,
                    Subscriber.dedicated_balance >= amount,
                )
                .values(
                    dedicated_balance=Subscriber.dedicated_balance - amount,
                    total_paid=Subscriber.total_paid + amount,
                    payment_count=Subscriber.payment_count + 1,
                    last_paid_at=now,
                    last_paid_period_key=period.key,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                available = self.db.execute(
                    select(Subscriber.dedicated_balance).where(Subscriber.id == row_id)
                ).scalar_one_or_none()
                if available is None:
                    raise NotEnrolled(subscriber_id, group_id)
                raise InsufficientFunds(amount, Decimal(str(available)))

            self.db.add(
                PaymentEvent(
                    subscriber_id=subscriber.subscriber_id,
                    group_id=subscriber.group_id,
                    amount=amount,
                    method=method.value,
                    period_start=to_utc(period.period_start),
                    period_end=to_utc(period.period_end),
                    days_late=period.days_overdue,
                    reason=f"Dues for period {period.key}",
                    occurred_at=now,
                )
            )
            self.db.commit()
        except (InsufficientFunds, NotEnrolled):
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(subscriber)
        logger.info(
            "Recorded %s payment of %s for %s in group %s (period %s)",
            method.value,
            amount,
            subscriber.subscriber_id,
            subscriber.group_id,
            period.key,
        )
        return PaymentReceipt(
            subscriber_id=subscriber.subscriber_id,
            group_id=subscriber.group_id,
            amount=amount,
            method=method,
            new_balance=Decimal(str(subscriber.dedicated_balance)),
            occurred_at=now,
            period_key=period.key,
        )

    def record_admin_credit(
        self,
        subscriber: Subscriber,
        amount: Decimal,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> PaymentReceipt:
        """Top up the dedicated balance on an admin's behalf.

        Appends an AdminCredit event, which does not settle any period.

        Raises:
            InvalidAmount: If amount is not positive
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(amount)
        now = to_utc(now or utc_now())

        try:
            result = self.db.execute(
                update(Subscriber)
                .where(Subscriber.id == subscriber.id)
                .values(dedicated_balance=Subscriber.dedicated_balance + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise NotEnrolled(subscriber.subscriber_id, subscriber.group_id)

            self.db.add(
                PaymentEvent(
                    subscriber_id=subscriber.subscriber_id,
                    group_id=subscriber.group_id,
                    amount=amount,
                    method=PaymentMethod.ADMIN_CREDIT.value,
                    reason="Admin credit",
                    occurred_at=now,
                )
            )
            AuditService.log(
                self.db,
                "subscriber",
                f"{subscriber.group_id}:{subscriber.subscriber_id}",
                "credit",
                actor_id,
                {"amount": str(amount)},
            )
            self.db.commit()
        except NotEnrolled:
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(subscriber)
        logger.info(
            "Admin %s credited %s to %s in group %s",
            actor_id,
            amount,
            subscriber.subscriber_id,
            subscriber.group_id,
        )
        return PaymentReceipt(
            subscriber_id=subscriber.subscriber_id,
            group_id=subscriber.group_id,
            amount=amount,
            method=PaymentMethod.ADMIN_CREDIT,
            new_balance=Decimal(str(subscriber.dedicated_balance)),
            occurred_at=now,
        )

    def recent_payments(
        self, group_id: str, subscriber_id: str | None = None, limit: int = 5
    ) -> list[PaymentEvent]:
        """Most recent paying events, newest first."""
        stmt = select(PaymentEvent).where(
            PaymentEvent.group_id == str(group_id),
            PaymentEvent.method.in_(_PAYING_VALUES),
        )
        if subscriber_id is not None:
            stmt = stmt.where(PaymentEvent.subscriber_id == str(subscriber_id))
        stmt = stmt.order_by(PaymentEvent.occurred_at.desc(), PaymentEvent.id.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_events(self, group_id: str, method: PaymentMethod | None = None) -> int:
        stmt = select(func.count(PaymentEvent.id)).where(PaymentEvent.group_id == str(group_id))
        if method is not None:
            stmt = stmt.where(PaymentEvent.method == method.value)
        return self.db.execute(stmt).scalar_one()

    def paying_totals(self, group_id: str) -> tuple[int, Decimal]:
        """(number of paying events, revenue) for the group."""
        count, revenue = self.db.execute(
            select(func.count(PaymentEvent.id), func.coalesce(func.sum(PaymentEvent.amount), 0))
            .where(
                PaymentEvent.group_id == str(group_id),
                PaymentEvent.method.in_(_PAYING_VALUES),
            )
        ).one()
        return count, Decimal(str(revenue))


__all__ = ["LedgerService", "PaymentReceipt"]
