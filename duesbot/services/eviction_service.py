"""Eviction executor.

Membership removal always runs first. Local records (subscriber row, reminder
markers) are only deleted, and the terminal ledger entry only written, after
the membership collaborator confirmed the removal.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import delete
from sqlalchemy.orm import Session

from duesbot.models.payment_event import PaymentEvent, PaymentMethod
from duesbot.models.reminder_marker import ReminderMarker
from duesbot.models.subscriber import Subscriber
from duesbot.services.audit_service import AuditService
from duesbot.services.clock import to_utc, utc_now
from duesbot.services.collaborators import MembershipGateway
from duesbot.services.errors import MembershipRemovalFailed

logger = logging.getLogger(__name__)

EVICTION_METHODS = (PaymentMethod.EVICTION, PaymentMethod.MANUAL_EVICTION)


@dataclass
class EvictionRequest:
    """A queued eviction (used by batch flushes)."""

    subscriber: Subscriber
    reason: str
    method: PaymentMethod = PaymentMethod.EVICTION
    days_overdue: int = 0
    actor_id: str | None = None


@dataclass
class EvictionRecord:
    """Terminal summary of an executed eviction."""

    subscriber_id: str
    group_id: str
    method: PaymentMethod
    reason: str
    days_overdue: int
    final_balance: Decimal
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "subscriber_id": self.subscriber_id,
            "group_id": self.group_id,
            "method": self.method.value,
            "reason": self.reason,
            "days_overdue": self.days_overdue,
            "final_balance": self.final_balance,
            "occurred_at": self.occurred_at.isoformat(),
        }


def overdue_reason(days_overdue: int, grace_period_days: int) -> str:
    return (
        f"Evicted after {days_overdue} days overdue "
        f"(grace period: {grace_period_days} days)"
    )


MANUAL_REASON = "Manual eviction by admin"


class EvictionExecutor:
    """Removes subscribers from their group and closes their dues record."""

    def __init__(self, db: Session, membership: MembershipGateway):
        self.db = db
        self.membership = membership

    async def _remove_member(self, subscriber: Subscriber) -> None:
        try:
            removed = await self.membership.remove_member(
                subscriber.group_id, subscriber.subscriber_id
            )
        except Exception as e:
            raise MembershipRemovalFailed(
                subscriber.subscriber_id, subscriber.group_id, str(e)
            ) from e
        if not removed:
            raise MembershipRemovalFailed(
                subscriber.subscriber_id, subscriber.group_id, "removal not confirmed"
            )

    async def evict(
        self,
        subscriber: Subscriber,
        reason: str,
        method: PaymentMethod = PaymentMethod.EVICTION,
        days_overdue: int = 0,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> EvictionRecord:
        """Remove the member, then delete the record and append the terminal event.

        Raises:
            MembershipRemovalFailed: If removal was not confirmed; nothing local
                is touched in that case
        """
        request = EvictionRequest(subscriber, reason, method, days_overdue, actor_id)
        await self._remove_member(subscriber)
        now = to_utc(now or utc_now())
        try:
            record = self._stage(request, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(
                "Member %s was removed from group %s but the dues record could not be closed",
                subscriber.subscriber_id,
                subscriber.group_id,
                exc_info=True,
            )
            raise

        logger.info(
            "Evicted %s from group %s (%s): %s",
            record.subscriber_id,
            record.group_id,
            method.value,
            reason,
        )
        return record

    async def evict_many(
        self, requests: Iterable[EvictionRequest], now: datetime | None = None
    ) -> tuple[list[EvictionRecord], list[MembershipRemovalFailed]]:
        """Run queued evictions together.

        Removals run concurrently; every confirmed removal is then closed in a
        single commit. Unconfirmed removals are returned as failures and leave
        their records untouched.
        """
        requests = list(requests)
        if not requests:
            return [], []

        outcomes = await asyncio.gather(
            *(self._remove_member(request.subscriber) for request in requests),
            return_exceptions=True,
        )

        confirmed: list[EvictionRequest] = []
        failures: list[MembershipRemovalFailed] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, MembershipRemovalFailed):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                failures.append(
                    MembershipRemovalFailed(
                        request.subscriber.subscriber_id,
                        request.subscriber.group_id,
                        str(outcome),
                    )
                )
            else:
                confirmed.append(request)

        now = to_utc(now or utc_now())
        records: list[EvictionRecord] = []
        if confirmed:
            try:
                records = [self._stage(request, now) for request in confirmed]
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.error(
                    "Batch eviction removed %d member(s) but their records could not be closed",
                    len(confirmed),
                    exc_info=True,
                )
                raise

        logger.info(
            "Batch eviction: %d evicted, %d removal failure(s)", len(records), len(failures)
        )
        return records, failures

    def _stage(self, request: EvictionRequest, now: datetime) -> EvictionRecord:
        subscriber = request.subscriber
        record = EvictionRecord(
            subscriber_id=subscriber.subscriber_id,
            group_id=subscriber.group_id,
            method=request.method,
            reason=request.reason,
            days_overdue=request.days_overdue,
            final_balance=Decimal(str(subscriber.dedicated_balance)),
            occurred_at=now,
        )

        self.db.execute(
            delete(ReminderMarker).where(
                ReminderMarker.subscriber_id == record.subscriber_id,
                ReminderMarker.group_id == record.group_id,
            )
        )
        self.db.execute(
            delete(Subscriber).where(Subscriber.id == subscriber.id)
        )
        self.db.add(
            PaymentEvent(
                subscriber_id=record.subscriber_id,
                group_id=record.group_id,
                amount=Decimal("0"),
                method=request.method.value,
                days_late=request.days_overdue,
                reason=request.reason,
                occurred_at=now,
            )
        )
        AuditService.log(
            self.db,
            "subscriber",
            f"{record.group_id}:{record.subscriber_id}",
            "evict",
            request.actor_id,
            {
                "method": request.method.value,
                "days_overdue": request.days_overdue,
                "final_balance": str(record.final_balance),
            },
        )
        return record


__all__ = [
    "EvictionExecutor",
    "EvictionRecord",
    "EvictionRequest",
    "EVICTION_METHODS",
    "MANUAL_REASON",
    "overdue_reason",
]
