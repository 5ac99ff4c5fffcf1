"""Group registration and subscriber enrollment."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from duesbot.models.dues_group import DuesGroup
from duesbot.models.payment_event import PaymentEvent
from duesbot.models.subscriber import Subscriber
from duesbot.services.audit_service import AuditService
from duesbot.services.clock import to_utc, utc_now
from duesbot.services.errors import AlreadyEnrolled, GroupNotConfigured, NotEnrolled
from duesbot.services.policy_service import PolicyService, PolicySettings

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Outcome of enabling dues in a group."""

    group_id: str
    already_active: bool
    reactivated: bool
    enrolled: int
    subscriber_count: int
    policy: PolicySettings

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "group_id": self.group_id,
            "already_active": self.already_active,
            "reactivated": self.reactivated,
            "enrolled": self.enrolled,
            "subscriber_count": self.subscriber_count,
            "policy": self.policy.to_dict(),
        }


@dataclass
class DisableResult:
    group_id: str
    subscriber_count: int
    payment_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "group_id": self.group_id,
            "subscriber_count": self.subscriber_count,
            "payment_count": self.payment_count,
        }


class GroupService:
    """Service for dues group and subscriber records."""

    def __init__(self, db: Session, policy_service: PolicyService | None = None):
        """Initialize with database session and the policy service."""
        self.db = db
        self.policy_service = policy_service or PolicyService(db)

    def get_group(self, group_id: str) -> DuesGroup | None:
        return self.db.execute(
            select(DuesGroup).where(DuesGroup.group_id == str(group_id))
        ).scalar_one_or_none()

    def require_active_group(self, group_id: str) -> DuesGroup:
        """Return the group if dues are enabled in it.

        Raises:
            GroupNotConfigured: If the group is unknown or disabled
        """
        group = self.get_group(group_id)
        if group is None or not group.active:
            raise GroupNotConfigured(str(group_id))
        return group

    def list_active_groups(self) -> list[DuesGroup]:
        return list(
            self.db.execute(
                select(DuesGroup).where(DuesGroup.active.is_(True)).order_by(DuesGroup.id)
            )
            .scalars()
            .all()
        )

    def setup_group(
        self,
        group_id: str,
        member_ids: Iterable[str] = (),
        title: str | None = None,
        now: datetime | None = None,
    ) -> SetupResult:
        """Enable dues in a group and enroll the given members.

        Idempotent: an active group is left untouched. A disabled group is
        reactivated. Members already enrolled keep their records.
        """
        group_id = str(group_id)
        now = to_utc(now or utc_now())
        group = self.get_group(group_id)

        if group is not None and group.active:
            return SetupResult(
                group_id=group_id,
                already_active=True,
                reactivated=False,
                enrolled=0,
                subscriber_count=self.count_subscribers(group_id),
                policy=self.policy_service.get_policy(group_id),
            )

        reactivated = group is not None
        try:
            if group is None:
                group = DuesGroup(group_id=group_id, title=title, active=True)
                self.db.add(group)
            else:
                group.active = True
                group.disabled_at = None
                if title:
                    group.title = title

            policy = self.policy_service.ensure_policy(group_id)

            existing = set(
                self.db.execute(
                    select(Subscriber.subscriber_id).where(Subscriber.group_id == group_id)
                )
                .scalars()
                .all()
            )
            enrolled = 0
            for member_id in dict.fromkeys(str(m) for m in member_ids):
                if member_id in existing:
                    continue
                self.db.add(self._new_subscriber(member_id, group_id, now))
                enrolled += 1

            AuditService.log(
                self.db,
                "group",
                group_id,
                "reactivate" if reactivated else "setup",
                changes={"enrolled": enrolled},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Dues %s for group %s, %d member(s) enrolled",
            "reactivated" if reactivated else "enabled",
            group_id,
            enrolled,
        )
        return SetupResult(
            group_id=group_id,
            already_active=False,
            reactivated=reactivated,
            enrolled=enrolled,
            subscriber_count=self.count_subscribers(group_id),
            policy=policy,
        )

    def disable_group(
        self, group_id: str, actor_id: str | None = None, now: datetime | None = None
    ) -> DisableResult:
        """Stop enforcing dues in a group. Records are kept.

        Raises:
            GroupNotConfigured: If dues are not active in the group
        """
        group = self.require_active_group(group_id)
        try:
            group.active = False
            group.disabled_at = to_utc(now or utc_now())
            AuditService.log(self.db, "group", str(group_id), "disable", actor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        payments = self.db.execute(
            select(func.count(PaymentEvent.id)).where(PaymentEvent.group_id == str(group_id))
        ).scalar_one()
        logger.info("Dues disabled for group %s by %s", group_id, actor_id)
        return DisableResult(
            group_id=str(group_id),
            subscriber_count=self.count_subscribers(group_id),
            payment_count=payments,
        )

    def enroll(
        self, subscriber_id: str, group_id: str, now: datetime | None = None
    ) -> Subscriber:
        """Create a subscriber record with an empty dedicated balance.

        Raises:
            GroupNotConfigured: If dues are not active in the group
            AlreadyEnrolled: If the member already has a record
        """
        self.require_active_group(group_id)
        if self.find_subscriber(subscriber_id, group_id) is not None:
            raise AlreadyEnrolled(str(subscriber_id), str(group_id))

        subscriber = self._new_subscriber(str(subscriber_id), str(group_id), to_utc(now or utc_now()))
        try:
            self.db.add(subscriber)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(subscriber)
        logger.info("Enrolled %s in group %s", subscriber_id, group_id)
        return subscriber

    def find_subscriber(self, subscriber_id: str, group_id: str) -> Subscriber | None:
        return self.db.execute(
            select(Subscriber).where(
                Subscriber.subscriber_id == str(subscriber_id),
                Subscriber.group_id == str(group_id),
            )
        ).scalar_one_or_none()

    def get_subscriber(self, subscriber_id: str, group_id: str) -> Subscriber:
        """Return the subscriber record.

        Raises:
            NotEnrolled: If the member has no record in the group
        """
        subscriber = self.find_subscriber(subscriber_id, group_id)
        if subscriber is None:
            raise NotEnrolled(str(subscriber_id), str(group_id))
        return subscriber

    def list_subscribers(self, group_id: str) -> list[Subscriber]:
        return list(
            self.db.execute(
                select(Subscriber)
                .where(Subscriber.group_id == str(group_id))
                .order_by(Subscriber.id)
            )
            .scalars()
            .all()
        )

    def count_subscribers(self, group_id: str) -> int:
        return self.db.execute(
            select(func.count(Subscriber.id)).where(Subscriber.group_id == str(group_id))
        ).scalar_one()

    @staticmethod
    def _new_subscriber(subscriber_id: str, group_id: str, now: datetime) -> Subscriber:
        return Subscriber(
            subscriber_id=subscriber_id,
            group_id=group_id,
            dedicated_balance=Decimal("0"),
            joined_at=now,
            total_paid=Decimal("0"),
            payment_count=0,
        )


__all__ = ["GroupService", "SetupResult", "DisableResult"]
