"""Subscriber ORM model: a member enrolled for dues in one group."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class Subscriber(Base, BaseModel):
    """Model representing a member's dues account inside a group.

    Holds the dedicated balance (funds ring-fenced for dues, distinct from the
    member's primary wallet) and a running payment summary. Deleted on
    eviction; payment events outlive it.
    """

    __tablename__ = "subscribers"

    subscriber_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Member identifier (Telegram user id)",
    )
    group_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Group the member is enrolled in",
    )
    dedicated_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Collected funds reserved for dues",
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_paid_period_key: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Key (period start date) of the last period paid",
    )
    total_paid: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
    )
    payment_count: Mapped[int] = mapped_column(nullable=False, default=0)

    __table_args__ = (
        Index("idx_subscriber_member_group", "subscriber_id", "group_id", unique=True),
        Index("idx_subscriber_group", "group_id"),
        CheckConstraint("dedicated_balance >= 0", name="ck_subscriber_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscriber(subscriber_id={self.subscriber_id!r}, group_id={self.group_id!r}, "
            f"balance={self.dedicated_balance})>"
        )


__all__ = ["Subscriber"]
