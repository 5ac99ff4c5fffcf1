"""Payment event ORM model: append-only dues ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class PaymentMethod(str, Enum):
    """How a ledger entry came to be."""

    MANUAL = "manual"
    """Member paid from the dedicated balance by command."""

    AUTO_COLLECT = "auto_collect"
    """Scheduler debited the dedicated balance on/after the due date."""

    ADMIN_CREDIT = "admin_credit"
    """Admin topped up the dedicated balance (not a dues payment)."""

    EVICTION = "eviction"
    """Terminal entry written by automatic eviction."""

    MANUAL_EVICTION = "manual_eviction"
    """Terminal entry written by an admin eviction."""


# Only these methods settle a billing period
PAYING_METHODS = (PaymentMethod.MANUAL, PaymentMethod.AUTO_COLLECT)


class PaymentEvent(Base, BaseModel):
    """Immutable ledger row.

    The ledger is the sole source of truth for "paid" status. Rows are never
    updated or deleted and carry no foreign key to subscribers, so they survive
    eviction.
    """

    __tablename__ = "payment_events"

    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Amount moved (0 for eviction entries)",
    )
    method: Mapped[PaymentMethod] = mapped_column(String(32), nullable=False)
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    days_late: Mapped[int] = mapped_column(nullable=False, default=0)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_payment_event_member", "group_id", "subscriber_id", "occurred_at"),
        Index("idx_payment_event_group_time", "group_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentEvent(subscriber_id={self.subscriber_id!r}, group_id={self.group_id!r}, "
            f"amount={self.amount}, method={self.method}, occurred_at={self.occurred_at})>"
        )


__all__ = ["PaymentEvent", "PaymentMethod", "PAYING_METHODS"]
