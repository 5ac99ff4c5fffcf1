"""Billing policy ORM model: per-group dues configuration."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class CycleKind(str, Enum):
    """Billing cadence."""

    MONTHLY = "monthly"
    WEEKLY = "weekly"


class BillingPolicy(Base, BaseModel):
    """Model representing the dues policy of one group.

    One row per group. Values are validated by PolicyService before they are
    written; the period calculator also clamps the due day to short months.
    """

    __tablename__ = "billing_policies"

    group_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Chat/group identifier the policy belongs to",
    )
    cycle_kind: Mapped[CycleKind] = mapped_column(
        String(16),
        nullable=False,
        default=CycleKind.MONTHLY,
        comment="Billing cadence: 'monthly' or 'weekly'",
    )
    due_day_of_month: Mapped[int] = mapped_column(
        nullable=False,
        default=1,
        comment="Due day for monthly cadence (1-28)",
    )
    due_weekday: Mapped[int] = mapped_column(
        nullable=False,
        default=5,
        comment="ISO weekday for weekly cadence (1=Monday .. 7=Sunday)",
    )
    fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Amount owed per billing period",
    )
    grace_period_days: Mapped[int] = mapped_column(
        nullable=False,
        default=3,
        comment="Days after the due date before eviction applies",
    )
    reminder_offsets_days: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [7, 3, 1],
        comment="Days before the due date on which reminders are sent",
    )
    auto_collect: Mapped[bool] = mapped_column(nullable=False, default=True)
    auto_evict: Mapped[bool] = mapped_column(nullable=False, default=True)
    admin_only: Mapped[bool] = mapped_column(
        nullable=False,
        default=False,
        comment="Restrict admin sub-commands to chat administrators",
    )

    __table_args__ = (Index("idx_billing_policy_group", "group_id", unique=True),)

    def __repr__(self) -> str:
        return (
            f"<BillingPolicy(group_id={self.group_id!r}, cycle={self.cycle_kind}, "
            f"fee={self.fee_amount}, grace={self.grace_period_days})>"
        )


__all__ = ["BillingPolicy", "CycleKind"]
