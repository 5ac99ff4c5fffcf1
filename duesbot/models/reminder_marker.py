"""Reminder marker ORM model: records that a notice was already sent."""

from enum import Enum

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class MarkerKind(str, Enum):
    """Kind of notice guarded by a marker."""

    REMINDER = "reminder"
    OVERDUE = "overdue"


class ReminderMarker(Base, BaseModel):
    """One row per notice actually sent.

    The unique index makes the insert the guard: a tick sends a notice only if
    it managed to insert the marker, so repeated ticks on the same day never
    send it twice.
    """

    __tablename__ = "reminder_markers"

    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    group_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period_key: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[MarkerKind] = mapped_column(String(16), nullable=False)
    offset_days: Mapped[int] = mapped_column(
        nullable=False,
        comment="Days before due (reminder) or days overdue (overdue notice)",
    )

    __table_args__ = (
        Index(
            "idx_reminder_marker_unique",
            "group_id",
            "subscriber_id",
            "period_key",
            "kind",
            "offset_days",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ReminderMarker(subscriber_id={self.subscriber_id!r}, period={self.period_key}, "
            f"kind={self.kind}, offset={self.offset_days})>"
        )


__all__ = ["ReminderMarker", "MarkerKind"]
