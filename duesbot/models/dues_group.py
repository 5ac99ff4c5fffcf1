"""Dues group ORM model: a chat in which recurring dues are enforced."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class DuesGroup(Base, BaseModel):
    """Model representing a group registered for dues enforcement.

    Only active groups are visited by the enforcement tick.
    """

    __tablename__ = "dues_groups"

    group_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Chat/group identifier",
    )
    title: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Chat title at setup time",
    )
    active: Mapped[bool] = mapped_column(nullable=False, default=True)
    disabled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("idx_dues_group_id", "group_id", unique=True),
        Index("idx_dues_group_active", "active"),
    )

    def __repr__(self) -> str:
        return f"<DuesGroup(group_id={self.group_id!r}, active={self.active})>"


__all__ = ["DuesGroup"]
