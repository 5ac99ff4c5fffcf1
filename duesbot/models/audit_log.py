"""Audit log model for tracking dues administration events."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from duesbot.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for tracking changes to key entities.

    Records who (actor_id) did what (action) to which entity (entity_type,
    entity_id) and optional field snapshots (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(32), index=False)
    """Entity type being audited: "policy", "subscriber", "group"."""

    entity_id: Mapped[str] = mapped_column(String(128), index=False)
    """Identifier of the entity being audited (group id or "group:member")."""

    action: Mapped[str] = mapped_column(String(32), index=False)
    """Action performed: "update", "credit", "evict", "setup", "disable"."""

    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=False)
    """Member who performed the action. None for scheduler actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot of changed fields: {"fee_amount": "60000"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
