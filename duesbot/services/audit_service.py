"""Audit service for logging dues administration events."""

from sqlalchemy.orm import Session

from duesbot.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries. The caller owns
    the commit, so the audit row lands in the same transaction as the change.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("policy", "subscriber", "group")
            entity_id: Identifier of the entity
            action: Action performed ("update", "credit", "evict", ...)
            actor_id: Member who performed the action (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=str(actor_id) if actor_id is not None else None,
            changes=changes,
        )
        db.add(audit)
        return audit


__all__ = ["AuditService"]
