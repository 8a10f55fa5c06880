"""Audit trail for money-moving and status-changing actions."""
from typing import Any

from sqlalchemy.orm import Session

from adslot.models.audit_log import AuditLog
from adslot.models.statuses import UserRole
from adslot.models.user import User

SYSTEM_ACTOR = "system"


def actor_type_for(user: User | None) -> str:
    if user is None:
        return SYSTEM_ACTOR
    role = UserRole(user.role)
    if role.is_admin:
        return "admin"
    if role == UserRole.DISTRIBUTOR:
        return "distributor"
    return "user"


class AuditService:
    """Rows join the caller's transaction: flushed here, committed with the change they describe."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        actor: User | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Attribute an action to a user, or to the system when actor is None (scheduled jobs)."""
        entry = AuditLog(
            actor_type=actor_type_for(actor),
            actor_id=actor.id if actor is not None else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_entity(self, entity_type: str, entity_id: str, limit: int = 200) -> list[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            .limit(limit)
            .all()
        )
