"""
Append-only audit trail for money and access changes (payment confirmed,
platform plan downgraded). Callers inside a larger transaction pass
commit=False and commit themselves.
"""
from typing import Any

from sqlalchemy.orm import Session

from subgate.models.audit_log import AuditLog


class AuditService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None,
        actor_type: str = "system",
        actor_id: str | None = None,
        payload: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> AuditLog:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        self.db.add(entry)
        if commit:
            self.db.commit()
            self.db.refresh(entry)
        else:
            self.db.flush()
        return entry
