from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog

def audit(db: Session, actor_user_id: str | None, entity_type: str, entity_id: str, action: str, data: dict | None = None):
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            data=dict(data or {}),
        )
    )
