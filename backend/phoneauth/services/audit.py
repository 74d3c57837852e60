from sqlalchemy.orm import Session

from phoneauth.models.audit_log import AuditLog


def audit(db: Session, actor_user_id, entity_type: str, entity_id, action: str, data: dict | None = None):
    db.add(AuditLog(
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        data=data or {},
    ))
