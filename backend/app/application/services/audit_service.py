from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.models.audit_log import AuditLog


def log_audit_event(db: Session, *, tenant_id: UUID, action: str, metadata: dict | None = None) -> AuditLog:
    entry = AuditLog(tenant_id=tenant_id, action=action, metadata_json=metadata or {})
    db.add(entry)
    return entry


def list_audit_events(db: Session, *, tenant_id: UUID, action_prefix: str | None = None, limit: int = 50) -> list[AuditLog]:
    query = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if action_prefix:
        query = query.where(AuditLog.action.startswith(action_prefix))
    query = query.order_by(AuditLog.created_at.desc()).limit(max(1, min(limit, 500)))
    return list(db.execute(query).scalars().all())


def serialize_audit_event(entry: AuditLog) -> dict:
    return {
        "id": str(entry.id),
        "action": entry.action,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
