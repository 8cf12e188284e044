from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog


def log_audit(
    db: Session,
    *,
    acting_user_id: str | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            acting_user_id=acting_user_id,
            action=action,
            ip=ip,
            meta=metadata or {},
        )
    )


def list_audit_entries(
    db: Session,
    *,
    action: str | None = None,
    acting_user_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
    if action:
        query = query.where(AuditLog.action == action)
    if acting_user_id:
        query = query.where(AuditLog.acting_user_id == acting_user_id)
    return db.execute(query).scalars().all()
