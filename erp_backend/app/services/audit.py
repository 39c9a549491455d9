from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime

from sqlalchemy.orm import Session

from erp_backend.app.models.audit import AuditLog
from erp_backend.app.utils.audit_sink import write_event

def record_audit(
    db: Session,
    action: str,
    entity_type: Optional[str],
    entity_id: Optional[int],
    actor: Optional[str],
    details: Dict[str, Any],
    commit: bool = True,
) -> AuditLog:
    """
    Persist an audit row. With ``commit=False`` the row joins the caller's
    transaction and the caller mirrors it with ``mirror_audit`` after commit.
    """
    row = AuditLog(action=action, entity_type=entity_type, entity_id=entity_id,
                   actor=actor, details=details)
    db.add(row)
    if not commit:
        db.flush()
        return row
    db.commit()
    db.refresh(row)
    mirror_audit(row)
    return row

def mirror_audit(row: AuditLog) -> None:
    """Mirror a committed audit row to the filesystem as JSONL."""
    write_event({
        "id": row.id,
        "action": row.action,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "actor": row.actor,
        "details": row.details or {},
        "created_at": row.created_at.isoformat() if row.created_at else datetime.utcnow().isoformat(),
    })
