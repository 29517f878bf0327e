"""
Audit trail helpers

Entries are added to the caller's session and committed with the caller's
transaction, so an audited change and its audit row succeed or fail together.
"""
from typing import Optional
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog


def record_audit(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    center_id: Optional[str] = None,
    user_id: Optional[str] = None,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    entry = AuditLog(
        center_id=center_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.add(entry)
    return entry
