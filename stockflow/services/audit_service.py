from typing import Any

from sqlalchemy.orm import Session

from stockflow.core.id_utils import generate_id
from stockflow.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    business_id: str,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_ids: list[str] | None = None,
    description: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        id=generate_id(),
        business_id=business_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_ids=list(entity_ids or []),
        description=description,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event
