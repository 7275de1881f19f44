from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext
from stockflow.models.audit_log import AuditLog
from stockflow.schemas.audit import AuditLogListOut, AuditLogOut
from stockflow.schemas.common import PaginationMeta

router = APIRouter(prefix="/audit-logs", tags=["audit"])


def _audit_filters(
    business_id: str,
    *,
    actor_id: str | None,
    action: str | None,
    entity_type: str | None,
    entity_id: str | None,
    start_date: date | None,
    end_date: date | None,
) -> list:
    filters = [AuditLog.business_id == business_id]
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)
    if action:
        # "stock_transfer." matches every transfer transition
        if action.endswith("."):
            filters.append(AuditLog.action.startswith(action))
        else:
            filters.append(AuditLog.action == action)
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(cast(AuditLog.entity_ids, String).contains(f'"{entity_id}"'))
    if start_date:
        filters.append(func.date(AuditLog.created_at) >= start_date)
    if end_date:
        filters.append(func.date(AuditLog.created_at) <= end_date)
    return filters


@router.get(
    "",
    response_model=AuditLogListOut,
    summary="List audit logs",
    responses={**error_responses(400, 401, 403, 422, 500)},
)
def list_audit_logs(
    actor_id: str | None = Query(default=None),
    action: str | None = Query(default=None, description="Exact action, or a prefix ending in '.'"),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None, description="Only entries touching this entity, e.g. a transfer id"),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.AUDIT_VIEW)),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")

    filters = _audit_filters(
        actor.business_id,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
    )
    total = int(db.execute(select(func.count(AuditLog.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(AuditLog).where(*filters).order_by(AuditLog.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()

    items = [
        AuditLogOut(
            id=row.id,
            actor_id=row.actor_id,
            action=row.action,
            entity_type=row.entity_type,
            entity_ids=row.entity_ids or [],
            description=row.description,
            metadata_json=row.metadata_json,
            created_at=row.created_at,
        )
        for row in rows
    ]
    return AuditLogListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=len(items),
            has_next=(offset + len(items)) < total,
        ),
    )
