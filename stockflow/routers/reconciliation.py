from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db, get_notifier
from stockflow.core.errors import NotFoundError
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext
from stockflow.models.location import Location
from stockflow.models.reconciliation import ReconciliationRun
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.reconciliation import (
    ReconciliationRunIn,
    ReconciliationRunListOut,
    ReconciliationRunOut,
    variances_from_json,
)
from stockflow.services.notification_provider import NotificationProvider
from stockflow.services.reconciliation_service import list_runs, run_reconciliation

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


def _run_out(run: ReconciliationRun) -> ReconciliationRunOut:
    return ReconciliationRunOut(
        id=run.id,
        mode=run.mode,
        location_id=run.location_id,
        triggered_by=run.triggered_by,
        checked_pairs=run.checked_pairs,
        variance_count=run.variance_count,
        corrections_written=run.corrections_written,
        variances=variances_from_json(run.variances_json),
        started_at=run.started_at,
        finished_at=run.finished_at,
    )


@router.post(
    "/runs",
    response_model=ReconciliationRunOut,
    status_code=201,
    summary="Reconcile projections against the ledger",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_run(
    payload: ReconciliationRunIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_RECONCILE)),
    notifier: NotificationProvider = Depends(get_notifier),
):
    if payload.location_id:
        location = db.get(Location, payload.location_id)
        if not location or location.business_id != actor.business_id:
            raise NotFoundError("Location not found", details=[{"location_id": payload.location_id}])
    result = run_reconciliation(
        db,
        business_id=actor.business_id,
        mode=payload.mode,
        location_id=payload.location_id,
        actor_id=actor.actor_id,
        force=payload.force,
        notifier=notifier,
    )
    return _run_out(result.run)


@router.get(
    "/runs",
    response_model=ReconciliationRunListOut,
    summary="List reconciliation runs",
    responses=error_responses(401, 403, 422, 500),
)
def list_reconciliation_runs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_RECONCILE)),
):
    rows, total = list_runs(db, business_id=actor.business_id, limit=limit, offset=offset)
    items = [_run_out(row) for row in rows]
    return ReconciliationRunListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )
