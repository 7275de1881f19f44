from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.errors import NotFoundError
from stockflow.core.id_utils import generate_id
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext
from stockflow.models.inventory import StockProjection
from stockflow.models.location import Location, LocationAccessScope
from stockflow.models.product import ProductVariation
from stockflow.schemas.common import PaginationMeta, pagination_meta
from stockflow.schemas.location import (
    LedgerEntryOut,
    LedgerHistoryOut,
    LocationAccessScopeListOut,
    LocationAccessScopeOut,
    LocationAccessScopeUpsertIn,
    LocationCreateIn,
    LocationListOut,
    LocationOut,
    LocationStockListOut,
    LocationStockOut,
    LocationUpdateIn,
    StockMovementIn,
)
from stockflow.services.audit_service import log_audit_event
from stockflow.services.ledger_service import list_history, record_stock_movement
from stockflow.services.location_access_service import (
    LocationAccessPort,
    ensure_location_access,
    get_location_access,
)

router = APIRouter(prefix="/locations", tags=["locations"])


def _location_in_business_or_404(db: Session, *, business_id: str, location_id: str) -> Location:
    location = db.execute(
        select(Location).where(
            Location.id == location_id,
            Location.business_id == business_id,
        )
    ).scalar_one_or_none()
    if not location:
        raise NotFoundError("Location not found", details=[{"location_id": location_id}])
    return location


def _location_out(location: Location) -> LocationOut:
    return LocationOut(
        id=location.id,
        name=location.name,
        code=location.code,
        is_active=location.is_active,
        created_at=location.created_at,
        updated_at=location.updated_at,
    )


def _scope_out(scope: LocationAccessScope) -> LocationAccessScopeOut:
    return LocationAccessScopeOut(
        id=scope.id,
        location_id=scope.location_id,
        actor_id=scope.actor_id,
        can_manage_inventory=scope.can_manage_inventory,
        created_at=scope.created_at,
    )


@router.post(
    "",
    response_model=LocationOut,
    status_code=201,
    summary="Create location",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_location(
    payload: LocationCreateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.LOCATION_MANAGE)),
):
    exists = db.execute(
        select(Location.id).where(
            Location.business_id == actor.business_id,
            func.upper(Location.code) == payload.code,
        )
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Location code already exists")

    location = Location(
        id=generate_id(),
        business_id=actor.business_id,
        name=payload.name.strip(),
        code=payload.code,
        is_active=True,
    )
    db.add(location)
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action="location.create",
        entity_type="location",
        entity_ids=[location.id],
        metadata_json={"name": location.name, "code": location.code},
    )
    db.commit()
    db.refresh(location)
    return _location_out(location)


@router.get(
    "",
    response_model=LocationListOut,
    summary="List locations",
    responses=error_responses(401, 403, 422, 500),
)
def list_locations(
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_VIEW)),
):
    count_stmt = select(func.count(Location.id)).where(Location.business_id == actor.business_id)
    stmt = select(Location).where(Location.business_id == actor.business_id)
    if not include_inactive:
        count_stmt = count_stmt.where(Location.is_active.is_(True))
        stmt = stmt.where(Location.is_active.is_(True))

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(stmt.order_by(Location.created_at.asc()).offset(offset).limit(limit)).scalars().all()
    items = [_location_out(row) for row in rows]
    count = len(items)
    return LocationListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.patch(
    "/{location_id}",
    response_model=LocationOut,
    summary="Update location",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_location(
    location_id: str,
    payload: LocationUpdateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.LOCATION_MANAGE)),
):
    location = _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    if payload.name is not None:
        location.name = payload.name
    if payload.is_active is not None:
        location.is_active = payload.is_active
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action="location.update",
        entity_type="location",
        entity_ids=[location.id],
        metadata_json={"name": location.name, "is_active": location.is_active},
    )
    db.commit()
    db.refresh(location)
    return _location_out(location)


@router.get(
    "/{location_id}/access",
    response_model=LocationAccessScopeListOut,
    summary="List actors scoped to a location",
    responses=error_responses(401, 403, 404, 500),
)
def list_location_access(
    location_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.LOCATION_MANAGE)),
):
    _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    rows = db.execute(
        select(LocationAccessScope)
        .where(
            LocationAccessScope.business_id == actor.business_id,
            LocationAccessScope.location_id == location_id,
        )
        .order_by(LocationAccessScope.created_at.asc())
    ).scalars().all()
    return LocationAccessScopeListOut(items=[_scope_out(row) for row in rows])


@router.put(
    "/{location_id}/access/{actor_id}",
    response_model=LocationAccessScopeOut,
    summary="Grant an actor access to a location",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def upsert_location_access(
    location_id: str,
    actor_id: str,
    payload: LocationAccessScopeUpsertIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.LOCATION_MANAGE)),
):
    _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    scope = db.execute(
        select(LocationAccessScope).where(
            LocationAccessScope.location_id == location_id,
            LocationAccessScope.actor_id == actor_id,
        )
    ).scalar_one_or_none()
    if not scope:
        scope = LocationAccessScope(
            id=generate_id(),
            business_id=actor.business_id,
            location_id=location_id,
            actor_id=actor_id,
            can_manage_inventory=payload.can_manage_inventory,
        )
        db.add(scope)
    else:
        scope.can_manage_inventory = payload.can_manage_inventory

    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action="location.access.upsert",
        entity_type="location_access_scope",
        entity_ids=[location_id, actor_id],
        metadata_json={"can_manage_inventory": payload.can_manage_inventory},
    )
    db.commit()
    db.refresh(scope)
    return _scope_out(scope)


@router.delete(
    "/{location_id}/access/{actor_id}",
    status_code=204,
    summary="Revoke an actor's access to a location",
    responses=error_responses(401, 403, 404, 500),
)
def delete_location_access(
    location_id: str,
    actor_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.LOCATION_MANAGE)),
):
    _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    scope = db.execute(
        select(LocationAccessScope).where(
            LocationAccessScope.business_id == actor.business_id,
            LocationAccessScope.location_id == location_id,
            LocationAccessScope.actor_id == actor_id,
        )
    ).scalar_one_or_none()
    if not scope:
        raise NotFoundError("Access scope not found", details=[{"location_id": location_id, "actor_id": actor_id}])
    db.delete(scope)
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action="location.access.delete",
        entity_type="location_access_scope",
        entity_ids=[location_id, actor_id],
    )
    db.commit()


@router.post(
    "/{location_id}/stock-movements",
    response_model=LedgerEntryOut,
    status_code=201,
    summary="Record a manual stock movement at a location",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def record_movement(
    location_id: str,
    payload: StockMovementIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_ADJUST)),
    location_access: LocationAccessPort = Depends(get_location_access),
):
    location = _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    ensure_location_access(db, location_access, actor, location.id)
    variation = db.execute(
        select(ProductVariation).where(
            ProductVariation.id == payload.product_variation_id,
            ProductVariation.business_id == actor.business_id,
        )
    ).scalar_one_or_none()
    if not variation:
        raise NotFoundError(
            "Product variation not found",
            details=[{"product_variation_id": payload.product_variation_id}],
        )

    entry = record_stock_movement(
        db,
        business_id=actor.business_id,
        product_id=variation.product_id,
        product_variation_id=variation.id,
        location_id=location.id,
        entry_type=payload.entry_type,
        quantity=payload.quantity,
        actor_id=actor.actor_id,
        reference_id=payload.reference_id,
        note=payload.note,
    )
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action=f"inventory.{entry.entry_type}",
        entity_type="stock_ledger_entry",
        entity_ids=[entry.id],
        metadata_json={
            "location_id": location.id,
            "product_variation_id": variation.id,
            "quantity_delta": entry.quantity_delta,
            "balance_after": entry.balance_after,
        },
    )
    db.commit()
    db.refresh(entry)
    return LedgerEntryOut.model_validate(entry, from_attributes=True)


@router.get(
    "/{location_id}/stock",
    response_model=LocationStockListOut,
    summary="Current stock per variation at a location",
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_location_stock(
    location_id: str,
    product_variation_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_VIEW)),
    location_access: LocationAccessPort = Depends(get_location_access),
):
    location = _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    ensure_location_access(db, location_access, actor, location.id)

    filters = [
        StockProjection.business_id == actor.business_id,
        StockProjection.location_id == location.id,
    ]
    if product_variation_id:
        filters.append(StockProjection.product_variation_id == product_variation_id)
    total = int(db.execute(select(func.count(StockProjection.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockProjection)
        .where(*filters)
        .order_by(StockProjection.product_variation_id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [
        LocationStockOut(
            location_id=row.location_id,
            product_id=row.product_id,
            product_variation_id=row.product_variation_id,
            quantity_available=row.quantity_available,
            selling_price=row.selling_price,
            last_updated_at=row.last_updated_at,
        )
        for row in rows
    ]
    return LocationStockListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/{location_id}/ledger",
    response_model=LedgerHistoryOut,
    summary="Ledger history at a location, newest first",
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_location_ledger(
    location_id: str,
    product_variation_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.INVENTORY_VIEW)),
    location_access: LocationAccessPort = Depends(get_location_access),
):
    location = _location_in_business_or_404(db, business_id=actor.business_id, location_id=location_id)
    ensure_location_access(db, location_access, actor, location.id)
    rows, total = list_history(
        db,
        business_id=actor.business_id,
        location_id=location.id,
        product_variation_id=product_variation_id,
        limit=limit,
        offset=offset,
    )
    items = [LedgerEntryOut.model_validate(row, from_attributes=True) for row in rows]
    return LedgerHistoryOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
    )
