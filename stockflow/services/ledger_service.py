from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockflow.core.errors import InsufficientStockError, LedgerWriteFailure, TransferValidationError
from stockflow.core.id_utils import generate_id
from stockflow.models.inventory import StockLedgerEntry, StockProjection
from stockflow.models.product import ProductVariation

WORKFLOW_ENTRY_TYPES = {"transfer_in", "transfer_out", "correction"}

# Fixed sign per manual movement type; 0 means the caller supplies a signed delta.
MOVEMENT_SIGNS: dict[str, int] = {
    "opening": 1,
    "purchase": 1,
    "sale": -1,
    "sale_void": 1,
    "customer_return": 1,
    "supplier_return": -1,
    "adjustment": 0,
}


@dataclass(frozen=True, order=True)
class LedgerKey:
    product_variation_id: str
    location_id: str


def _projection_query(business_id: str, key: LedgerKey):
    return select(StockProjection).where(
        StockProjection.business_id == business_id,
        StockProjection.product_variation_id == key.product_variation_id,
        StockProjection.location_id == key.location_id,
    )


def get_projection(db: Session, *, business_id: str, key: LedgerKey) -> StockProjection | None:
    return db.execute(_projection_query(business_id, key)).scalar_one_or_none()


def get_available_quantity(db: Session, *, business_id: str, product_variation_id: str, location_id: str) -> int:
    projection = get_projection(
        db,
        business_id=business_id,
        key=LedgerKey(product_variation_id=product_variation_id, location_id=location_id),
    )
    return projection.quantity_available if projection else 0


def lock_projection(db: Session, *, business_id: str, product_id: str, key: LedgerKey) -> StockProjection:
    """Row-lock the projection for a key, creating it on first use."""
    projection = db.execute(_projection_query(business_id, key).with_for_update()).scalar_one_or_none()
    if projection:
        return projection

    selling_price = db.execute(
        select(ProductVariation.selling_price).where(ProductVariation.id == key.product_variation_id)
    ).scalar_one_or_none()
    projection = StockProjection(
        id=generate_id(),
        business_id=business_id,
        product_id=product_id,
        product_variation_id=key.product_variation_id,
        location_id=key.location_id,
        quantity_available=0,
        selling_price=selling_price,
    )
    try:
        with db.begin_nested():
            db.add(projection)
    except IntegrityError:
        # another writer created the row first
        projection = db.execute(_projection_query(business_id, key).with_for_update()).scalar_one()
    return projection


def lock_projections(
    db: Session,
    *,
    business_id: str,
    keys: dict[LedgerKey, str],
) -> dict[LedgerKey, StockProjection]:
    """Lock several keys in sorted order. `keys` maps each key to its product id."""
    locked: dict[LedgerKey, StockProjection] = {}
    for key in sorted(keys):
        locked[key] = lock_projection(db, business_id=business_id, product_id=keys[key], key=key)
    return locked


def _last_entry(db: Session, *, business_id: str, key: LedgerKey) -> StockLedgerEntry | None:
    return db.execute(
        select(StockLedgerEntry)
        .where(
            StockLedgerEntry.business_id == business_id,
            StockLedgerEntry.product_variation_id == key.product_variation_id,
            StockLedgerEntry.location_id == key.location_id,
        )
        .order_by(StockLedgerEntry.sequence_no.desc())
        .limit(1)
    ).scalar_one_or_none()


def ledger_sum(db: Session, *, business_id: str, key: LedgerKey) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(StockLedgerEntry.quantity_delta), 0)).where(
            StockLedgerEntry.business_id == business_id,
            StockLedgerEntry.product_variation_id == key.product_variation_id,
            StockLedgerEntry.location_id == key.location_id,
        )
    ).scalar_one()
    return int(total)


def append_entry(
    db: Session,
    *,
    business_id: str,
    product_id: str,
    product_variation_id: str,
    location_id: str,
    entry_type: str,
    quantity_delta: int,
    actor_id: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    note: str | None = None,
    apply_to_projection: bool = True,
) -> StockLedgerEntry:
    """
    Append one immutable ledger row and apply its delta to the projection.

    The projection row is locked for the duration of the caller's transaction.
    Correction entries pass apply_to_projection=False: they realign the ledger
    with a projection that is already authoritative.
    """
    if quantity_delta == 0:
        raise TransferValidationError("Ledger entries must move a non-zero quantity")

    key = LedgerKey(product_variation_id=product_variation_id, location_id=location_id)
    try:
        projection = lock_projection(db, business_id=business_id, product_id=product_id, key=key)

        if apply_to_projection and quantity_delta < 0:
            if projection.quantity_available + quantity_delta < 0:
                raise InsufficientStockError(
                    "Insufficient stock at location",
                    details=[
                        {
                            "product_variation_id": product_variation_id,
                            "location_id": location_id,
                            "requested": -quantity_delta,
                            "available": projection.quantity_available,
                        }
                    ],
                )

        previous = _last_entry(db, business_id=business_id, key=key)
        previous_balance = previous.balance_after if previous else 0
        entry = StockLedgerEntry(
            id=generate_id(),
            business_id=business_id,
            product_id=product_id,
            product_variation_id=product_variation_id,
            location_id=location_id,
            entry_type=entry_type,
            quantity_delta=quantity_delta,
            balance_after=previous_balance + quantity_delta,
            sequence_no=(previous.sequence_no + 1) if previous else 1,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            actor_id=actor_id,
        )
        db.add(entry)
        if apply_to_projection:
            projection.quantity_available = projection.quantity_available + quantity_delta
        db.flush()
    except StaleDataError:
        raise
    except SQLAlchemyError as exc:
        raise LedgerWriteFailure(
            "Failed to append ledger entry",
            details=[
                {
                    "product_variation_id": product_variation_id,
                    "location_id": location_id,
                    "entry_type": entry_type,
                }
            ],
        ) from exc
    return entry


def record_stock_movement(
    db: Session,
    *,
    business_id: str,
    product_id: str,
    product_variation_id: str,
    location_id: str,
    entry_type: str,
    quantity: int,
    actor_id: str,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockLedgerEntry:
    """Manual movements outside the transfer workflow (seeding, sales, returns, adjustments)."""
    if entry_type in WORKFLOW_ENTRY_TYPES:
        raise TransferValidationError(f"Entry type '{entry_type}' is reserved for the transfer workflow")
    if entry_type not in MOVEMENT_SIGNS:
        raise TransferValidationError(f"Unknown entry type '{entry_type}'")

    sign = MOVEMENT_SIGNS[entry_type]
    if sign == 0:
        if quantity == 0:
            raise TransferValidationError("Adjustment quantity must be non-zero")
        delta = quantity
    else:
        if quantity <= 0:
            raise TransferValidationError("Quantity must be greater than zero")
        delta = sign * quantity

    if entry_type == "opening":
        key = LedgerKey(product_variation_id=product_variation_id, location_id=location_id)
        if _last_entry(db, business_id=business_id, key=key) is not None:
            raise TransferValidationError("Opening stock can only be recorded before any other movement")

    return append_entry(
        db,
        business_id=business_id,
        product_id=product_id,
        product_variation_id=product_variation_id,
        location_id=location_id,
        entry_type=entry_type,
        quantity_delta=delta,
        actor_id=actor_id,
        reference_type="stock_movement",
        reference_id=reference_id,
        note=note,
    )


def list_history(
    db: Session,
    *,
    business_id: str,
    location_id: str,
    product_variation_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockLedgerEntry], int]:
    filters = [
        StockLedgerEntry.business_id == business_id,
        StockLedgerEntry.location_id == location_id,
    ]
    if product_variation_id:
        filters.append(StockLedgerEntry.product_variation_id == product_variation_id)

    total = int(db.execute(select(func.count(StockLedgerEntry.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockLedgerEntry)
        .where(*filters)
        .order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.sequence_no.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total
