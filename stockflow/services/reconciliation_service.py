import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import TransferValidationError
from stockflow.core.id_utils import generate_id
from stockflow.core.observability import log_event
from stockflow.models.inventory import StockLedgerEntry, StockProjection
from stockflow.models.reconciliation import ReconciliationRun
from stockflow.services.audit_service import log_audit_event
from stockflow.services.ledger_service import LedgerKey, append_entry, ledger_sum, lock_projection
from stockflow.services.notification_provider import NotificationProvider, TransferNotification, notify_safely

RECONCILIATION_MODES = ("report", "fix")
SYSTEM_ACTOR_ID = "system"

_run_lock = threading.Lock()


@dataclass
class Variance:
    product_id: str
    product_variation_id: str
    location_id: str
    ledger_sum: int
    projection_quantity: int
    last_balance_after: int | None
    balance_chain_intact: bool
    variance: int
    variance_percent: float
    direction: str  # overage or shortage
    auto_fixable: bool
    corrected: bool = False
    correction_entry_id: str | None = None


@dataclass
class ReconciliationResult:
    run: ReconciliationRun
    variances: list[Variance]


def _candidate_pairs(db: Session, *, business_id: str, location_id: str | None) -> dict[LedgerKey, str]:
    """Union of keys with ledger activity and keys with a projection row, mapped to product id."""
    ledger_q = select(
        StockLedgerEntry.product_variation_id,
        StockLedgerEntry.location_id,
        func.min(StockLedgerEntry.product_id),
    ).where(StockLedgerEntry.business_id == business_id)
    projection_q = select(
        StockProjection.product_variation_id,
        StockProjection.location_id,
        StockProjection.product_id,
    ).where(StockProjection.business_id == business_id)
    if location_id:
        ledger_q = ledger_q.where(StockLedgerEntry.location_id == location_id)
        projection_q = projection_q.where(StockProjection.location_id == location_id)
    ledger_q = ledger_q.group_by(StockLedgerEntry.product_variation_id, StockLedgerEntry.location_id)

    pairs: dict[LedgerKey, str] = {}
    for variation_id, loc_id, product_id in db.execute(projection_q).all():
        pairs[LedgerKey(product_variation_id=variation_id, location_id=loc_id)] = product_id
    for variation_id, loc_id, product_id in db.execute(ledger_q).all():
        pairs.setdefault(LedgerKey(product_variation_id=variation_id, location_id=loc_id), product_id)
    return pairs


def _chain_state(db: Session, *, business_id: str, key: LedgerKey) -> tuple[int | None, bool]:
    rows = db.execute(
        select(StockLedgerEntry.quantity_delta, StockLedgerEntry.balance_after)
        .where(
            StockLedgerEntry.business_id == business_id,
            StockLedgerEntry.product_variation_id == key.product_variation_id,
            StockLedgerEntry.location_id == key.location_id,
        )
        .order_by(StockLedgerEntry.sequence_no.asc())
    ).all()
    running = 0
    intact = True
    for delta, balance_after in rows:
        running += delta
        if balance_after != running:
            intact = False
    last_balance = rows[-1][1] if rows else None
    return last_balance, intact


def _measure(
    db: Session,
    *,
    business_id: str,
    key: LedgerKey,
    product_id: str,
    projection_quantity: int,
) -> Variance | None:
    expected = ledger_sum(db, business_id=business_id, key=key)
    variance = projection_quantity - expected
    if variance == 0:
        return None
    last_balance, intact = _chain_state(db, business_id=business_id, key=key)
    base = abs(expected) if expected else abs(projection_quantity)
    percent = round(abs(variance) * 100.0 / base, 2) if base else 100.0
    return Variance(
        product_id=product_id,
        product_variation_id=key.product_variation_id,
        location_id=key.location_id,
        ledger_sum=expected,
        projection_quantity=projection_quantity,
        last_balance_after=last_balance,
        balance_chain_intact=intact,
        variance=variance,
        variance_percent=percent,
        direction="overage" if variance > 0 else "shortage",
        auto_fixable=(
            abs(variance) <= settings.reconciliation_auto_fix_max_units
            and percent <= settings.reconciliation_auto_fix_max_percent
        ),
    )


def run_reconciliation(
    db: Session,
    *,
    business_id: str,
    mode: str = "report",
    location_id: str | None = None,
    actor_id: str = SYSTEM_ACTOR_ID,
    force: bool = False,
    notifier: NotificationProvider | None = None,
) -> ReconciliationResult:
    """
    Compare every projection with the signed sum of its ledger rows.

    In fix mode each pair is re-measured under the projection row lock and a
    correction entry equal to the variance is appended, so the ledger sum
    matches the projection afterwards. The projection itself is not touched:
    it is the figure every stock check has been using, so the ledger is
    realigned to it rather than the other way round.
    """
    if mode not in RECONCILIATION_MODES:
        raise TransferValidationError(f"Unknown reconciliation mode '{mode}'")

    with _run_lock:
        started_at = datetime.now(timezone.utc)
        run_id = generate_id()
        try:
            pairs = _candidate_pairs(db, business_id=business_id, location_id=location_id)
            variances: list[Variance] = []
            for key in sorted(pairs):
                product_id = pairs[key]
                if mode == "fix":
                    projection = lock_projection(db, business_id=business_id, product_id=product_id, key=key)
                    quantity = projection.quantity_available
                else:
                    quantity = db.execute(
                        select(StockProjection.quantity_available).where(
                            StockProjection.business_id == business_id,
                            StockProjection.product_variation_id == key.product_variation_id,
                            StockProjection.location_id == key.location_id,
                        )
                    ).scalar_one_or_none() or 0

                found = _measure(
                    db,
                    business_id=business_id,
                    key=key,
                    product_id=product_id,
                    projection_quantity=quantity,
                )
                if found is None:
                    continue
                if mode == "fix" and (force or found.auto_fixable):
                    entry = append_entry(
                        db,
                        business_id=business_id,
                        product_id=product_id,
                        product_variation_id=key.product_variation_id,
                        location_id=key.location_id,
                        entry_type="correction",
                        quantity_delta=found.variance,
                        actor_id=actor_id,
                        reference_type="reconciliation",
                        reference_id=run_id,
                        note=f"Reconciliation correction ({found.direction} of {abs(found.variance)})",
                        apply_to_projection=False,
                    )
                    found.corrected = True
                    found.correction_entry_id = entry.id
                variances.append(found)

            corrections = sum(1 for item in variances if item.corrected)
            run = ReconciliationRun(
                id=run_id,
                business_id=business_id,
                location_id=location_id,
                mode=mode,
                triggered_by=actor_id,
                checked_pairs=len(pairs),
                variance_count=len(variances),
                corrections_written=corrections,
                variances_json=[asdict(item) for item in variances],
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )
            db.add(run)
            log_audit_event(
                db,
                business_id=business_id,
                actor_id=actor_id,
                action=f"inventory.reconcile.{mode}",
                entity_type="reconciliation_run",
                entity_ids=[run.id],
                description=f"Checked {len(pairs)} pairs, {len(variances)} variances, {corrections} corrections",
                metadata_json={"location_id": location_id, "force": force},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(run)
    log_event(
        "reconciliation_run",
        business_id=business_id,
        run_id=run.id,
        mode=mode,
        checked_pairs=run.checked_pairs,
        variance_count=run.variance_count,
        corrections_written=run.corrections_written,
    )
    if variances:
        notify_safely(
            TransferNotification(
                business_id=business_id,
                event="reconciliation_discrepancy",
                entity_id=run.id,
                message=f"Reconciliation found {len(variances)} stock variances",
                payload={"corrections_written": run.corrections_written},
            ),
            notifier,
        )
    return ReconciliationResult(run=run, variances=variances)


def businesses_with_activity(db: Session) -> list[str]:
    return list(
        db.execute(select(StockLedgerEntry.business_id).distinct().order_by(StockLedgerEntry.business_id)).scalars()
    )


def list_runs(db: Session, *, business_id: str, limit: int = 20, offset: int = 0) -> tuple[list[ReconciliationRun], int]:
    total = int(
        db.execute(
            select(func.count(ReconciliationRun.id)).where(ReconciliationRun.business_id == business_id)
        ).scalar_one()
    )
    rows = db.execute(
        select(ReconciliationRun)
        .where(ReconciliationRun.business_id == business_id)
        .order_by(ReconciliationRun.started_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total
