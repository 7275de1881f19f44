import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockflow.core.config import settings
from stockflow.core.errors import (
    AlreadyProcessedError,
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    StockFlowError,
    TransferValidationError,
)
from stockflow.core.id_utils import generate_id
from stockflow.core.observability import log_event
from stockflow.core.permissions import AuthorizationPort, Capability, ensure_capability, get_authorizer
from stockflow.core.security_current import ActorContext
from stockflow.models.location import Location
from stockflow.models.product import ProductVariation
from stockflow.models.transfer import StockTransfer, StockTransferItem
from stockflow.schemas.transfer import TransferItemIn
from stockflow.services.audit_service import log_audit_event
from stockflow.services.ledger_service import (
    LedgerKey,
    append_entry,
    get_available_quantity,
    lock_projections,
)
from stockflow.services.location_access_service import (
    LocationAccessPort,
    can_access_location,
    ensure_location_access,
    get_location_access,
)
from stockflow.services.notification_provider import (
    NotificationProvider,
    TransferNotification,
    notify_safely,
)
from stockflow.services.transfer_policy import PolicySettings, can_act_at, get_policy_settings

TRANSFER_REFERENCE_TYPE = "stock_transfer"
_STALE_RETRIES = 3
_NUMBER_RETRIES = 5


@dataclass(frozen=True)
class TransitionRule:
    name: str
    from_statuses: tuple[str, ...]
    to_status: str
    capability: Capability
    location_side: str  # "from" or "to"


TRANSITIONS: dict[str, TransitionRule] = {
    rule.name: rule
    for rule in (
        TransitionRule("update", ("draft",), "draft", Capability.TRANSFER_UPDATE, "from"),
        TransitionRule("submit", ("draft",), "pending_check", Capability.TRANSFER_CREATE, "from"),
        TransitionRule("check_approve", ("pending_check",), "checked", Capability.TRANSFER_CHECK, "from"),
        TransitionRule("check_reject", ("pending_check",), "draft", Capability.TRANSFER_CHECK, "from"),
        TransitionRule("send", ("checked",), "in_transit", Capability.TRANSFER_SEND, "from"),
        TransitionRule("mark_arrived", ("in_transit",), "arrived", Capability.TRANSFER_RECEIVE, "to"),
        TransitionRule("start_verification", ("arrived",), "verifying", Capability.TRANSFER_VERIFY, "to"),
        TransitionRule("verify_item", ("verifying",), "verifying", Capability.TRANSFER_VERIFY, "to"),
        TransitionRule("unverify_item", ("verifying", "verified"), "verifying", Capability.TRANSFER_VERIFY, "to"),
        TransitionRule("complete", ("verifying", "verified"), "completed", Capability.TRANSFER_COMPLETE, "to"),
        TransitionRule("cancel", ("draft", "pending_check", "checked"), "cancelled", Capability.TRANSFER_CANCEL, "from"),
    )
}


@dataclass(frozen=True)
class TransferPorts:
    authorizer: AuthorizationPort
    location_access: LocationAccessPort
    notifier: NotificationProvider | None = None


def default_ports() -> TransferPorts:
    return TransferPorts(authorizer=get_authorizer(), location_access=get_location_access())


@dataclass
class TransferView:
    transfer: StockTransfer
    items: list[StockTransferItem]
    from_location_name: str | None = None
    to_location_name: str | None = None
    available_transitions: list[str] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_transfer(db: Session, *, business_id: str, transfer_id: str, lock: bool = False) -> StockTransfer:
    stmt = select(StockTransfer).where(
        StockTransfer.id == transfer_id,
        StockTransfer.business_id == business_id,
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    transfer = db.execute(stmt).scalar_one_or_none()
    if not transfer:
        raise NotFoundError("Transfer not found", details=[{"transfer_id": transfer_id}])
    return transfer


def _load_items(db: Session, transfer_id: str) -> list[StockTransferItem]:
    return list(
        db.execute(
            select(StockTransferItem)
            .where(StockTransferItem.stock_transfer_id == transfer_id)
            .order_by(StockTransferItem.product_variation_id.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()
    )


def _location_or_404(db: Session, *, business_id: str, location_id: str) -> Location:
    location = db.execute(
        select(Location).where(Location.id == location_id, Location.business_id == business_id)
    ).scalar_one_or_none()
    if not location:
        raise NotFoundError("Location not found", details=[{"location_id": location_id}])
    return location


def _check_status(transfer: StockTransfer, rule: TransitionRule) -> None:
    if rule.name == "send" and transfer.stock_deducted:
        raise AlreadyProcessedError(
            "Stock for this transfer has already been sent",
            details=[{"transfer_id": transfer.id, "status": transfer.status}],
        )
    if rule.name == "complete" and transfer.status == "completed":
        raise AlreadyProcessedError(
            "Transfer is already completed",
            code="already_completed",
            details=[{"transfer_id": transfer.id, "status": transfer.status}],
        )
    if rule.name == "cancel" and transfer.status == "cancelled":
        raise AlreadyProcessedError(
            "Transfer is already cancelled",
            details=[{"transfer_id": transfer.id, "status": transfer.status}],
        )
    if transfer.status not in rule.from_statuses:
        raise InvalidTransitionError(
            f"Cannot {rule.name} a transfer in status '{transfer.status}'",
            current_status=transfer.status,
            transition=rule.name,
        )


def _check_policy(transfer: StockTransfer, actor: ActorContext, rule: TransitionRule, policy: PolicySettings) -> None:
    decision = can_act_at(transfer, actor.actor_id, rule.name, policy, actor.roles)
    if not decision.allowed:
        raise ForbiddenError(
            decision.reason or "Separation of duties forbids this action",
            code=decision.code or "forbidden_same_actor",
            details=[{"transition": rule.name, "rule_field": decision.rule_field}],
        )


def _check_guards(
    db: Session,
    *,
    actor: ActorContext,
    transfer: StockTransfer,
    rule: TransitionRule,
    ports: TransferPorts,
) -> PolicySettings:
    ensure_capability(ports.authorizer, actor, rule.capability)
    side_location = transfer.from_location_id if rule.location_side == "from" else transfer.to_location_id
    ensure_location_access(db, ports.location_access, actor, side_location)
    _check_status(transfer, rule)
    policy = get_policy_settings(db, actor.business_id)
    _check_policy(transfer, actor, rule, policy)
    return policy


def preflight_transition(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    transition: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    """Evaluate the guards without mutating anything; used before queueing a job."""
    ports = ports or default_ports()
    transfer = _load_transfer(db, business_id=actor.business_id, transfer_id=transfer_id)
    _check_guards(db, actor=actor, transfer=transfer, rule=TRANSITIONS[transition], ports=ports)
    return transfer


Mutator = Callable[[StockTransfer, list[StockTransferItem]], TransferNotification | None]


def _run_transition(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    transition: str,
    mutate: Mutator,
    ports: TransferPorts,
    *,
    audit_metadata: dict | None = None,
) -> StockTransfer:
    """
    Load under lock, guard, mutate and commit as one unit of work.

    A StaleDataError means another writer won the race; the guards are then
    re-evaluated against the committed state, which usually turns into
    AlreadyProcessed or InvalidTransition.
    """
    rule = TRANSITIONS[transition]
    for attempt in range(_STALE_RETRIES):
        try:
            transfer = _load_transfer(db, business_id=actor.business_id, transfer_id=transfer_id, lock=True)
            _check_guards(db, actor=actor, transfer=transfer, rule=rule, ports=ports)
            items = _load_items(db, transfer.id)
            previous_status = transfer.status
            notification = mutate(transfer, items)
            transfer.updated_at = _now()
            log_audit_event(
                db,
                business_id=actor.business_id,
                actor_id=actor.actor_id,
                action=f"stock_transfer.{transition}",
                entity_type="stock_transfer",
                entity_ids=[transfer.id],
                description=f"{transfer.transfer_number}: {previous_status} -> {transfer.status}",
                metadata_json={
                    "transfer_number": transfer.transfer_number,
                    "from_status": previous_status,
                    "to_status": transfer.status,
                    **(audit_metadata or {}),
                },
            )
            db.commit()
        except StaleDataError:
            db.rollback()
            log_event(
                "transfer_transition_conflict",
                level=logging.WARNING,
                transfer_id=transfer_id,
                transition=transition,
                attempt=attempt + 1,
            )
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(transfer)
        log_event(
            "transfer_transition",
            business_id=actor.business_id,
            transfer_id=transfer.id,
            transition=transition,
            from_status=previous_status,
            to_status=transfer.status,
            actor_id=actor.actor_id,
        )
        if notification is not None:
            notify_safely(notification, ports.notifier)
        return transfer

    raise AlreadyProcessedError(
        "Transfer was modified concurrently; reload and retry",
        code="concurrent_modification",
        details=[{"transfer_id": transfer_id, "transition": transition}],
    )


def _validate_item_requests(db: Session, *, business_id: str, items: Sequence[TransferItemIn]) -> None:
    seen: set[str] = set()
    for item in items:
        if item.quantity <= 0:
            raise TransferValidationError("Item quantity must be greater than zero")
        if item.product_variation_id in seen:
            raise TransferValidationError(
                "Each product variation can appear only once per transfer",
                details=[{"product_variation_id": item.product_variation_id}],
            )
        seen.add(item.product_variation_id)
        variation = db.execute(
            select(ProductVariation).where(
                ProductVariation.id == item.product_variation_id,
                ProductVariation.business_id == business_id,
            )
        ).scalar_one_or_none()
        if not variation:
            raise NotFoundError(
                "Product variation not found",
                details=[{"product_variation_id": item.product_variation_id}],
            )
        if variation.product_id != item.product_id:
            raise TransferValidationError(
                "Product variation does not belong to the given product",
                details=[{"product_id": item.product_id, "product_variation_id": item.product_variation_id}],
            )


def _add_items(db: Session, transfer_id: str, items: Sequence[TransferItemIn]) -> None:
    for item in items:
        db.add(
            StockTransferItem(
                id=generate_id(),
                stock_transfer_id=transfer_id,
                product_id=item.product_id,
                product_variation_id=item.product_variation_id,
                quantity=item.quantity,
                verified=False,
                has_discrepancy=False,
            )
        )


def next_transfer_number(db: Session, *, business_id: str, now: datetime | None = None) -> str:
    now = now or _now()
    stem = f"{settings.transfer_number_prefix}-{now:%Y%m}-"
    latest = db.execute(
        select(StockTransfer.transfer_number)
        .where(
            StockTransfer.business_id == business_id,
            StockTransfer.transfer_number.like(f"{stem}%"),
        )
        .order_by(func.length(StockTransfer.transfer_number).desc(), StockTransfer.transfer_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    sequence = 1
    if latest:
        suffix = latest[len(stem):]
        if suffix.isdigit():
            sequence = int(suffix) + 1
    return f"{stem}{sequence:04d}"


def _shortfalls(
    items: Sequence[StockTransferItem],
    available_for: Callable[[StockTransferItem], int],
) -> list[dict]:
    short = []
    for item in items:
        available = available_for(item)
        if item.quantity > available:
            short.append(
                {
                    "item_id": item.id,
                    "product_id": item.product_id,
                    "product_variation_id": item.product_variation_id,
                    "requested": item.quantity,
                    "available": available,
                }
            )
    return short


def create_transfer(
    db: Session,
    actor: ActorContext,
    *,
    from_location_id: str,
    to_location_id: str,
    items: Sequence[TransferItemIn],
    notes: str | None = None,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()
    ensure_capability(ports.authorizer, actor, Capability.TRANSFER_CREATE)
    if from_location_id == to_location_id:
        raise TransferValidationError("Source and destination locations must differ")

    from_location = _location_or_404(db, business_id=actor.business_id, location_id=from_location_id)
    to_location = _location_or_404(db, business_id=actor.business_id, location_id=to_location_id)
    ensure_location_access(db, ports.location_access, actor, from_location.id)
    for location in (from_location, to_location):
        if not location.is_active:
            raise TransferValidationError(
                "Transfers require active locations",
                details=[{"location_id": location.id}],
            )
    _validate_item_requests(db, business_id=actor.business_id, items=items)

    try:
        transfer = None
        for _ in range(_NUMBER_RETRIES):
            candidate = StockTransfer(
                id=generate_id(),
                business_id=actor.business_id,
                transfer_number=next_transfer_number(db, business_id=actor.business_id),
                from_location_id=from_location.id,
                to_location_id=to_location.id,
                status="draft",
                notes=notes,
                created_by=actor.actor_id,
                stock_deducted=False,
                stock_added=False,
            )
            try:
                with db.begin_nested():
                    db.add(candidate)
            except IntegrityError:
                continue
            transfer = candidate
            break
        if transfer is None:
            raise TransferValidationError("Could not allocate a transfer number; retry the request")

        _add_items(db, transfer.id, items)
        log_audit_event(
            db,
            business_id=actor.business_id,
            actor_id=actor.actor_id,
            action="stock_transfer.create",
            entity_type="stock_transfer",
            entity_ids=[transfer.id],
            description=f"{transfer.transfer_number}: created",
            metadata_json={
                "transfer_number": transfer.transfer_number,
                "from_location_id": from_location.id,
                "to_location_id": to_location.id,
                "item_count": len(items),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transfer)
    log_event(
        "transfer_created",
        business_id=actor.business_id,
        transfer_id=transfer.id,
        transfer_number=transfer.transfer_number,
        actor_id=actor.actor_id,
    )
    return transfer


def update_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    *,
    notes: str | None = None,
    items: Sequence[TransferItemIn] | None = None,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()
    if items is not None:
        _validate_item_requests(db, business_id=actor.business_id, items=items)

    def mutate(transfer: StockTransfer, current_items: list[StockTransferItem]) -> None:
        if notes is not None:
            transfer.notes = notes
        if items is not None:
            for item in current_items:
                db.delete(item)
            db.flush()
            _add_items(db, transfer.id, items)
        return None

    return _run_transition(
        db,
        actor,
        transfer_id,
        "update",
        mutate,
        ports,
        audit_metadata={"items_replaced": items is not None},
    )


def submit_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        if not items:
            raise TransferValidationError("A transfer needs at least one item before it can be submitted")
        short = _shortfalls(
            items,
            lambda item: get_available_quantity(
                db,
                business_id=transfer.business_id,
                product_variation_id=item.product_variation_id,
                location_id=transfer.from_location_id,
            ),
        )
        if short:
            raise InsufficientStockError("Insufficient stock at source location", details=short)
        transfer.status = "pending_check"
        return None

    return _run_transition(db, actor, transfer_id, "submit", mutate, ports)


def approve_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        transfer.status = "checked"
        transfer.checked_by = actor.actor_id
        transfer.checked_at = _now()
        return None

    return _run_transition(db, actor, transfer_id, "check_approve", mutate, ports)


def reject_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    *,
    reason: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()
    cleaned = (reason or "").strip()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> TransferNotification:
        if not cleaned:
            raise TransferValidationError("A rejection reason is required")
        rejected_at = _now()
        transfer.status = "draft"
        transfer.checked_by = None
        transfer.checked_at = None
        transfer.rejected_by = actor.actor_id
        transfer.rejected_at = rejected_at
        transfer.rejection_reason = cleaned
        history_line = f"[Rejected {rejected_at:%Y-%m-%d %H:%M} UTC by {actor.username or actor.actor_id}] {cleaned}"
        transfer.notes = f"{transfer.notes}\n{history_line}" if transfer.notes else history_line
        return TransferNotification(
            business_id=transfer.business_id,
            event="transfer_rejected",
            entity_id=transfer.id,
            message=f"Transfer {transfer.transfer_number} was rejected: {cleaned}",
            payload={"created_by": transfer.created_by, "reason": cleaned},
        )

    return _run_transition(
        db,
        actor,
        transfer_id,
        "check_reject",
        mutate,
        ports,
        audit_metadata={"reason": cleaned},
    )


def send_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> TransferNotification:
        if not items:
            raise TransferValidationError("A transfer needs at least one item before it can be sent")
        keys = {
            LedgerKey(product_variation_id=item.product_variation_id, location_id=transfer.from_location_id): item.product_id
            for item in items
        }
        projections = lock_projections(db, business_id=transfer.business_id, keys=keys)
        short = _shortfalls(
            items,
            lambda item: projections[
                LedgerKey(product_variation_id=item.product_variation_id, location_id=transfer.from_location_id)
            ].quantity_available,
        )
        if short:
            raise InsufficientStockError("Insufficient stock at source location", details=short)

        for item in sorted(items, key=lambda row: row.product_variation_id):
            append_entry(
                db,
                business_id=transfer.business_id,
                product_id=item.product_id,
                product_variation_id=item.product_variation_id,
                location_id=transfer.from_location_id,
                entry_type="transfer_out",
                quantity_delta=-item.quantity,
                actor_id=actor.actor_id,
                reference_type=TRANSFER_REFERENCE_TYPE,
                reference_id=transfer.id,
                note=f"Transfer {transfer.transfer_number} sent",
            )
        transfer.status = "in_transit"
        transfer.stock_deducted = True
        transfer.sent_by = actor.actor_id
        transfer.sent_at = _now()
        return TransferNotification(
            business_id=transfer.business_id,
            event="transfer_sent",
            entity_id=transfer.id,
            message=f"Transfer {transfer.transfer_number} is in transit",
            payload={"to_location_id": transfer.to_location_id},
        )

    return _run_transition(db, actor, transfer_id, "send", mutate, ports)


def mark_arrived(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        transfer.status = "arrived"
        transfer.arrived_by = actor.actor_id
        transfer.arrived_at = _now()
        return None

    return _run_transition(db, actor, transfer_id, "mark_arrived", mutate, ports)


def start_verification(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        transfer.status = "verifying"
        transfer.verification_started_by = actor.actor_id
        transfer.verification_started_at = _now()
        return None

    return _run_transition(db, actor, transfer_id, "start_verification", mutate, ports)


def _item_or_404(items: list[StockTransferItem], item_id: str) -> StockTransferItem:
    for item in items:
        if item.id == item_id:
            return item
    raise NotFoundError("Transfer item not found", details=[{"item_id": item_id}])


def verify_item(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    item_id: str,
    *,
    received_quantity: int,
    discrepancy_notes: str | None = None,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        item = _item_or_404(items, item_id)
        if item.verified:
            raise TransferValidationError(
                "Item is already verified; unverify it before changing the received quantity",
                code="item_already_verified",
                details=[{"item_id": item.id}],
            )
        if received_quantity < 0 or received_quantity > item.quantity:
            raise TransferValidationError(
                "Received quantity must be between 0 and the requested quantity",
                details=[{"item_id": item.id, "quantity": item.quantity, "received_quantity": received_quantity}],
            )
        item.received_quantity = received_quantity
        item.verified = True
        item.verified_by = actor.actor_id
        item.verified_at = _now()
        item.has_discrepancy = received_quantity != item.quantity
        item.discrepancy_notes = discrepancy_notes if item.has_discrepancy else None
        if all(row.verified for row in items):
            transfer.status = "verified"
            transfer.verified_by = actor.actor_id
            transfer.verified_at = _now()
        return None

    return _run_transition(
        db,
        actor,
        transfer_id,
        "verify_item",
        mutate,
        ports,
        audit_metadata={"item_id": item_id, "received_quantity": received_quantity},
    )


def unverify_item(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    item_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        item = _item_or_404(items, item_id)
        if not item.verified:
            raise TransferValidationError(
                "Item is not verified",
                code="item_not_verified",
                details=[{"item_id": item.id}],
            )
        item.verified = False
        item.received_quantity = None
        item.has_discrepancy = False
        item.discrepancy_notes = None
        item.verified_by = None
        item.verified_at = None
        if transfer.status == "verified":
            transfer.status = "verifying"
            transfer.verified_by = None
            transfer.verified_at = None
        return None

    return _run_transition(
        db,
        actor,
        transfer_id,
        "unverify_item",
        mutate,
        ports,
        audit_metadata={"item_id": item_id},
    )


def complete_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> TransferNotification:
        now = _now()
        for item in items:
            if not item.verified:
                item.verified = True
                item.received_quantity = item.quantity
                item.has_discrepancy = False
                item.verified_by = actor.actor_id
                item.verified_at = now
        if transfer.verified_by is None:
            transfer.verified_by = actor.actor_id
            transfer.verified_at = now

        credits = [
            (item, item.received_quantity if item.received_quantity is not None else item.quantity)
            for item in items
        ]
        for item, quantity in sorted(credits, key=lambda pair: pair[0].product_variation_id):
            if quantity <= 0:
                continue
            append_entry(
                db,
                business_id=transfer.business_id,
                product_id=item.product_id,
                product_variation_id=item.product_variation_id,
                location_id=transfer.to_location_id,
                entry_type="transfer_in",
                quantity_delta=quantity,
                actor_id=actor.actor_id,
                reference_type=TRANSFER_REFERENCE_TYPE,
                reference_id=transfer.id,
                note=f"Transfer {transfer.transfer_number} received",
            )
        transfer.status = "completed"
        transfer.stock_added = True
        transfer.completed_by = actor.actor_id
        transfer.completed_at = now

        discrepancies = [
            {
                "item_id": item.id,
                "product_variation_id": item.product_variation_id,
                "quantity": item.quantity,
                "received_quantity": received,
            }
            for item, received in credits
            if received != item.quantity
        ]
        if discrepancies:
            return TransferNotification(
                business_id=transfer.business_id,
                event="transfer_completed_with_discrepancy",
                entity_id=transfer.id,
                message=f"Transfer {transfer.transfer_number} completed with {len(discrepancies)} discrepancies",
                payload={"discrepancies": discrepancies},
            )
        return TransferNotification(
            business_id=transfer.business_id,
            event="transfer_completed",
            entity_id=transfer.id,
            message=f"Transfer {transfer.transfer_number} completed",
        )

    return _run_transition(db, actor, transfer_id, "complete", mutate, ports)


def cancel_transfer(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    *,
    reason: str | None = None,
    ports: TransferPorts | None = None,
) -> StockTransfer:
    ports = ports or default_ports()

    def mutate(transfer: StockTransfer, items: list[StockTransferItem]) -> None:
        if transfer.stock_deducted:
            raise InvalidTransitionError(
                "Stock has already left the source location; cancellation is not possible",
                current_status=transfer.status,
                transition="cancel",
            )
        transfer.status = "cancelled"
        transfer.cancelled_by = actor.actor_id
        transfer.cancelled_at = _now()
        transfer.cancellation_reason = (reason or "").strip() or None
        return None

    return _run_transition(
        db,
        actor,
        transfer_id,
        "cancel",
        mutate,
        ports,
        audit_metadata={"reason": reason},
    )


def available_transitions(
    db: Session,
    actor: ActorContext,
    transfer: StockTransfer,
    items: list[StockTransferItem],
    ports: TransferPorts,
    *,
    accessible: list[str] | None = None,
    policy: PolicySettings | None = None,
) -> list[str]:
    """Transitions the actor could perform right now, ignoring stock levels."""
    policy = policy or get_policy_settings(db, actor.business_id)
    allowed = []
    for rule in TRANSITIONS.values():
        if not ports.authorizer.has_capability(actor, rule.capability):
            continue
        side_location = transfer.from_location_id if rule.location_side == "from" else transfer.to_location_id
        if not can_access_location(accessible, side_location):
            continue
        try:
            _check_status(transfer, rule)
        except StockFlowError:
            continue
        if not can_act_at(transfer, actor.actor_id, rule.name, policy, actor.roles).allowed:
            continue
        if rule.name == "verify_item" and not any(not item.verified for item in items):
            continue
        if rule.name == "unverify_item" and not any(item.verified for item in items):
            continue
        if rule.name in {"submit", "send"} and not items:
            continue
        allowed.append(rule.name)
    return allowed


def get_transfer_view(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    ports: TransferPorts | None = None,
) -> TransferView:
    ports = ports or default_ports()
    ensure_capability(ports.authorizer, actor, Capability.TRANSFER_VIEW)
    transfer = _load_transfer(db, business_id=actor.business_id, transfer_id=transfer_id)
    accessible = ports.location_access.accessible_location_ids(db, actor)
    if not (
        can_access_location(accessible, transfer.from_location_id)
        or can_access_location(accessible, transfer.to_location_id)
    ):
        raise ForbiddenError(
            "You do not have access to this transfer's locations",
            code="location_access_denied",
            details=[{"transfer_id": transfer.id}],
        )
    return build_view(db, actor, transfer, ports, accessible=accessible)


def build_view(
    db: Session,
    actor: ActorContext,
    transfer: StockTransfer,
    ports: TransferPorts,
    *,
    accessible: list[str] | None = None,
) -> TransferView:
    if accessible is None:
        accessible = ports.location_access.accessible_location_ids(db, actor)
    items = _load_items(db, transfer.id)
    names = dict(
        db.execute(
            select(Location.id, Location.name).where(
                Location.id.in_([transfer.from_location_id, transfer.to_location_id])
            )
        ).all()
    )
    return TransferView(
        transfer=transfer,
        items=items,
        from_location_name=names.get(transfer.from_location_id),
        to_location_name=names.get(transfer.to_location_id),
        available_transitions=available_transitions(db, actor, transfer, items, ports, accessible=accessible),
    )


def list_transfers(
    db: Session,
    actor: ActorContext,
    *,
    status: str | None = None,
    from_location_id: str | None = None,
    to_location_id: str | None = None,
    location_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
    ports: TransferPorts | None = None,
) -> tuple[list[tuple[StockTransfer, int, int]], int]:
    """Returns (transfer, item_count, total_quantity) rows and the total match count."""
    ports = ports or default_ports()
    ensure_capability(ports.authorizer, actor, Capability.TRANSFER_VIEW)

    filters = [StockTransfer.business_id == actor.business_id]
    if status:
        filters.append(StockTransfer.status == status)
    if from_location_id:
        filters.append(StockTransfer.from_location_id == from_location_id)
    if to_location_id:
        filters.append(StockTransfer.to_location_id == to_location_id)
    if location_id:
        filters.append(
            or_(StockTransfer.from_location_id == location_id, StockTransfer.to_location_id == location_id)
        )
    accessible = ports.location_access.accessible_location_ids(db, actor)
    if accessible is not None:
        filters.append(
            or_(StockTransfer.from_location_id.in_(accessible), StockTransfer.to_location_id.in_(accessible))
        )

    total = int(db.execute(select(func.count(StockTransfer.id)).where(*filters)).scalar_one())
    transfers = db.execute(
        select(StockTransfer)
        .where(*filters)
        .order_by(StockTransfer.created_at.desc(), StockTransfer.transfer_number.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    totals: dict[str, tuple[int, int]] = {}
    if transfers:
        totals = {
            row.stock_transfer_id: (int(row.item_count), int(row.total_quantity))
            for row in db.execute(
                select(
                    StockTransferItem.stock_transfer_id,
                    func.count(StockTransferItem.id).label("item_count"),
                    func.coalesce(func.sum(StockTransferItem.quantity), 0).label("total_quantity"),
                )
                .where(StockTransferItem.stock_transfer_id.in_([t.id for t in transfers]))
                .group_by(StockTransferItem.stock_transfer_id)
            ).all()
        }
    rows = [(transfer, *totals.get(transfer.id, (0, 0))) for transfer in transfers]
    return rows, total


TRANSITION_HANDLERS: dict[str, Callable[..., StockTransfer]] = {
    "send": send_transfer,
    "complete": complete_transfer,
}
