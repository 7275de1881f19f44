from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db, get_transfer_ports
from stockflow.core.errors import TransferValidationError
from stockflow.core.security_current import ActorContext, get_current_actor
from stockflow.models.transfer import TRANSFER_STATUSES, StockTransfer
from stockflow.schemas.common import pagination_meta
from stockflow.schemas.transfer import (
    TransferCancelIn,
    TransferCreateIn,
    TransferItemOut,
    TransferItemVerifyIn,
    TransferListOut,
    TransferOut,
    TransferRejectIn,
    TransferSummaryOut,
    TransferUpdateIn,
)
from stockflow.schemas.transfer_job import TransferJobOut
from stockflow.routers.transfer_jobs import job_out
from stockflow.services import transfer_service
from stockflow.services.transfer_job_service import enqueue_transfer_job
from stockflow.services.transfer_service import TransferPorts, TransferView

router = APIRouter(prefix="/transfers", tags=["transfers"])

_TRANSITION_ERRORS = error_responses(400, 401, 403, 404, 409, 422, 500)


def transfer_out(view: TransferView) -> TransferOut:
    transfer = view.transfer
    return TransferOut(
        id=transfer.id,
        transfer_number=transfer.transfer_number,
        from_location_id=transfer.from_location_id,
        from_location_name=view.from_location_name,
        to_location_id=transfer.to_location_id,
        to_location_name=view.to_location_name,
        status=transfer.status,
        notes=transfer.notes,
        created_by=transfer.created_by,
        checked_by=transfer.checked_by,
        checked_at=transfer.checked_at,
        rejected_by=transfer.rejected_by,
        rejected_at=transfer.rejected_at,
        rejection_reason=transfer.rejection_reason,
        sent_by=transfer.sent_by,
        sent_at=transfer.sent_at,
        arrived_by=transfer.arrived_by,
        arrived_at=transfer.arrived_at,
        verification_started_by=transfer.verification_started_by,
        verification_started_at=transfer.verification_started_at,
        verified_by=transfer.verified_by,
        verified_at=transfer.verified_at,
        completed_by=transfer.completed_by,
        completed_at=transfer.completed_at,
        cancelled_by=transfer.cancelled_by,
        cancelled_at=transfer.cancelled_at,
        cancellation_reason=transfer.cancellation_reason,
        stock_deducted=transfer.stock_deducted,
        stock_added=transfer.stock_added,
        version=transfer.version,
        created_at=transfer.created_at,
        updated_at=transfer.updated_at,
        items=[
            TransferItemOut(
                id=item.id,
                product_id=item.product_id,
                product_variation_id=item.product_variation_id,
                quantity=item.quantity,
                received_quantity=item.received_quantity,
                verified=item.verified,
                verified_by=item.verified_by,
                verified_at=item.verified_at,
                has_discrepancy=item.has_discrepancy,
                discrepancy_notes=item.discrepancy_notes,
            )
            for item in view.items
        ],
        available_transitions=view.available_transitions,
    )


def _view(db: Session, actor: ActorContext, transfer_id: str, ports: TransferPorts) -> TransferOut:
    return transfer_out(transfer_service.get_transfer_view(db, actor, transfer_id, ports))


def _after(db: Session, actor: ActorContext, transfer: StockTransfer, ports: TransferPorts) -> TransferOut:
    return transfer_out(transfer_service.build_view(db, actor, transfer, ports))


@router.post(
    "",
    response_model=TransferOut,
    status_code=201,
    summary="Create a draft transfer",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_transfer(
    payload: TransferCreateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.create_transfer(
        db,
        actor,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        items=payload.items,
        notes=payload.notes,
        ports=ports,
    )
    return _after(db, actor, transfer, ports)


@router.get(
    "",
    response_model=TransferListOut,
    summary="List transfers",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_transfers(
    status: str | None = Query(default=None),
    from_location_id: str | None = Query(default=None),
    to_location_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    if status and status not in TRANSFER_STATUSES:
        raise TransferValidationError(
            f"Unknown status '{status}'",
            details=[{"allowed": list(TRANSFER_STATUSES)}],
        )
    rows, total = transfer_service.list_transfers(
        db,
        actor,
        status=status,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        location_id=location_id,
        limit=limit,
        offset=offset,
        ports=ports,
    )
    items = [
        TransferSummaryOut(
            id=transfer.id,
            transfer_number=transfer.transfer_number,
            from_location_id=transfer.from_location_id,
            to_location_id=transfer.to_location_id,
            status=transfer.status,
            item_count=item_count,
            total_quantity=total_quantity,
            created_by=transfer.created_by,
            created_at=transfer.created_at,
        )
        for transfer, item_count, total_quantity in rows
    ]
    return TransferListOut(
        items=items,
        pagination=pagination_meta(total=total, limit=limit, offset=offset, count=len(items)),
        status=status,
        location_id=location_id,
    )


@router.get(
    "/{transfer_id}",
    response_model=TransferOut,
    summary="Get transfer with items and available transitions",
    responses=error_responses(401, 403, 404, 500),
)
def get_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    return _view(db, actor, transfer_id, ports)


@router.patch(
    "/{transfer_id}",
    response_model=TransferOut,
    summary="Edit a draft transfer",
    responses=_TRANSITION_ERRORS,
)
def update_transfer(
    transfer_id: str,
    payload: TransferUpdateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.update_transfer(
        db,
        actor,
        transfer_id,
        notes=payload.notes,
        items=payload.items,
        ports=ports,
    )
    return _after(db, actor, transfer, ports)


@router.post("/{transfer_id}/submit", response_model=TransferOut, summary="Submit for checking", responses=_TRANSITION_ERRORS)
def submit_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.submit_transfer(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/check/approve",
    response_model=TransferOut,
    summary="Approve a submitted transfer",
    responses=_TRANSITION_ERRORS,
)
def approve_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.approve_transfer(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/check/reject",
    response_model=TransferOut,
    summary="Reject a submitted transfer back to draft",
    responses=_TRANSITION_ERRORS,
)
def reject_transfer(
    transfer_id: str,
    payload: TransferRejectIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.reject_transfer(db, actor, transfer_id, reason=payload.reason, ports=ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/send",
    response_model=TransferOut,
    summary="Send a checked transfer and deduct source stock",
    responses=_TRANSITION_ERRORS,
)
def send_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.send_transfer(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/send-async",
    response_model=TransferJobOut,
    status_code=202,
    summary="Queue the send transition for the background worker",
    responses=_TRANSITION_ERRORS,
)
def send_transfer_async(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    return job_out(enqueue_transfer_job(db, actor, transfer_id, "transfer_send", ports))


@router.post(
    "/{transfer_id}/arrive",
    response_model=TransferOut,
    summary="Mark an in-transit transfer as arrived",
    responses=_TRANSITION_ERRORS,
)
def mark_arrived(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.mark_arrived(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/start-verification",
    response_model=TransferOut,
    summary="Start item verification at the destination",
    responses=_TRANSITION_ERRORS,
)
def start_verification(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.start_verification(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/items/{item_id}/verify",
    response_model=TransferOut,
    summary="Record the received quantity for an item",
    responses=_TRANSITION_ERRORS,
)
def verify_item(
    transfer_id: str,
    item_id: str,
    payload: TransferItemVerifyIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.verify_item(
        db,
        actor,
        transfer_id,
        item_id,
        received_quantity=payload.received_quantity,
        discrepancy_notes=payload.discrepancy_notes,
        ports=ports,
    )
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/items/{item_id}/unverify",
    response_model=TransferOut,
    summary="Clear an item's verification so it can be re-counted",
    responses=_TRANSITION_ERRORS,
)
def unverify_item(
    transfer_id: str,
    item_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.unverify_item(db, actor, transfer_id, item_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/complete",
    response_model=TransferOut,
    summary="Complete the transfer and credit destination stock",
    responses=_TRANSITION_ERRORS,
)
def complete_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.complete_transfer(db, actor, transfer_id, ports)
    return _after(db, actor, transfer, ports)


@router.post(
    "/{transfer_id}/complete-async",
    response_model=TransferJobOut,
    status_code=202,
    summary="Queue the complete transition for the background worker",
    responses=_TRANSITION_ERRORS,
)
def complete_transfer_async(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    return job_out(enqueue_transfer_job(db, actor, transfer_id, "transfer_complete", ports))


@router.post(
    "/{transfer_id}/cancel",
    response_model=TransferOut,
    summary="Cancel a transfer before it is sent",
    responses=_TRANSITION_ERRORS,
)
def cancel_transfer(
    transfer_id: str,
    payload: TransferCancelIn | None = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    ports: TransferPorts = Depends(get_transfer_ports),
):
    transfer = transfer_service.cancel_transfer(
        db,
        actor,
        transfer_id,
        reason=payload.reason if payload else None,
        ports=ports,
    )
    return _after(db, actor, transfer, ports)
