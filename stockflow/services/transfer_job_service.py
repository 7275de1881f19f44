import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.errors import AlreadyProcessedError, LedgerWriteFailure, NotFoundError, StockFlowError
from stockflow.core.id_utils import generate_id
from stockflow.core.observability import log_event
from stockflow.core.security_current import ActorContext
from stockflow.models.transfer_job import TransferJob
from stockflow.services.audit_service import log_audit_event
from stockflow.services.transfer_service import (
    TRANSITION_HANDLERS,
    TransferPorts,
    default_ports,
    preflight_transition,
)

JOB_TYPES = {
    "transfer_send": "send",
    "transfer_complete": "complete",
}
DUE_STATUSES = ("pending", "retrying")
# AlreadyProcessed codes meaning the transition has already taken effect
SETTLED_CODES = ("already_completed", "already_processed")


@dataclass(frozen=True)
class JobDispatchSummary:
    processed: int
    completed: int
    failed: int
    retried: int
    dead_lettered: int


def enqueue_transfer_job(
    db: Session,
    actor: ActorContext,
    transfer_id: str,
    job_type: str,
    ports: TransferPorts | None = None,
) -> TransferJob:
    if job_type not in JOB_TYPES:
        raise ValueError(f"Unknown transfer job type '{job_type}'")
    transfer = preflight_transition(db, actor, transfer_id, JOB_TYPES[job_type], ports)

    job = TransferJob(
        id=generate_id(),
        business_id=actor.business_id,
        stock_transfer_id=transfer.id,
        job_type=job_type,
        actor_id=actor.actor_id,
        actor_claims_json=actor.to_claims(),
        status="pending",
        attempt_count=0,
        max_attempts=settings.transfer_job_max_attempts,
        next_attempt_at=datetime.now(timezone.utc),
    )
    db.add(job)
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action=f"stock_transfer.{JOB_TYPES[job_type]}.queued",
        entity_type="transfer_job",
        entity_ids=[job.id, transfer.id],
        metadata_json={"job_type": job_type, "transfer_number": transfer.transfer_number},
    )
    db.commit()
    db.refresh(job)
    log_event("transfer_job_queued", job_id=job.id, job_type=job_type, transfer_id=transfer.id)
    return job


def get_transfer_job(db: Session, *, business_id: str, job_id: str) -> TransferJob:
    job = db.execute(
        select(TransferJob).where(TransferJob.id == job_id, TransferJob.business_id == business_id)
    ).scalar_one_or_none()
    if not job:
        raise NotFoundError("Transfer job not found", details=[{"job_id": job_id}])
    return job


def retry_delay(attempt_count: int) -> timedelta:
    return timedelta(seconds=settings.transfer_job_retry_base_seconds * (2 ** attempt_count))


def _finish(db: Session, job: TransferJob, *, status: str, error: Exception | None = None) -> None:
    job.status = status
    job.finished_at = datetime.now(timezone.utc)
    if error is not None:
        job.last_error = str(error)[:500]
        job.error_code = getattr(error, "code", type(error).__name__)[:60]
    db.commit()


def _run_job(db: Session, job: TransferJob, ports: TransferPorts) -> str:
    handler = TRANSITION_HANDLERS[JOB_TYPES[job.job_type]]
    actor = ActorContext.from_claims(job.actor_claims_json)
    try:
        handler(db, actor, job.stock_transfer_id, ports=ports)
    except AlreadyProcessedError as exc:
        if exc.code not in SETTLED_CODES:
            # lost a write race; the transition itself never ran
            return _schedule_retry(db, job, exc)
        _finish(db, job, status="completed", error=exc)
        return "completed"
    except LedgerWriteFailure as exc:
        return _schedule_retry(db, job, exc)
    except StockFlowError as exc:
        _finish(db, job, status="failed", error=exc)
        return "failed"
    except Exception as exc:  # noqa: BLE001
        return _schedule_retry(db, job, exc)

    _finish(db, job, status="completed")
    return "completed"


def _schedule_retry(db: Session, job: TransferJob, exc: Exception) -> str:
    db.rollback()
    if job.attempt_count >= job.max_attempts:
        _finish(db, job, status="dead_letter", error=exc)
        log_event(
            "transfer_job_dead_letter",
            level=logging.ERROR,
            job_id=job.id,
            transfer_id=job.stock_transfer_id,
            error=str(exc),
        )
        return "dead_letter"
    job.status = "retrying"
    job.last_error = str(exc)[:500]
    job.error_code = getattr(exc, "code", type(exc).__name__)[:60]
    job.next_attempt_at = datetime.now(timezone.utc) + retry_delay(job.attempt_count)
    db.commit()
    log_event(
        "transfer_job_retry_scheduled",
        level=logging.WARNING,
        job_id=job.id,
        attempt=job.attempt_count,
        error=str(exc),
    )
    return "retrying"


def dispatch_due_transfer_jobs(
    db: Session,
    *,
    business_id: str | None = None,
    limit: int = 50,
    ports: TransferPorts | None = None,
    now: datetime | None = None,
) -> JobDispatchSummary:
    ports = ports or default_ports()
    now = now or datetime.now(timezone.utc)
    stmt = select(TransferJob.id).where(
        TransferJob.status.in_(DUE_STATUSES),
        TransferJob.next_attempt_at <= now,
    )
    if business_id:
        stmt = stmt.where(TransferJob.business_id == business_id)
    job_ids = list(db.execute(stmt.order_by(TransferJob.created_at.asc()).limit(limit)).scalars())

    outcomes = {"completed": 0, "failed": 0, "retrying": 0, "dead_letter": 0}
    for job_id in job_ids:
        job = db.get(TransferJob, job_id)
        if job is None or job.status not in DUE_STATUSES:
            continue
        job.attempt_count += 1
        job.status = "running"
        job.started_at = datetime.now(timezone.utc)
        db.commit()

        outcome = _run_job(db, job, ports)
        outcomes[outcome] += 1
        log_event(
            "transfer_job_dispatched",
            job_id=job.id,
            job_type=job.job_type,
            transfer_id=job.stock_transfer_id,
            outcome=outcome,
            attempt=job.attempt_count,
        )

    return JobDispatchSummary(
        processed=len(job_ids),
        completed=outcomes["completed"],
        failed=outcomes["failed"],
        retried=outcomes["retrying"],
        dead_lettered=outcomes["dead_letter"],
    )
