from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext
from stockflow.models.transfer_job import TransferJob
from stockflow.schemas.transfer_job import TransferJobOut
from stockflow.services.transfer_job_service import get_transfer_job

router = APIRouter(prefix="/transfer-jobs", tags=["transfers"])


def job_out(job: TransferJob) -> TransferJobOut:
    return TransferJobOut(
        id=job.id,
        stock_transfer_id=job.stock_transfer_id,
        job_type=job.job_type,
        status=job.status,
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        next_attempt_at=job.next_attempt_at,
        last_error=job.last_error,
        error_code=job.error_code,
        started_at=job.started_at,
        finished_at=job.finished_at,
        created_at=job.created_at,
    )


@router.get(
    "/{job_id}",
    response_model=TransferJobOut,
    summary="Get queued transfer job status",
    responses=error_responses(401, 403, 404, 500),
)
def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.TRANSFER_VIEW)),
):
    return job_out(get_transfer_job(db, business_id=actor.business_id, job_id=job_id))
