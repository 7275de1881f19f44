from datetime import datetime

from pydantic import BaseModel


class TransferJobOut(BaseModel):
    id: str
    stock_transfer_id: str
    job_type: str
    status: str
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime
    last_error: str | None = None
    error_code: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime
