from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from stockflow.schemas.common import PaginationMeta


class ReconciliationRunIn(BaseModel):
    mode: Literal["report", "fix"] = "report"
    location_id: str | None = None
    force: bool = False


class VarianceOut(BaseModel):
    product_id: str
    product_variation_id: str
    location_id: str
    ledger_sum: int
    projection_quantity: int
    last_balance_after: int | None = None
    balance_chain_intact: bool
    variance: int
    variance_percent: float
    direction: str
    auto_fixable: bool
    corrected: bool
    correction_entry_id: str | None = None


class ReconciliationRunOut(BaseModel):
    id: str
    mode: str
    location_id: str | None = None
    triggered_by: str
    checked_pairs: int
    variance_count: int
    corrections_written: int
    variances: list[VarianceOut]
    started_at: datetime
    finished_at: datetime | None = None


class ReconciliationRunListOut(BaseModel):
    items: list[ReconciliationRunOut]
    pagination: PaginationMeta


def variances_from_json(raw: list[dict[str, Any]] | None) -> list[VarianceOut]:
    return [VarianceOut(**item) for item in raw or []]
