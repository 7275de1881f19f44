from datetime import datetime
from typing import Any

from pydantic import BaseModel

from stockflow.schemas.common import PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_id: str
    action: str
    entity_type: str
    entity_ids: list[str]
    description: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime


class AuditLogListOut(BaseModel):
    items: list[AuditLogOut]
    pagination: PaginationMeta
