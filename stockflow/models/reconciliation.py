from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class ReconciliationRun(Base):
    __tablename__ = "reconciliation_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)  # report, fix
    triggered_by: Mapped[str] = mapped_column(String(36), nullable=False)
    checked_pairs: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    variance_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    corrections_written: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    variances_json: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_reconciliation_runs_business_created_at", "business_id", "created_at"),
    )
