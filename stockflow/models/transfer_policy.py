from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.db.base import Base


class TransferPolicySettings(Base):
    __tablename__ = "transfer_policy_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    enforce_transfer_sod: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    allow_creator_to_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_creator_to_send: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_checker_to_send: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_creator_to_receive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_sender_to_receive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_verifier_to_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    exempt_roles: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # comma-separated
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
