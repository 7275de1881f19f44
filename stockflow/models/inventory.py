from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockflow.core.errors import LedgerImmutableError
from stockflow.db.base import Base

LEDGER_ENTRY_TYPES = (
    "opening",
    "purchase",
    "transfer_in",
    "transfer_out",
    "sale",
    "sale_void",
    "customer_return",
    "supplier_return",
    "adjustment",
    "correction",
)


class StockLedgerEntry(Base):
    """
    One immutable row per inventory-affecting event at a location.
    Positive delta = stock in, negative = stock out. Corrections are new rows.
    """
    __tablename__ = "stock_ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    product_variation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("product_variations.id"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)

    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)  # per (variation, location)

    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "product_variation_id",
            "location_id",
            "sequence_no",
            name="uq_stock_ledger_entries_variation_location_sequence",
        ),
        Index(
            "ix_stock_ledger_entries_business_location_variation_created_at",
            "business_id",
            "location_id",
            "product_variation_id",
            "created_at",
        ),
        Index("ix_stock_ledger_entries_reference", "reference_type", "reference_id"),
    )


class StockProjection(Base):
    """Current available quantity per (variation, location); only the ledger append path writes it."""

    __tablename__ = "stock_projections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    product_variation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("product_variations.id"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("product_variation_id", "location_id", name="uq_stock_projections_variation_location"),
        Index("ix_stock_projections_business_location", "business_id", "location_id"),
    )


@event.listens_for(StockLedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} is immutable; append a correction instead")


@event.listens_for(StockLedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Ledger entry {target.id} cannot be deleted; append a correction instead")
