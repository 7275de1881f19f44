from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from stockflow.schemas.common import PaginationMeta


class TransferItemIn(BaseModel):
    product_id: str
    product_variation_id: str
    quantity: int = Field(gt=0)


def _reject_duplicate_variations(items: list[TransferItemIn]) -> list[TransferItemIn]:
    seen: set[str] = set()
    for item in items:
        if item.product_variation_id in seen:
            raise ValueError(f"Duplicate product_variation_id '{item.product_variation_id}'")
        seen.add(item.product_variation_id)
    return items


class TransferCreateIn(BaseModel):
    from_location_id: str
    to_location_id: str
    notes: str | None = Field(default=None, max_length=2000)
    items: list[TransferItemIn] = Field(default_factory=list)

    @field_validator("items")
    @classmethod
    def validate_unique_items(cls, value: list[TransferItemIn]) -> list[TransferItemIn]:
        return _reject_duplicate_variations(value)

    @model_validator(mode="after")
    def validate_distinct_locations(self) -> "TransferCreateIn":
        if self.from_location_id == self.to_location_id:
            raise ValueError("from_location_id and to_location_id must differ")
        return self


class TransferUpdateIn(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)
    items: list[TransferItemIn] | None = None

    @field_validator("items")
    @classmethod
    def validate_unique_items(cls, value: list[TransferItemIn] | None) -> list[TransferItemIn] | None:
        if value is None:
            return None
        return _reject_duplicate_variations(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "TransferUpdateIn":
        if self.notes is None and self.items is None:
            raise ValueError("At least one field must be provided")
        return self


class TransferRejectIn(BaseModel):
    reason: str = Field(min_length=1, max_length=255)

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("reason cannot be empty")
        return cleaned


class TransferCancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class TransferItemVerifyIn(BaseModel):
    received_quantity: int = Field(ge=0)
    discrepancy_notes: str | None = Field(default=None, max_length=255)


class TransferItemOut(BaseModel):
    id: str
    product_id: str
    product_variation_id: str
    quantity: int
    received_quantity: int | None = None
    verified: bool
    verified_by: str | None = None
    verified_at: datetime | None = None
    has_discrepancy: bool
    discrepancy_notes: str | None = None


class TransferOut(BaseModel):
    id: str
    transfer_number: str
    from_location_id: str
    from_location_name: str | None = None
    to_location_id: str
    to_location_name: str | None = None
    status: str
    notes: str | None = None
    created_by: str
    checked_by: str | None = None
    checked_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    sent_by: str | None = None
    sent_at: datetime | None = None
    arrived_by: str | None = None
    arrived_at: datetime | None = None
    verification_started_by: str | None = None
    verification_started_at: datetime | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    completed_by: str | None = None
    completed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    stock_deducted: bool
    stock_added: bool
    version: int
    created_at: datetime
    updated_at: datetime
    items: list[TransferItemOut]
    available_transitions: list[str] = Field(default_factory=list)


class TransferSummaryOut(BaseModel):
    id: str
    transfer_number: str
    from_location_id: str
    to_location_id: str
    status: str
    item_count: int
    total_quantity: int
    created_by: str
    created_at: datetime


class TransferListOut(BaseModel):
    items: list[TransferSummaryOut]
    pagination: PaginationMeta
    status: str | None = None
    location_id: str | None = None
