from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from stockflow.schemas.common import PaginationMeta


class LocationCreateIn(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    code: str = Field(min_length=2, max_length=30)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class LocationUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    is_active: bool | None = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "LocationUpdateIn":
        if self.name is None and self.is_active is None:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(populate_by_name=True)


class LocationOut(BaseModel):
    id: str
    name: str
    code: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class LocationListOut(BaseModel):
    items: list[LocationOut]
    pagination: PaginationMeta


class LocationAccessScopeUpsertIn(BaseModel):
    can_manage_inventory: bool = False


class LocationAccessScopeOut(BaseModel):
    id: str
    location_id: str
    actor_id: str
    can_manage_inventory: bool
    created_at: datetime


class LocationAccessScopeListOut(BaseModel):
    items: list[LocationAccessScopeOut]


class StockMovementIn(BaseModel):
    product_variation_id: str
    entry_type: str = Field(
        description="opening, purchase, sale, sale_void, customer_return, supplier_return or adjustment",
    )
    quantity: int = Field(description="Positive for fixed-sign types; signed and non-zero for adjustment")
    reference_id: str | None = Field(default=None, max_length=36)
    note: str | None = Field(default=None, max_length=255)

    @field_validator("entry_type")
    @classmethod
    def normalize_entry_type(cls, value: str) -> str:
        return value.strip().lower()


class LedgerEntryOut(BaseModel):
    id: str
    product_id: str
    product_variation_id: str
    location_id: str
    entry_type: str
    quantity_delta: int
    balance_after: int
    sequence_no: int
    reference_type: str | None = None
    reference_id: str | None = None
    note: str | None = None
    actor_id: str
    created_at: datetime


class LedgerHistoryOut(BaseModel):
    items: list[LedgerEntryOut]
    pagination: PaginationMeta


class LocationStockOut(BaseModel):
    location_id: str
    product_id: str
    product_variation_id: str
    quantity_available: int
    selling_price: Decimal | None = None
    last_updated_at: datetime | None = None


class LocationStockListOut(BaseModel):
    items: list[LocationStockOut]
    pagination: PaginationMeta
