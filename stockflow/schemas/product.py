from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockflow.schemas.common import PaginationMeta


class VariationCreate(BaseModel):
    name: str = "Default"
    sku: Optional[str] = None
    selling_price: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class ProductCreate(BaseModel):
    name: str
    sku: Optional[str] = None
    variations: list[VariationCreate] = Field(default_factory=lambda: [VariationCreate()])

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ankara Fabric",
                "sku": "ANK",
                "variations": [{"name": "6x6", "sku": "ANK-6X6", "selling_price": 100.0}],
            }
        }
    )


class VariationOut(BaseModel):
    id: str
    product_id: str
    name: str
    sku: Optional[str] = None
    selling_price: Optional[Decimal] = None
    created_at: datetime


class ProductOut(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    active: bool
    created_at: datetime
    variations: list[VariationOut]


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta
