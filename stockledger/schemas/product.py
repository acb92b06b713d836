from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stockledger.core.money import MAX_UNIT_AMOUNT
from stockledger.models.product import MAX_STOCK_VALUE


def _required_text(value: str, field: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{field} is required")
    return cleaned


class ProductCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    sku: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[str] = Field(default=None, max_length=100)
    unit_cost: Decimal = Field(default=Decimal("0.00"), ge=0, le=MAX_UNIT_AMOUNT)
    selling_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_UNIT_AMOUNT)
    initial_stock: int = Field(default=0, ge=0, le=MAX_STOCK_VALUE)
    min_stock: int = Field(default=0, ge=0, le=MAX_STOCK_VALUE)
    max_stock: Optional[int] = Field(default=None, ge=0, le=MAX_STOCK_VALUE)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_text(value, "name")

    @field_validator("sku")
    @classmethod
    def validate_sku(cls, value: str) -> str:
        return _required_text(value, "sku")

    @field_validator("description", "category")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_stock_bounds(self) -> "ProductCreate":
        if self.max_stock is not None and self.max_stock < self.min_stock:
            raise ValueError("max_stock cannot be lower than min_stock")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ankara Fabric",
                "sku": "ANK-6X6-PLN",
                "category": "fabrics",
                "unit_cost": 15.0,
                "selling_price": 30.0,
                "initial_stock": 50,
                "min_stock": 10,
                "max_stock": 200,
            }
        }
    )


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    sku: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[str] = Field(default=None, max_length=100)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0, le=MAX_UNIT_AMOUNT)
    selling_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_UNIT_AMOUNT)
    min_stock: Optional[int] = Field(default=None, ge=0, le=MAX_STOCK_VALUE)
    max_stock: Optional[int] = Field(default=None, ge=0, le=MAX_STOCK_VALUE)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "min_stock": 12,
                "max_stock": 250,
                "unit_cost": 16.5,
            }
        },
    )


class ProductOut(BaseModel):
    id: str
    business_id: str
    name: str
    sku: str
    description: Optional[str] = None
    category: Optional[str] = None
    active: bool
    current_stock: int
    min_stock: int
    max_stock: Optional[int] = None
    unit_cost: float
    selling_price: Optional[float] = None
    stock_updated_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
