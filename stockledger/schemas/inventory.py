from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockledger.core.money import MAX_UNIT_AMOUNT
from stockledger.models.product import MAX_STOCK_VALUE
from stockledger.schemas.common import PaginationMeta

MovementReason = Literal["PURCHASE", "ADJUSTMENT", "SALE", "RETURN"]
MovementDirection = Literal["IN", "OUT", "TRANSFER"]


class MovementCreate(BaseModel):
    product_id: str
    reason: MovementReason
    signed_quantity: int = Field(
        ...,
        ge=-MAX_STOCK_VALUE,
        le=MAX_STOCK_VALUE,
        description="Positive adds stock, negative removes stock. Cannot be zero.",
    )
    unit_cost: Decimal | None = Field(default=None, ge=0, le=MAX_UNIT_AMOUNT)
    notes: str | None = Field(default=None, max_length=255)

    @field_validator("reason", mode="before")
    @classmethod
    def normalize_reason(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("signed_quantity")
    @classmethod
    def validate_non_zero_quantity(cls, value: int) -> int:
        if value == 0:
            raise ValueError("signed_quantity cannot be zero")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "reason": "ADJUSTMENT",
                "signed_quantity": -2,
                "unit_cost": 15.0,
                "notes": "2 pieces damaged during packaging",
            }
        }
    )


class TransferCreate(BaseModel):
    product_id: str
    quantity: int = Field(gt=0, le=MAX_STOCK_VALUE)
    reason: str | None = Field(default=None, max_length=120)
    target_location: str | None = Field(default=None, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "quantity": 5,
                "reason": "Restock front shelf",
                "target_location": "Showroom",
            }
        }
    )


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    sequence: int
    direction: MovementDirection
    reason: str
    quantity: int
    previous_stock: int
    new_stock: int
    unit_cost: float
    total_cost: float
    notes: str | None = None
    actor_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class StockLevelOut(BaseModel):
    product_id: str
    current_stock: int
    min_stock: int
    max_stock: int | None = None
    is_low: bool


class AuditReportOut(BaseModel):
    product_id: str
    consistent: bool
    computed_stock: int
    registered_stock: int
    broken_at: str | None = None
    movement_count: int

    model_config = ConfigDict(from_attributes=True)


class DriftListOut(BaseModel):
    items: list[AuditReportOut]


class LowStockProductOut(BaseModel):
    product_id: str
    name: str
    sku: str
    current_stock: int
    min_stock: int
    max_stock: int | None = None


class LowStockListOut(BaseModel):
    items: list[LowStockProductOut]
    pagination: PaginationMeta
