from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

DIRECTION_IN = "IN"
DIRECTION_OUT = "OUT"
DIRECTION_TRANSFER = "TRANSFER"  # neutral: previous_stock == new_stock

REASON_PURCHASE = "PURCHASE"
REASON_ADJUSTMENT = "ADJUSTMENT"
REASON_SALE = "SALE"
REASON_RETURN = "RETURN"
REASON_TRANSFER = "TRANSFER"
REASON_INITIAL = "INITIAL"
MOVEMENT_REASONS = {
    REASON_PURCHASE,
    REASON_ADJUSTMENT,
    REASON_SALE,
    REASON_RETURN,
    REASON_TRANSFER,
    REASON_INITIAL,
}


class StockMovement(Base):
    """
    One immutable row per stock change. quantity is always positive; direction carries the sign.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "sequence", name="uq_stock_movements_product_sequence"),
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        CheckConstraint("previous_stock >= 0", name="ck_stock_movements_previous_stock_non_negative"),
        CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_stock_non_negative"),
        Index("ix_stock_movements_product_created_at", "product_id", "created_at"),
        Index("ix_stock_movements_business_created_at", "business_id", "created_at"),
    )
