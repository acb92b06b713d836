from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

# Largest value the Integer stock columns hold on every supported backend.
MAX_STOCK_VALUE = 2_147_483_647


class Product(Base):
    """
    Catalog row plus the stock register columns.

    current_stock is written only by services.movement_engine, together with
    a stock_movements row in the same transaction.
    """
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    # Stock register
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    min_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stock_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
        CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        CheckConstraint("max_stock IS NULL OR max_stock >= 0", name="ck_products_max_stock_non_negative"),
        CheckConstraint("unit_cost >= 0", name="ck_products_unit_cost_non_negative"),
        Index("ix_products_business_created_at", "business_id", "created_at"),
        Index("ix_products_business_current_stock", "business_id", "current_stock"),
        Index(
            "ux_products_business_sku_lower",
            "business_id",
            func.lower(sku),
            unique=True,
        ),
    )
