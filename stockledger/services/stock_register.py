from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.core.exceptions import InvalidMovementError, ProductNotFoundError
from stockledger.models.product import Product


@dataclass(frozen=True)
class StockLevel:
    product_id: str
    current_stock: int
    min_stock: int
    max_stock: int | None

    @property
    def is_low(self) -> bool:
        return self.current_stock <= self.min_stock

    @property
    def is_over_max(self) -> bool:
        return self.max_stock is not None and self.current_stock > self.max_stock


def lock_product_row(db: Session, product_id: str, *, business_id: str | None = None) -> Product:
    stmt = (
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if business_id is not None:
        stmt = stmt.where(Product.business_id == business_id)
    product = db.execute(stmt).scalar_one_or_none()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def read_stock_level(db: Session, product_id: str) -> StockLevel:
    row = db.execute(
        select(Product.current_stock, Product.min_stock, Product.max_stock).where(
            Product.id == product_id
        )
    ).one_or_none()
    if row is None:
        raise ProductNotFoundError(product_id)
    return StockLevel(
        product_id=product_id,
        current_stock=int(row.current_stock),
        min_stock=int(row.min_stock),
        max_stock=row.max_stock,
    )


def write_current_stock(db: Session, product: Product, new_stock: int, *, at: datetime) -> None:
    if new_stock < 0:
        raise InvalidMovementError("current_stock cannot be negative", field="current_stock")
    product.current_stock = new_stock
    product.stock_updated_at = at
    db.add(product)


def stock_level_of(product: Product) -> StockLevel:
    return StockLevel(
        product_id=product.id,
        current_stock=product.current_stock,
        min_stock=product.min_stock,
        max_stock=product.max_stock,
    )
