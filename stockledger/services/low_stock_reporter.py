from collections.abc import Iterator

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from stockledger.models.product import Product


class LowStockView:
    """
    Products at or below their min_stock, lowest stock first.

    Each iteration runs a fresh query, so iterating again gives a new
    snapshot instead of resuming the previous one.
    """

    def __init__(self, db: Session, business_id: str, *, include_inactive: bool = False) -> None:
        self._db = db
        self.business_id = business_id
        self.include_inactive = include_inactive

    def _filtered(self, stmt: Select) -> Select:
        stmt = stmt.where(
            Product.business_id == self.business_id,
            Product.current_stock <= Product.min_stock,
        )
        if not self.include_inactive:
            stmt = stmt.where(Product.active.is_(True))
        return stmt

    def statement(self) -> Select:
        return self._filtered(select(Product)).order_by(
            Product.current_stock.asc(),
            Product.name.asc(),
            Product.id.asc(),
        )

    def __iter__(self) -> Iterator[Product]:
        yield from self._db.execute(self.statement()).scalars()

    def count(self) -> int:
        return int(self._db.execute(self._filtered(select(func.count(Product.id)))).scalar_one())

    def page(self, *, limit: int, offset: int = 0) -> list[Product]:
        return list(self._db.execute(self.statement().offset(offset).limit(limit)).scalars().all())


def list_low_stock(db: Session, business_id: str, *, include_inactive: bool = False) -> LowStockView:
    return LowStockView(db, business_id, include_inactive=include_inactive)
