import logging
from collections.abc import Iterator
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.core.observability import log_event, movement_logger
from stockledger.models.product import Product
from stockledger.models.stock_movement import DIRECTION_IN, DIRECTION_OUT, StockMovement
from stockledger.services.catalog_service import get_product
from stockledger.services.ledger_store import iter_product_movements


@dataclass(frozen=True)
class AuditReport:
    product_id: str
    consistent: bool
    computed_stock: int
    registered_stock: int
    broken_at: str | None
    movement_count: int

    @property
    def drift(self) -> int:
        return self.registered_stock - self.computed_stock


def signed_delta(movement: StockMovement) -> int:
    if movement.direction == DIRECTION_IN:
        return movement.quantity
    if movement.direction == DIRECTION_OUT:
        return -movement.quantity
    return 0


def fold_movements(movements: Iterator[StockMovement]) -> tuple[int, str | None, int]:
    """Replay movements from zero; return (computed stock, first broken movement id, count)."""
    running = 0
    broken_at: str | None = None
    count = 0
    for movement in movements:
        count += 1
        expected_new = running + signed_delta(movement)
        if broken_at is None and (
            movement.previous_stock != running or movement.new_stock != expected_new
        ):
            broken_at = movement.id
        running = expected_new
    return running, broken_at, count


def _report(db: Session, product: Product) -> AuditReport:
    computed, broken_at, count = fold_movements(iter_product_movements(db, product.id))
    registered = int(product.current_stock)
    report = AuditReport(
        product_id=product.id,
        consistent=broken_at is None and computed == registered,
        computed_stock=computed,
        registered_stock=registered,
        broken_at=broken_at,
        movement_count=count,
    )
    if not report.consistent:
        log_event(
            movement_logger,
            "stock.audit.drift",
            level=logging.WARNING,
            product_id=report.product_id,
            computed_stock=report.computed_stock,
            registered_stock=report.registered_stock,
            broken_at=report.broken_at,
        )
    return report


def audit_product(db: Session, product_id: str, *, business_id: str | None = None) -> AuditReport:
    product = get_product(db, product_id, business_id=business_id)
    return _report(db, product)


def audit_business(db: Session, business_id: str) -> Iterator[AuditReport]:
    products = db.execute(
        select(Product).where(Product.business_id == business_id).order_by(Product.created_at, Product.id)
    ).scalars().all()
    for product in products:
        yield _report(db, product)


def find_drift(db: Session, business_id: str) -> Iterator[AuditReport]:
    for report in audit_business(db, business_id):
        if not report.consistent:
            yield report
