from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.exceptions import (
    ConflictRetryableError,
    DuplicateSkuError,
    InfrastructureFailureError,
    InvalidMovementError,
    ProductHasHistoryError,
    ProductNotFoundError,
)
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.money import MAX_UNIT_AMOUNT, to_money
from stockledger.models.product import MAX_STOCK_VALUE, Product
from stockledger.services.ledger_store import count_product_movements

# Fields the catalog may change. Stock levels move only through the movement engine.
UPDATABLE_FIELDS = {
    "name",
    "sku",
    "description",
    "category",
    "min_stock",
    "max_stock",
    "unit_cost",
    "selling_price",
}
_REGISTER_FIELDS = {"current_stock", "stock_updated_at", "version"}


@dataclass(frozen=True)
class ProductAttrs:
    business_id: str
    name: str
    sku: str
    unit_cost: Decimal = Decimal("0.00")
    min_stock: int = 0
    max_stock: int | None = None
    description: str | None = None
    category: str | None = None
    selling_price: Decimal | None = None


def get_product(db: Session, product_id: str, *, business_id: str | None = None) -> Product:
    stmt = select(Product).where(Product.id == product_id)
    if business_id is not None:
        stmt = stmt.where(Product.business_id == business_id)
    product = db.execute(stmt).scalar_one_or_none()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def get_unit_cost(db: Session, product_id: str) -> Decimal:
    unit_cost = db.execute(
        select(Product.unit_cost).where(Product.id == product_id)
    ).scalar_one_or_none()
    if unit_cost is None:
        raise ProductNotFoundError(product_id)
    return to_money(unit_cost)


def ensure_sku_available(
    db: Session,
    *,
    business_id: str,
    sku: str,
    exclude_product_id: str | None = None,
) -> None:
    stmt = select(Product.id).where(
        Product.business_id == business_id,
        func.lower(Product.sku) == sku.lower(),
    )
    if exclude_product_id is not None:
        stmt = stmt.where(Product.id != exclude_product_id)
    if db.execute(stmt.limit(1)).scalar_one_or_none():
        raise DuplicateSkuError(sku)


def _validate_thresholds(min_stock: int, max_stock: int | None) -> None:
    if min_stock < 0:
        raise InvalidMovementError("min_stock cannot be negative", field="min_stock")
    if max_stock is not None and max_stock < 0:
        raise InvalidMovementError("max_stock cannot be negative", field="max_stock")
    if max_stock is not None and max_stock < min_stock:
        raise InvalidMovementError("max_stock cannot be lower than min_stock", field="max_stock")
    for field, value in (("min_stock", min_stock), ("max_stock", max_stock)):
        if value is not None and value > MAX_STOCK_VALUE:
            raise InvalidMovementError(f"{field} cannot exceed {MAX_STOCK_VALUE}", field=field)


def _validate_money(field: str, value: Decimal) -> Decimal:
    if value < 0:
        raise InvalidMovementError(f"{field} cannot be negative", field=field)
    value = to_money(value)
    if value > MAX_UNIT_AMOUNT:
        raise InvalidMovementError(f"{field} cannot exceed {MAX_UNIT_AMOUNT}", field=field)
    return value


def stage_product(db: Session, attrs: ProductAttrs) -> Product:
    """Add a new product row with zero stock to the session without committing."""
    _validate_thresholds(attrs.min_stock, attrs.max_stock)
    unit_cost = _validate_money("unit_cost", attrs.unit_cost)
    selling_price = (
        _validate_money("selling_price", attrs.selling_price) if attrs.selling_price is not None else None
    )
    ensure_sku_available(db, business_id=attrs.business_id, sku=attrs.sku)

    product = Product(
        id=generate_shortuuid(),
        business_id=attrs.business_id,
        name=attrs.name,
        sku=attrs.sku,
        description=attrs.description,
        category=attrs.category,
        current_stock=0,
        min_stock=attrs.min_stock,
        max_stock=attrs.max_stock,
        unit_cost=unit_cost,
        selling_price=selling_price,
        active=True,
    )
    db.add(product)
    return product


def _commit(db: Session, *, product_id: str, operation: str, sku: str | None = None) -> None:
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictRetryableError(product_id, detail=str(exc)) from exc
    except IntegrityError as exc:
        db.rollback()
        if sku is not None:
            raise DuplicateSkuError(sku) from exc
        raise ConflictRetryableError(product_id, detail=str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise InfrastructureFailureError(operation) from exc


def update_product(
    db: Session,
    product_id: str,
    changes: dict[str, Any],
    *,
    business_id: str | None = None,
) -> Product:
    changes = dict(changes)
    register_fields = sorted(set(changes) & _REGISTER_FIELDS)
    if register_fields:
        raise InvalidMovementError(
            "Stock levels can only change through stock movements",
            field=register_fields[0],
        )
    unknown = sorted(set(changes) - UPDATABLE_FIELDS)
    if unknown:
        raise InvalidMovementError(f"Unknown product field: {unknown[0]}", field=unknown[0])

    product = get_product(db, product_id, business_id=business_id)
    min_stock = changes.get("min_stock", product.min_stock)
    max_stock = changes["max_stock"] if "max_stock" in changes else product.max_stock
    _validate_thresholds(min_stock, max_stock)

    if "sku" in changes and changes["sku"].lower() != product.sku.lower():
        ensure_sku_available(
            db,
            business_id=product.business_id,
            sku=changes["sku"],
            exclude_product_id=product.id,
        )
    if "unit_cost" in changes and changes["unit_cost"] is None:
        raise InvalidMovementError("unit_cost is required", field="unit_cost")
    for money_field in ("unit_cost", "selling_price"):
        if changes.get(money_field) is not None:
            changes[money_field] = _validate_money(money_field, changes[money_field])

    for field, value in changes.items():
        setattr(product, field, value)
    _commit(db, product_id=product.id, operation="product.update", sku=changes.get("sku"))
    return product


def archive_product(db: Session, product_id: str, *, business_id: str | None = None) -> Product:
    product = get_product(db, product_id, business_id=business_id)
    product.active = False
    _commit(db, product_id=product.id, operation="product.archive")
    return product


def delete_product(db: Session, product_id: str, *, business_id: str | None = None) -> None:
    product = get_product(db, product_id, business_id=business_id)
    movement_count = count_product_movements(db, product.id)
    if movement_count > 0:
        raise ProductHasHistoryError(product.id, movement_count)
    db.delete(product)
    _commit(db, product_id=product_id, operation="product.delete")
