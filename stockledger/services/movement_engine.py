"""
Movement engine: the only write path for product stock.

Every command reads the product register, validates the change, appends one
stock_movements row and writes the register inside a single SQLAlchemy
transaction. The whole read-compute-write section runs under the per-product
lock (services.product_locks) and, where the database supports it, a
``SELECT ... FOR UPDATE`` row lock. ``Product.version`` catches writers from
other processes; those conflicts are retried here a bounded number of times
before StockBusyError reaches the caller.

Business failures (ProductNotFoundError, InsufficientStockError,
InvalidMovementError) are raised before anything is written. Storage errors
roll back both writes and surface as InfrastructureFailureError.
"""

import logging
import time
from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    ConflictRetryableError,
    InfrastructureFailureError,
    InsufficientStockError,
    InvalidMovementError,
    StockBusyError,
    StockLedgerError,
)
from stockledger.core.money import MAX_LINE_TOTAL, MAX_UNIT_AMOUNT, line_total, to_money
from stockledger.core.observability import log_event, movement_logger
from stockledger.models.product import MAX_STOCK_VALUE, Product
from stockledger.models.stock_movement import (
    DIRECTION_IN,
    DIRECTION_OUT,
    DIRECTION_TRANSFER,
    MOVEMENT_REASONS,
    REASON_ADJUSTMENT,
    REASON_INITIAL,
    REASON_PURCHASE,
    REASON_RETURN,
    REASON_SALE,
    REASON_TRANSFER,
    StockMovement,
)
from stockledger.services.catalog_service import ProductAttrs, get_unit_cost, stage_product
from stockledger.services.ledger_store import append_movement, get_ledger_head, next_movement_timestamp
from stockledger.services.product_locks import product_locks
from stockledger.services.stock_register import (
    StockLevel,
    lock_product_row,
    stock_level_of,
    write_current_stock,
)

T = TypeVar("T")

NOTES_MAX_LENGTH = 255


def _normalize_reason(reason: str) -> str:
    value = str(reason or "").strip().upper()
    if value not in MOVEMENT_REASONS:
        raise InvalidMovementError(f"Unknown movement reason: {reason}", field="reason")
    return value


def _require_actor(actor_id: str) -> str:
    cleaned = (actor_id or "").strip()
    if not cleaned:
        raise InvalidMovementError("actor_id is required", field="actor_id")
    return cleaned


def _require_int(value: int, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidMovementError(f"{field} must be an integer", field=field)
    if abs(value) > MAX_STOCK_VALUE:
        raise InvalidMovementError(f"{field} cannot exceed {MAX_STOCK_VALUE}", field=field)
    return value


def _require_positive(value: int, *, field: str) -> int:
    value = _require_int(value, field=field)
    if value <= 0:
        raise InvalidMovementError(f"{field} must be greater than zero", field=field)
    return value


def _clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    cleaned = notes.strip()
    if len(cleaned) > NOTES_MAX_LENGTH:
        raise InvalidMovementError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters", field="notes")
    return cleaned or None


def _resolve_unit_cost(db: Session, product_id: str, unit_cost: Decimal | int | str | None) -> Decimal:
    if unit_cost is None:
        return get_unit_cost(db, product_id)
    value = to_money(unit_cost)
    if value < 0:
        raise InvalidMovementError("unit_cost cannot be negative", field="unit_cost")
    if value > MAX_UNIT_AMOUNT:
        raise InvalidMovementError(f"unit_cost cannot exceed {MAX_UNIT_AMOUNT}", field="unit_cost")
    return value


def _record(
    db: Session,
    product: Product,
    *,
    direction: str,
    reason: str,
    quantity: int,
    new_stock: int,
    unit_cost: Decimal,
    actor_id: str,
    notes: str | None,
) -> StockMovement:
    if line_total(unit_cost, quantity) > MAX_LINE_TOTAL:
        raise InvalidMovementError(f"total_cost cannot exceed {MAX_LINE_TOTAL}", field="unit_cost")
    head = get_ledger_head(db, product.id)
    created_at = next_movement_timestamp(head)
    movement = append_movement(
        db,
        business_id=product.business_id,
        product_id=product.id,
        sequence=head.last_sequence + 1,
        direction=direction,
        reason=reason,
        quantity=quantity,
        previous_stock=product.current_stock,
        new_stock=new_stock,
        unit_cost=unit_cost,
        actor_id=actor_id,
        created_at=created_at,
        notes=notes,
    )
    db.flush()
    write_current_stock(db, product, new_stock, at=created_at)
    return movement


def _run_serialized(db: Session, *, lock_key: str, operation: str, work: Callable[[], T]) -> T:
    """
    Run ``work`` and commit under the lock for ``lock_key``, retrying optimistic conflicts.

    The session is rolled back on every failure path, so a failed attempt
    leaves neither the ledger row nor the register change behind.
    """
    max_attempts = settings.movement_max_attempts
    for attempt in range(1, max_attempts + 1):
        try:
            with product_locks.hold(lock_key, timeout=settings.stock_lock_timeout_seconds):
                try:
                    result = work()
                    db.commit()
                except (StaleDataError, IntegrityError) as exc:
                    db.rollback()
                    raise ConflictRetryableError(lock_key, detail=str(exc)) from exc
                except DataError as exc:
                    # Out-of-range column value; not retried.
                    db.rollback()
                    raise InvalidMovementError(f"Value out of range during {operation}") from exc
                except SQLAlchemyError as exc:
                    db.rollback()
                    raise InfrastructureFailureError(operation) from exc
                except StockLedgerError as exc:
                    db.rollback()
                    log_event(
                        movement_logger,
                        "stock.movement.rejected",
                        level=logging.WARNING,
                        operation=operation,
                        lock_key=lock_key,
                        code=exc.code,
                        message=exc.message,
                    )
                    raise
                except BaseException:
                    db.rollback()
                    raise
                return result
        except ConflictRetryableError as exc:
            if attempt >= max_attempts:
                log_event(
                    movement_logger,
                    "stock.movement.rejected",
                    level=logging.WARNING,
                    operation=operation,
                    lock_key=lock_key,
                    code=StockBusyError.code,
                    attempts=attempt,
                )
                raise StockBusyError(lock_key, reason="conflict_retries_exhausted") from exc
            log_event(
                movement_logger,
                "stock.movement.retry",
                level=logging.WARNING,
                operation=operation,
                lock_key=lock_key,
                attempt=attempt,
                detail=exc.detail,
            )
            time.sleep(settings.movement_retry_backoff_seconds * attempt)
    raise StockBusyError(lock_key, reason="conflict_retries_exhausted")


def _log_applied(movement: StockMovement, level: StockLevel) -> None:
    log_event(
        movement_logger,
        "stock.movement.applied",
        movement_id=movement.id,
        product_id=movement.product_id,
        sequence=movement.sequence,
        direction=movement.direction,
        reason=movement.reason,
        quantity=movement.quantity,
        previous_stock=movement.previous_stock,
        new_stock=movement.new_stock,
        total_cost=str(movement.total_cost),
        actor_id=movement.actor_id,
    )
    if level.current_stock == 0:
        log_event(
            movement_logger,
            "stock.out",
            level=logging.WARNING,
            product_id=level.product_id,
        )
    elif level.is_low:
        log_event(
            movement_logger,
            "stock.low",
            level=logging.WARNING,
            product_id=level.product_id,
            current_stock=level.current_stock,
            min_stock=level.min_stock,
        )
    if level.is_over_max:
        log_event(
            movement_logger,
            "stock.over_max",
            level=logging.WARNING,
            product_id=level.product_id,
            current_stock=level.current_stock,
            max_stock=level.max_stock,
        )


def apply_movement(
    db: Session,
    *,
    product_id: str,
    reason: str,
    signed_quantity: int,
    actor_id: str,
    unit_cost: Decimal | int | str | None = None,
    notes: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    """
    Apply a signed stock change and return the persisted movement.

    Positive quantities are recorded as IN, negative ones as OUT. When
    ``unit_cost`` is omitted the product's catalog unit cost is used.
    Raises InsufficientStockError, without writing, when the change would
    take stock below zero.
    """
    reason_value = _normalize_reason(reason)
    if reason_value == REASON_TRANSFER:
        raise InvalidMovementError("Transfers must be recorded with transfer_stock", field="reason")
    if reason_value == REASON_INITIAL:
        raise InvalidMovementError("INITIAL movements are only written at product creation", field="reason")
    signed_quantity = _require_int(signed_quantity, field="signed_quantity")
    if signed_quantity == 0:
        raise InvalidMovementError("signed_quantity cannot be zero", field="signed_quantity")
    actor = _require_actor(actor_id)
    cleaned_notes = _clean_notes(notes)

    def _work() -> tuple[StockMovement, StockLevel]:
        product = lock_product_row(db, product_id, business_id=business_id)
        new_stock = product.current_stock + signed_quantity
        if new_stock < 0:
            raise InsufficientStockError(
                product.id,
                requested=abs(signed_quantity),
                available=product.current_stock,
            )
        if new_stock > MAX_STOCK_VALUE:
            raise InvalidMovementError(
                f"Resulting stock cannot exceed {MAX_STOCK_VALUE}",
                field="signed_quantity",
            )
        movement = _record(
            db,
            product,
            direction=DIRECTION_IN if signed_quantity > 0 else DIRECTION_OUT,
            reason=reason_value,
            quantity=abs(signed_quantity),
            new_stock=new_stock,
            unit_cost=_resolve_unit_cost(db, product.id, unit_cost),
            actor_id=actor,
            notes=cleaned_notes,
        )
        return movement, stock_level_of(product)

    movement, level = _run_serialized(
        db,
        lock_key=product_id,
        operation="stock.movement.apply",
        work=_work,
    )
    _log_applied(movement, level)
    return movement


def record_purchase(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    actor_id: str,
    unit_cost: Decimal | int | str | None = None,
    notes: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    return apply_movement(
        db,
        product_id=product_id,
        reason=REASON_PURCHASE,
        signed_quantity=_require_positive(quantity, field="quantity"),
        actor_id=actor_id,
        unit_cost=unit_cost,
        notes=notes,
        business_id=business_id,
    )


def record_sale(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    actor_id: str,
    unit_cost: Decimal | int | str | None = None,
    notes: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    return apply_movement(
        db,
        product_id=product_id,
        reason=REASON_SALE,
        signed_quantity=-_require_positive(quantity, field="quantity"),
        actor_id=actor_id,
        unit_cost=unit_cost,
        notes=notes,
        business_id=business_id,
    )


def record_return(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    actor_id: str,
    unit_cost: Decimal | int | str | None = None,
    notes: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    return apply_movement(
        db,
        product_id=product_id,
        reason=REASON_RETURN,
        signed_quantity=_require_positive(quantity, field="quantity"),
        actor_id=actor_id,
        unit_cost=unit_cost,
        notes=notes,
        business_id=business_id,
    )


def adjust_stock(
    db: Session,
    *,
    product_id: str,
    quantity_delta: int,
    actor_id: str,
    unit_cost: Decimal | int | str | None = None,
    notes: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    return apply_movement(
        db,
        product_id=product_id,
        reason=REASON_ADJUSTMENT,
        signed_quantity=quantity_delta,
        actor_id=actor_id,
        unit_cost=unit_cost,
        notes=notes,
        business_id=business_id,
    )


def _transfer_notes(reason: str | None, target_location: str | None) -> str | None:
    label = "Transfer"
    if target_location and target_location.strip():
        label = f"Transfer to {target_location.strip()}"
    if reason and reason.strip():
        return _clean_notes(f"{label}: {reason.strip()}")
    return label


def transfer_stock(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    actor_id: str,
    reason: str | None = None,
    target_location: str | None = None,
    business_id: str | None = None,
) -> StockMovement:
    """
    Record a neutral TRANSFER movement.

    Locations are not modelled, so the register keeps its value
    (previous_stock == new_stock). The quantity is still checked against
    the stock on hand and the register row is rewritten so the transfer
    takes part in the same serialization as any other change.
    """
    quantity = _require_positive(quantity, field="quantity")
    actor = _require_actor(actor_id)
    notes = _transfer_notes(reason, target_location)

    def _work() -> tuple[StockMovement, StockLevel]:
        product = lock_product_row(db, product_id, business_id=business_id)
        if quantity > product.current_stock:
            raise InsufficientStockError(
                product.id,
                requested=quantity,
                available=product.current_stock,
            )
        movement = _record(
            db,
            product,
            direction=DIRECTION_TRANSFER,
            reason=REASON_TRANSFER,
            quantity=quantity,
            new_stock=product.current_stock,
            unit_cost=_resolve_unit_cost(db, product.id, None),
            actor_id=actor,
            notes=notes,
        )
        return movement, stock_level_of(product)

    movement, level = _run_serialized(
        db,
        lock_key=product_id,
        operation="stock.transfer",
        work=_work,
    )
    _log_applied(movement, level)
    return movement


def create_product_with_initial_stock(
    db: Session,
    attrs: ProductAttrs,
    initial_stock: int,
    *,
    actor_id: str,
) -> Product:
    """
    Create a catalog product and, when ``initial_stock`` > 0, its INITIAL movement.

    Both rows are committed together; if the movement cannot be written the
    product is not created either.
    """
    initial_stock = _require_int(initial_stock, field="initial_stock")
    if initial_stock < 0:
        raise InvalidMovementError("initial_stock cannot be negative", field="initial_stock")
    actor = _require_actor(actor_id)

    def _work() -> tuple[Product, StockMovement | None, StockLevel]:
        product = stage_product(db, attrs)
        db.flush()
        movement = None
        if initial_stock > 0:
            movement = _record(
                db,
                product,
                direction=DIRECTION_IN,
                reason=REASON_INITIAL,
                quantity=initial_stock,
                new_stock=initial_stock,
                unit_cost=product.unit_cost,
                actor_id=actor,
                notes="Initial stock",
            )
        return product, movement, stock_level_of(product)

    # New products have no id yet; serialize on the SKU so duplicate creates queue up.
    product, movement, level = _run_serialized(
        db,
        lock_key=f"sku:{attrs.business_id}:{attrs.sku.lower()}",
        operation="product.create",
        work=_work,
    )
    log_event(
        movement_logger,
        "product.created",
        product_id=product.id,
        business_id=product.business_id,
        sku=product.sku,
        initial_stock=initial_stock,
        actor_id=actor,
    )
    if movement is not None:
        _log_applied(movement, level)
    return product
