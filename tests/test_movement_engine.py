from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    DuplicateSkuError,
    InfrastructureFailureError,
    InsufficientStockError,
    InvalidMovementError,
    MovementImmutableError,
    ProductNotFoundError,
    StockBusyError,
)
from stockledger.models.product import MAX_STOCK_VALUE, Product
from stockledger.models.stock_movement import StockMovement
from stockledger.services import movement_engine
from stockledger.services.catalog_service import ProductAttrs
from stockledger.services.consistency_auditor import audit_product
from stockledger.services.ledger_store import LedgerHead, as_utc, next_movement_timestamp
from stockledger.services.movement_engine import (
    adjust_stock,
    apply_movement,
    create_product_with_initial_stock,
    record_purchase,
    record_return,
    record_sale,
    transfer_stock,
)
from stockledger.services.product_locks import product_locks


def _attrs(sku: str = "ANK-6X6-PLN", **overrides) -> ProductAttrs:
    values = {
        "business_id": "biz-1",
        "name": "Ankara Fabric",
        "sku": sku,
        "unit_cost": Decimal("15.00"),
        "min_stock": 10,
    }
    values.update(overrides)
    return ProductAttrs(**values)


def _movements(session_local, product_id: str) -> list[StockMovement]:
    with session_local() as fresh:
        return list(
            fresh.execute(
                select(StockMovement)
                .where(StockMovement.product_id == product_id)
                .order_by(StockMovement.sequence)
            ).scalars()
        )


def _registered_stock(session_local, product_id: str) -> int:
    with session_local() as fresh:
        return fresh.execute(
            select(Product.current_stock).where(Product.id == product_id)
        ).scalar_one()


def test_adjustment_scenario_records_movement_and_rejects_overdraw(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 50, actor_id="u1")

    movement = apply_movement(
        db,
        product_id=product.id,
        reason="ADJUSTMENT",
        signed_quantity=-45,
        unit_cost=15,
        actor_id="u1",
    )

    assert movement.previous_stock == 50
    assert movement.new_stock == 5
    assert movement.quantity == 45
    assert movement.direction == "OUT"
    assert movement.reason == "ADJUSTMENT"
    assert movement.total_cost == Decimal("675.00")
    assert movement.actor_id == "u1"
    assert _registered_stock(session_local, product.id) == 5

    with pytest.raises(InsufficientStockError) as exc_info:
        apply_movement(
            db,
            product_id=product.id,
            reason="ADJUSTMENT",
            signed_quantity=-10,
            actor_id="u1",
        )
    assert exc_info.value.requested == 10
    assert exc_info.value.available == 5
    assert _registered_stock(session_local, product.id) == 5
    assert len(_movements(session_local, product.id)) == 2


def test_initial_stock_creates_single_initial_movement(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 5, actor_id="u1")

    movements = _movements(session_local, product.id)
    assert len(movements) == 1
    initial = movements[0]
    assert initial.reason == "INITIAL"
    assert initial.direction == "IN"
    assert initial.previous_stock == 0
    assert initial.new_stock == 5
    assert initial.sequence == 1
    assert initial.total_cost == Decimal("75.00")
    assert _registered_stock(session_local, product.id) == 5


def test_zero_initial_stock_creates_product_without_history(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 0, actor_id="u1")

    assert _registered_stock(session_local, product.id) == 0
    assert _movements(session_local, product.id) == []


def test_negative_initial_stock_is_rejected_before_any_write(db, session_local):
    with pytest.raises(InvalidMovementError):
        create_product_with_initial_stock(db, _attrs(), -1, actor_id="u1")

    with session_local() as fresh:
        assert fresh.execute(select(func.count(Product.id))).scalar_one() == 0


def test_failed_initial_movement_rolls_back_product(db, session_local, monkeypatch):
    def broken_write(*args, **kwargs):
        raise RuntimeError("register unavailable")

    monkeypatch.setattr(movement_engine, "write_current_stock", broken_write)

    with pytest.raises(RuntimeError):
        create_product_with_initial_stock(db, _attrs(), 7, actor_id="u1")

    with session_local() as fresh:
        assert fresh.execute(select(func.count(Product.id))).scalar_one() == 0
        assert fresh.execute(select(func.count(StockMovement.id))).scalar_one() == 0


def test_stock_never_goes_negative_across_a_sequence(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 3, actor_id="u1")
    deltas = [-2, 4, -6, -5, 1, -1, -1, 10, -12]
    expected = 3
    for delta in deltas:
        if expected + delta < 0:
            with pytest.raises(InsufficientStockError):
                adjust_stock(db, product_id=product.id, quantity_delta=delta, actor_id="u1")
        else:
            adjust_stock(db, product_id=product.id, quantity_delta=delta, actor_id="u1")
            expected += delta
        assert _registered_stock(session_local, product.id) == expected
        assert expected >= 0

    movements = _movements(session_local, product.id)
    for earlier, later in zip(movements, movements[1:]):
        assert earlier.new_stock == later.previous_stock
    assert movements[-1].new_stock == expected


def test_unit_cost_defaults_to_catalog_cost(db):
    product = create_product_with_initial_stock(db, _attrs(unit_cost=Decimal("2.35")), 0, actor_id="u1")

    movement = record_purchase(db, product_id=product.id, quantity=3, actor_id="buyer")

    assert movement.unit_cost == Decimal("2.35")
    assert movement.total_cost == Decimal("7.05")
    assert movement.reason == "PURCHASE"
    assert movement.direction == "IN"


def test_sale_and_return_wrappers_sign_quantities(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 10, actor_id="u1")

    sale = record_sale(db, product_id=product.id, quantity=4, actor_id="till-1", notes="Walk-in")
    refund = record_return(db, product_id=product.id, quantity=1, actor_id="till-1")

    assert (sale.direction, sale.reason, sale.new_stock) == ("OUT", "SALE", 6)
    assert sale.notes == "Walk-in"
    assert (refund.direction, refund.reason, refund.new_stock) == ("IN", "RETURN", 7)
    assert _registered_stock(session_local, product.id) == 7

    with pytest.raises(InvalidMovementError):
        record_sale(db, product_id=product.id, quantity=-4, actor_id="till-1")


@pytest.mark.parametrize(
    ("reason", "signed_quantity", "actor_id"),
    [
        ("ADJUSTMENT", 0, "u1"),
        ("TRANSFER", 2, "u1"),
        ("INITIAL", 2, "u1"),
        ("SHRINKAGE", 2, "u1"),
        ("ADJUSTMENT", 2, "  "),
        ("ADJUSTMENT", 2.5, "u1"),
    ],
)
def test_invalid_commands_are_rejected_without_writes(db, session_local, reason, signed_quantity, actor_id):
    product = create_product_with_initial_stock(db, _attrs(), 4, actor_id="u1")

    with pytest.raises(InvalidMovementError):
        apply_movement(
            db,
            product_id=product.id,
            reason=reason,
            signed_quantity=signed_quantity,
            actor_id=actor_id,
        )

    assert len(_movements(session_local, product.id)) == 1
    assert _registered_stock(session_local, product.id) == 4


def test_reason_is_case_insensitive(db):
    product = create_product_with_initial_stock(db, _attrs(), 4, actor_id="u1")

    movement = apply_movement(db, product_id=product.id, reason="purchase", signed_quantity=1, actor_id="u1")

    assert movement.reason == "PURCHASE"


def test_unknown_product_raises_not_found(db):
    with pytest.raises(ProductNotFoundError):
        apply_movement(db, product_id="missing", reason="SALE", signed_quantity=-1, actor_id="u1")


def test_product_outside_scope_is_not_found(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 4, actor_id="u1")

    with pytest.raises(ProductNotFoundError):
        apply_movement(
            db,
            product_id=product.id,
            reason="SALE",
            signed_quantity=-1,
            actor_id="u1",
            business_id="biz-2",
        )
    assert _registered_stock(session_local, product.id) == 4


def test_fault_between_ledger_and_register_write_leaves_nothing(db, session_local, monkeypatch):
    product = create_product_with_initial_stock(db, _attrs(), 20, actor_id="u1")

    def broken_write(*args, **kwargs):
        raise RuntimeError("injected fault after ledger append")

    monkeypatch.setattr(movement_engine, "write_current_stock", broken_write)

    with pytest.raises(RuntimeError):
        apply_movement(db, product_id=product.id, reason="SALE", signed_quantity=-3, actor_id="u1")

    assert _registered_stock(session_local, product.id) == 20
    assert len(_movements(session_local, product.id)) == 1


def test_commit_failure_is_reported_as_infrastructure_failure(db, session_local, monkeypatch):
    product = create_product_with_initial_stock(db, _attrs(), 20, actor_id="u1")

    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(InfrastructureFailureError):
        apply_movement(db, product_id=product.id, reason="SALE", signed_quantity=-3, actor_id="u1")

    assert _registered_stock(session_local, product.id) == 20
    assert len(_movements(session_local, product.id)) == 1


def test_optimistic_conflict_is_retried(db, session_local, monkeypatch, fast_retries):
    product = create_product_with_initial_stock(db, _attrs(), 20, actor_id="u1")
    real_write = movement_engine.write_current_stock
    calls = {"count": 0}

    def flaky_write(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleDataError("simulated concurrent update")
        return real_write(*args, **kwargs)

    monkeypatch.setattr(movement_engine, "write_current_stock", flaky_write)

    movement = apply_movement(db, product_id=product.id, reason="SALE", signed_quantity=-3, actor_id="u1")

    assert calls["count"] == 2
    assert movement.sequence == 2
    assert movement.previous_stock == 20
    assert _registered_stock(session_local, product.id) == 17
    assert len(_movements(session_local, product.id)) == 2


def test_exhausted_conflict_retries_surface_busy(db, session_local, monkeypatch, fast_retries):
    product = create_product_with_initial_stock(db, _attrs(), 20, actor_id="u1")
    calls = {"count": 0}

    def always_stale(*args, **kwargs):
        calls["count"] += 1
        raise StaleDataError("simulated concurrent update")

    monkeypatch.setattr(movement_engine, "write_current_stock", always_stale)

    with pytest.raises(StockBusyError) as exc_info:
        apply_movement(db, product_id=product.id, reason="SALE", signed_quantity=-3, actor_id="u1")

    assert exc_info.value.reason == "conflict_retries_exhausted"
    assert calls["count"] == settings.movement_max_attempts
    assert _registered_stock(session_local, product.id) == 20


def test_lock_timeout_surfaces_busy_and_other_products_proceed(db, session_local, monkeypatch):
    first = create_product_with_initial_stock(db, _attrs("SKU-A"), 5, actor_id="u1")
    second = create_product_with_initial_stock(db, _attrs("SKU-B"), 5, actor_id="u1")
    monkeypatch.setattr(settings, "stock_lock_timeout_seconds", 0.05)

    with product_locks.hold(first.id, timeout=1):
        movement = apply_movement(db, product_id=second.id, reason="SALE", signed_quantity=-1, actor_id="u1")
        assert movement.new_stock == 4

        with pytest.raises(StockBusyError) as exc_info:
            apply_movement(db, product_id=first.id, reason="SALE", signed_quantity=-1, actor_id="u1")
        assert exc_info.value.reason == "lock_timeout"

    assert _registered_stock(session_local, first.id) == 5
    assert not product_locks.is_held(first.id)


def test_transfer_is_neutral_and_checked_against_stock(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 8, actor_id="u1")
    with session_local() as fresh:
        version_before = fresh.get(Product, product.id).version

    movement = transfer_stock(
        db,
        product_id=product.id,
        quantity=8,
        actor_id="u2",
        reason="Restock front shelf",
        target_location="Showroom",
    )

    assert movement.direction == "TRANSFER"
    assert movement.reason == "TRANSFER"
    assert movement.previous_stock == movement.new_stock == 8
    assert movement.quantity == 8
    assert movement.total_cost == Decimal("120.00")
    assert movement.notes == "Transfer to Showroom: Restock front shelf"
    with session_local() as fresh:
        stored = fresh.get(Product, product.id)
        assert stored.current_stock == 8
        assert stored.version > version_before

    with pytest.raises(InsufficientStockError):
        transfer_stock(db, product_id=product.id, quantity=9, actor_id="u2")
    with pytest.raises(InvalidMovementError):
        transfer_stock(db, product_id=product.id, quantity=0, actor_id="u2")
    assert len(_movements(session_local, product.id)) == 2


def test_movements_are_append_only(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 8, actor_id="u1")
    movement = db.execute(
        select(StockMovement).where(StockMovement.product_id == product.id)
    ).scalar_one()

    movement.quantity = 80
    with pytest.raises(MovementImmutableError):
        db.commit()
    db.rollback()

    db.delete(movement)
    with pytest.raises(MovementImmutableError):
        db.commit()
    db.rollback()

    stored = _movements(session_local, product.id)
    assert len(stored) == 1
    assert stored[0].quantity == 8


def test_lock_registry_does_not_keep_released_keys(db):
    baseline = len(product_locks)

    for index in range(50):
        with pytest.raises(ProductNotFoundError):
            apply_movement(db, product_id=f"missing-{index}", reason="SALE", signed_quantity=-1, actor_id="u1")
        with pytest.raises(ProductNotFoundError):
            transfer_stock(db, product_id=f"gone-{index}", quantity=1, actor_id="u1")
    for index in range(10):
        create_product_with_initial_stock(db, _attrs(f"SKU-{index:03d}"), index, actor_id="u1")
    with pytest.raises(DuplicateSkuError):
        create_product_with_initial_stock(db, _attrs("sku-000"), 1, actor_id="u1")

    assert len(product_locks) == baseline


def test_values_beyond_storage_range_are_rejected_without_writes(db, session_local):
    product = create_product_with_initial_stock(db, _attrs(), 5, actor_id="u1")

    with pytest.raises(InvalidMovementError) as exc_info:
        apply_movement(db, product_id=product.id, reason="PURCHASE", signed_quantity=2**63, actor_id="u1")
    assert exc_info.value.field == "signed_quantity"

    with pytest.raises(InvalidMovementError):
        apply_movement(
            db,
            product_id=product.id,
            reason="PURCHASE",
            signed_quantity=MAX_STOCK_VALUE,
            actor_id="u1",
        )
    with pytest.raises(InvalidMovementError):
        record_purchase(
            db,
            product_id=product.id,
            quantity=1000,
            unit_cost=Decimal("9999999999.99"),
            actor_id="u1",
        )
    with pytest.raises(InvalidMovementError):
        record_purchase(db, product_id=product.id, quantity=1, unit_cost=Decimal("1e12"), actor_id="u1")
    with pytest.raises(InvalidMovementError):
        transfer_stock(db, product_id=product.id, quantity=2**63, actor_id="u1")
    with pytest.raises(InvalidMovementError):
        create_product_with_initial_stock(db, _attrs("BIG-001"), MAX_STOCK_VALUE + 1, actor_id="u1")

    assert _registered_stock(session_local, product.id) == 5
    assert len(_movements(session_local, product.id)) == 1


def test_out_of_range_storage_error_is_not_reported_as_transient(db, session_local, monkeypatch):
    product = create_product_with_initial_stock(db, _attrs(), 5, actor_id="u1")

    def failing_commit():
        raise DataError("INSERT", {}, Exception("integer out of range"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(InvalidMovementError):
        apply_movement(db, product_id=product.id, reason="PURCHASE", signed_quantity=3, actor_id="u1")

    assert _registered_stock(session_local, product.id) == 5


def test_clock_stepping_backwards_never_reorders_history(db, session_local, monkeypatch):
    product = create_product_with_initial_stock(db, _attrs(), 10, actor_id="u1")
    head_at = as_utc(_movements(session_local, product.id)[0].created_at)
    earlier = head_at - timedelta(hours=1)
    later = head_at + timedelta(seconds=1)

    assert next_movement_timestamp(LedgerHead(1, head_at), now=earlier) == head_at
    assert next_movement_timestamp(LedgerHead(1, head_at), now=later) == later
    assert next_movement_timestamp(LedgerHead(0, None), now=earlier) == earlier

    real_timestamp = movement_engine.next_movement_timestamp
    monkeypatch.setattr(
        movement_engine,
        "next_movement_timestamp",
        lambda head: real_timestamp(head, now=earlier),
    )
    record_sale(db, product_id=product.id, quantity=3, actor_id="u1")
    record_purchase(db, product_id=product.id, quantity=1, actor_id="u1")

    movements = _movements(session_local, product.id)
    stamps = [as_utc(movement.created_at) for movement in movements]
    assert stamps == sorted(stamps)
    assert stamps[1] == stamps[2] == head_at

    report = audit_product(db, product.id)
    assert report.consistent
    assert report.computed_stock == 8


def test_unit_cost_is_rounded_to_cents_before_line_total(db):
    product = create_product_with_initial_stock(db, _attrs(), 0, actor_id="u1")

    movement = record_purchase(
        db,
        product_id=product.id,
        quantity=1000,
        unit_cost=Decimal("0.125"),
        actor_id="u1",
    )

    assert movement.unit_cost == Decimal("0.13")
    assert movement.total_cost == Decimal("130.00")
    assert movement.unit_cost * movement.quantity == movement.total_cost
