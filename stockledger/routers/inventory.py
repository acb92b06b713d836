from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_actor_id, get_business_id, get_db
from stockledger.models.stock_movement import StockMovement
from stockledger.schemas.common import pagination
from stockledger.schemas.inventory import (
    AuditReportOut,
    DriftListOut,
    LowStockListOut,
    LowStockProductOut,
    MovementCreate,
    StockLevelOut,
    StockMovementListOut,
    StockMovementOut,
    TransferCreate,
)
from stockledger.services import consistency_auditor, ledger_store, movement_engine
from stockledger.services.catalog_service import get_product
from stockledger.services.consistency_auditor import AuditReport
from stockledger.services.low_stock_reporter import list_low_stock
from stockledger.services.stock_register import read_stock_level

router = APIRouter(prefix="/inventory", tags=["inventory"])


def movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        product_id=movement.product_id,
        sequence=movement.sequence,
        direction=movement.direction,
        reason=movement.reason,
        quantity=movement.quantity,
        previous_stock=movement.previous_stock,
        new_stock=movement.new_stock,
        unit_cost=float(movement.unit_cost),
        total_cost=float(movement.total_cost),
        notes=movement.notes,
        actor_id=movement.actor_id,
        created_at=movement.created_at,
    )


def audit_out(report: AuditReport) -> AuditReportOut:
    return AuditReportOut(
        product_id=report.product_id,
        consistent=report.consistent,
        computed_stock=report.computed_stock,
        registered_stock=report.registered_stock,
        broken_at=report.broken_at,
        movement_count=report.movement_count,
    )


@router.post(
    "/movements",
    response_model=StockMovementOut,
    status_code=201,
    summary="Apply a stock movement (purchase, sale, return or adjustment)",
    responses=error_responses(400, 404, 409, 422, 500, 503),
)
def apply_movement(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
    actor_id: str = Depends(get_actor_id),
):
    movement = movement_engine.apply_movement(
        db,
        product_id=payload.product_id,
        reason=payload.reason,
        signed_quantity=payload.signed_quantity,
        actor_id=actor_id,
        unit_cost=payload.unit_cost,
        notes=payload.notes,
        business_id=business_id,
    )
    return movement_out(movement)


@router.post(
    "/transfers",
    response_model=StockMovementOut,
    status_code=201,
    summary="Record a stock transfer",
    responses=error_responses(400, 404, 409, 422, 500, 503),
)
def transfer_stock(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
    actor_id: str = Depends(get_actor_id),
):
    movement = movement_engine.transfer_stock(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        actor_id=actor_id,
        reason=payload.reason,
        target_location=payload.target_location,
        business_id=business_id,
    )
    return movement_out(movement)


@router.get(
    "/movements",
    response_model=StockMovementListOut,
    summary="List stock movements, newest first",
    responses=error_responses(404, 422, 500),
)
def list_movements(
    product_id: str | None = Query(default=None, description="Optional product filter"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    if product_id:
        get_product(db, product_id, business_id=business_id)

    total, rows = ledger_store.list_movements(
        db,
        business_id=business_id,
        product_id=product_id,
        limit=limit,
        offset=offset,
    )
    items = [movement_out(row) for row in rows]
    return StockMovementListOut(
        items=items,
        pagination=pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/products/{product_id}/stock",
    response_model=StockLevelOut,
    summary="Get the registered stock level for a product",
    responses=error_responses(404, 422, 500),
)
def get_stock_level(
    product_id: str,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    get_product(db, product_id, business_id=business_id)
    level = read_stock_level(db, product_id)
    return StockLevelOut(
        product_id=level.product_id,
        current_stock=level.current_stock,
        min_stock=level.min_stock,
        max_stock=level.max_stock,
        is_low=level.is_low,
    )


@router.get(
    "/products/{product_id}/audit",
    response_model=AuditReportOut,
    summary="Replay a product's ledger and compare it with the register",
    responses=error_responses(404, 422, 500),
)
def audit_product(
    product_id: str,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    return audit_out(consistency_auditor.audit_product(db, product_id, business_id=business_id))


@router.get(
    "/drift",
    response_model=DriftListOut,
    summary="List products whose register disagrees with their ledger",
    responses=error_responses(422, 500),
)
def list_drift(
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    return DriftListOut(items=[audit_out(report) for report in consistency_auditor.find_drift(db, business_id)])


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="List products at or below their minimum stock",
    responses=error_responses(422, 500),
)
def list_low_stock_products(
    include_inactive: bool = Query(default=False, description="Include archived products"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    view = list_low_stock(db, business_id, include_inactive=include_inactive)
    total = view.count()
    items = [
        LowStockProductOut(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            current_stock=product.current_stock,
            min_stock=product.min_stock,
            max_stock=product.max_stock,
        )
        for product in view.page(limit=limit, offset=offset)
    ]
    return LowStockListOut(
        items=items,
        pagination=pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )
