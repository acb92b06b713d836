from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_actor_id, get_business_id, get_db
from stockledger.models.product import Product
from stockledger.schemas.product import ProductCreate, ProductOut, ProductUpdate
from stockledger.services import catalog_service
from stockledger.services.catalog_service import ProductAttrs
from stockledger.services.movement_engine import create_product_with_initial_stock

router = APIRouter(prefix="/products", tags=["products"])
_CLEARABLE_FIELDS = {"description", "category", "selling_price", "max_stock"}


def product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        business_id=product.business_id,
        name=product.name,
        sku=product.sku,
        description=product.description,
        category=product.category,
        active=bool(product.active),
        current_stock=product.current_stock,
        min_stock=product.min_stock,
        max_stock=product.max_stock,
        unit_cost=float(product.unit_cost),
        selling_price=float(product.selling_price) if product.selling_price is not None else None,
        stock_updated_at=product.stock_updated_at,
        created_at=product.created_at,
    )


@router.post(
    "",
    response_model=ProductOut,
    status_code=201,
    summary="Create product with initial stock",
    responses=error_responses(400, 409, 422, 500, 503),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
    actor_id: str = Depends(get_actor_id),
):
    product = create_product_with_initial_stock(
        db,
        ProductAttrs(
            business_id=business_id,
            name=payload.name,
            sku=payload.sku,
            description=payload.description,
            category=payload.category,
            unit_cost=payload.unit_cost,
            selling_price=payload.selling_price,
            min_stock=payload.min_stock,
            max_stock=payload.max_stock,
        ),
        payload.initial_stock,
        actor_id=actor_id,
    )
    return product_out(product)


@router.get(
    "/{product_id}",
    response_model=ProductOut,
    summary="Get product",
    responses=error_responses(404, 422, 500),
)
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    return product_out(catalog_service.get_product(db, product_id, business_id=business_id))


@router.patch(
    "/{product_id}",
    response_model=ProductOut,
    summary="Update catalog fields and stock thresholds",
    responses=error_responses(404, 409, 422, 500, 503),
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field in _CLEARABLE_FIELDS
    }
    product = catalog_service.update_product(db, product_id, changes, business_id=business_id)
    return product_out(product)


@router.post(
    "/{product_id}/archive",
    response_model=ProductOut,
    summary="Archive product",
    responses=error_responses(404, 422, 500, 503),
)
def archive_product(
    product_id: str,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    return product_out(catalog_service.archive_product(db, product_id, business_id=business_id))


@router.delete(
    "/{product_id}",
    status_code=204,
    summary="Delete product without inventory history",
    responses=error_responses(404, 409, 422, 500, 503),
)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    business_id: str = Depends(get_business_id),
):
    catalog_service.delete_product(db, product_id, business_id=business_id)
    return Response(status_code=204)
