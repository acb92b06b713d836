from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.money import line_total, to_money
from stockledger.models.stock_movement import StockMovement


@dataclass(frozen=True)
class LedgerHead:
    last_sequence: int
    last_created_at: datetime | None


def as_utc(value: datetime) -> datetime:
    # sqlite hands DateTime(timezone=True) values back naive.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_ledger_head(db: Session, product_id: str) -> LedgerHead:
    last_sequence, last_created_at = db.execute(
        select(
            func.coalesce(func.max(StockMovement.sequence), 0),
            func.max(StockMovement.created_at),
        ).where(StockMovement.product_id == product_id)
    ).one()
    return LedgerHead(
        last_sequence=int(last_sequence),
        last_created_at=as_utc(last_created_at) if last_created_at is not None else None,
    )


def next_movement_timestamp(head: LedgerHead, now: datetime | None = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    if head.last_created_at is not None and current < head.last_created_at:
        return head.last_created_at
    return current


def append_movement(
    db: Session,
    *,
    business_id: str,
    product_id: str,
    sequence: int,
    direction: str,
    reason: str,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    unit_cost: Decimal,
    actor_id: str,
    created_at: datetime,
    notes: str | None = None,
) -> StockMovement:
    entry = StockMovement(
        id=generate_shortuuid(),
        business_id=business_id,
        product_id=product_id,
        sequence=sequence,
        direction=direction,
        reason=reason,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        unit_cost=to_money(unit_cost),
        total_cost=line_total(unit_cost, quantity),
        notes=notes,
        actor_id=actor_id,
        created_at=created_at,
    )
    db.add(entry)
    return entry


def iter_product_movements(db: Session, product_id: str) -> Iterator[StockMovement]:
    stmt = (
        select(StockMovement)
        .where(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.asc(), StockMovement.sequence.asc())
    )
    yield from db.execute(stmt).scalars()


def count_product_movements(db: Session, product_id: str) -> int:
    return int(
        db.execute(
            select(func.count(StockMovement.id)).where(StockMovement.product_id == product_id)
        ).scalar_one()
    )


def list_movements(
    db: Session,
    *,
    business_id: str,
    product_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[StockMovement]]:
    count_stmt = select(func.count(StockMovement.id)).where(StockMovement.business_id == business_id)
    stmt = select(StockMovement).where(StockMovement.business_id == business_id)
    if product_id:
        count_stmt = count_stmt.where(StockMovement.product_id == product_id)
        stmt = stmt.where(StockMovement.product_id == product_id)

    total = int(db.execute(count_stmt).scalar_one())
    stmt = (
        stmt.order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc())
        .offset(offset)
        .limit(limit)
    )
    rows = list(db.execute(stmt).scalars().all())
    return total, rows
