"""
ORM listeners that keep stock_movements append-only.

Any flush that would UPDATE or DELETE a StockMovement instance raises
MovementImmutableError before SQL is emitted. Bulk statements and raw SQL are
not intercepted here; the consistency auditor is what detects those.
"""

from sqlalchemy import event

from stockledger.core.exceptions import MovementImmutableError


def _reject_movement_update(mapper, connection, target) -> None:
    raise MovementImmutableError(target.id, "update")


def _reject_movement_delete(mapper, connection, target) -> None:
    raise MovementImmutableError(target.id, "delete")


def register_immutability_listeners() -> None:
    from stockledger.models.stock_movement import StockMovement

    if not event.contains(StockMovement, "before_update", _reject_movement_update):
        event.listen(StockMovement, "before_update", _reject_movement_update)
    if not event.contains(StockMovement, "before_delete", _reject_movement_delete):
        event.listen(StockMovement, "before_delete", _reject_movement_delete)
