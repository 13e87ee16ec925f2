# Overview: Append-only stock movement recorder plus movement history reads.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import ValidationError
from ..models import StockMovement, MOVEMENT_TYPES
from stockledger.time_utils import utcnow


INCREASING_TYPES = ("in", "return")
DECREASING_TYPES = ("out",)

DEFAULT_HISTORY_LIMIT = 100


def signed_quantity(movement_type: str, magnitude: int, previous_stock: int | None = None, new_stock: int | None = None) -> int:
    """
    Recover the signed delta of a movement.

    in/return are positive, out is negative. Adjustments carry no sign in
    their type, so the stock snapshot decides the direction.
    """
    if movement_type in INCREASING_TYPES:
        return magnitude
    if movement_type in DECREASING_TYPES:
        return -magnitude
    if movement_type == "adjustment":
        if previous_stock is None or new_stock is None:
            raise ValidationError("adjustment direction requires previous_stock and new_stock")
        return magnitude if new_stock >= previous_stock else -magnitude
    raise ValidationError(f"Unknown movement type: {movement_type}")


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    magnitude: int,
    previous_stock: int,
    new_stock: int,
    reference: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
    sale_id: int | None = None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """
    Append one StockMovement row.

    - No stock logic here; the caller (the stock ledger) already computed
      previous_stock/new_stock under its lock.
    - Never commits: the row is flushed inside the caller's unit of work.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    if magnitude is None or magnitude <= 0:
        raise ValidationError("Movement quantity must be > 0")
    if new_stock - previous_stock != signed_quantity(movement_type, magnitude, previous_stock, new_stock):
        raise ValidationError(
            "Movement does not balance",
            details={
                "movement_type": movement_type,
                "quantity": magnitude,
                "previous_stock": previous_stock,
                "new_stock": new_stock,
            },
        )

    movement = StockMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=magnitude,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference=reference,
        reason=reason,
        notes=notes,
        user_id=user_id,
        sale_id=sale_id,
        movement_date=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[StockMovement]:
    """Movement history, newest first. Date bounds are inclusive."""
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")

    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(StockMovement.movement_type == movement_type)
    if start_date is not None:
        query = query.filter(StockMovement.movement_date >= start_date)
    if end_date is not None:
        query = query.filter(StockMovement.movement_date <= end_date)

    return (
        query.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_product_movements(product_id: int, limit: int = DEFAULT_HISTORY_LIMIT) -> list[StockMovement]:
    return list_movements(product_id=product_id, limit=limit)
