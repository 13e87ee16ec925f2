# Overview: Manual stock movements (receipts without PO, breakage, inventory corrections).

"""
Manual movement semantics:
- 'in' and 'return' add |quantity|
- 'out' subtracts |quantity|
- 'adjustment' applies quantity as given (negative shrinks stock); zero is rejected

All datetimes are UTC-naive; movement_date defaults to now.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import StockMovement, MOVEMENT_TYPES
from stockledger.time_utils import normalize_datetime
from .concurrency import begin_write_transaction, run_with_retry
from .ledger_service import apply_delta


def manual_delta(movement_type: str, quantity: int) -> int:
    """Signed stock change for a manual movement request."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity == 0:
        raise ValidationError("quantity must not be zero")

    if movement_type in ("in", "return"):
        return abs(quantity)
    if movement_type == "out":
        return -abs(quantity)
    return quantity


def record_manual_movement(
    product_id: int,
    movement_type: str,
    quantity: int,
    *,
    reason: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    occurred_at=None,
) -> StockMovement:
    delta = manual_delta(movement_type, quantity)

    def _op():
        begin_write_transaction()
        result = apply_delta(
            product_id,
            delta,
            movement_type,
            reference=reference,
            reason=reason,
            user_id=user_id,
            notes=notes,
            occurred_at=normalize_datetime(occurred_at),
        )
        db.session.commit()
        return result.movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Manual %s movement on product %s: %d -> %d",
        movement.movement_type, movement.product_id, movement.previous_stock, movement.new_stock,
    )
    return movement
