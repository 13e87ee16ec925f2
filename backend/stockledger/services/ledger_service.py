# Overview: The stock ledger; the single writer of Product.current_stock.

"""
Stock Ledger Invariants (authoritative)

- current_stock == opening balance + sum of signed movement quantities.
- current_stock never goes below zero.
- Every change of current_stock appends exactly one StockMovement in the
  same transaction; nothing here commits.
- The product row is read under the caller's write transaction
  (begin_write_transaction + SELECT ... FOR UPDATE), never from a stale
  identity-map copy.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, StockMovement, MOVEMENT_TYPES, ledger_write_scope
from .concurrency import lock_for_update
from .movement_service import record_movement


@dataclass(frozen=True)
class LedgerResult:
    previous_stock: int
    new_stock: int
    movement: StockMovement


def _check_direction(movement_type: str, delta: int) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("Stock delta must be an integer")
    if delta == 0:
        raise ValidationError("Stock delta must not be zero")
    if movement_type in ("in", "return") and delta < 0:
        raise ValidationError(f"'{movement_type}' movements must increase stock")
    if movement_type == "out" and delta > 0:
        raise ValidationError("'out' movements must decrease stock")


def get_locked_product(product_id: int) -> Product:
    product = (
        lock_for_update(db.session.query(Product).filter_by(id=product_id))
        .populate_existing()
        .first()
    )
    if not product:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def apply_delta(
    product_id: int,
    signed_quantity: int,
    movement_type: str,
    *,
    reference: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
    sale_id: int | None = None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
) -> LedgerResult:
    """
    Apply a signed stock change and record it.

    Raises InsufficientStockError (nothing written) when the change would
    take current_stock below zero.
    """
    _check_direction(movement_type, signed_quantity)

    product = get_locked_product(product_id)
    previous_stock = product.current_stock or 0
    new_stock = previous_stock + signed_quantity

    if new_stock < 0:
        current_app.logger.info(
            "Rejected %s movement on product %s: requested %d, available %d",
            movement_type, product_id, -signed_quantity, previous_stock,
        )
        raise InsufficientStockError(product_id, -signed_quantity, previous_stock)

    with ledger_write_scope():
        product.current_stock = new_stock

    movement = record_movement(
        product_id=product_id,
        movement_type=movement_type,
        magnitude=abs(signed_quantity),
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference=reference,
        reason=reason,
        user_id=user_id,
        sale_id=sale_id,
        notes=notes,
        occurred_at=occurred_at,
    )
    return LedgerResult(previous_stock=previous_stock, new_stock=new_stock, movement=movement)
