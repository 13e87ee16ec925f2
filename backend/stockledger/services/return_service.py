"""
Return Service - customer returns (avoirs)

LIFECYCLE:
    pending --complete--> completed --cancel--> cancelled
    pending --cancel--> cancelled

A completed return puts goods back on the shelf with one 'return' movement
per product line. Cancelling a completed return never touches those rows;
it appends a compensating negative 'adjustment' per line instead, so the
movement trail still sums to current_stock.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Return, ReturnItem, Sale, SaleItem, REFUND_METHODS
from stockledger.time_utils import utcnow
from stockledger.validation import enforce_positive_quantity
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import assert_transition, build_document
from .ledger_service import apply_delta


CREATABLE_STATUSES = ("pending", "completed")
DEFAULT_MOVEMENT_REASON = "Return"


def _restock_line(return_doc: Return, item: ReturnItem, user_id: int | None = None) -> None:
    if item.product_id is None:
        return
    apply_delta(
        item.product_id,
        item.quantity,
        "return",
        reference=return_doc.return_number,
        reason=item.reason or DEFAULT_MOVEMENT_REASON,
        user_id=user_id or return_doc.user_id,
    )


def _already_returned(sale_item_id: int) -> int:
    """Quantity of a sale line already covered by non-cancelled returns."""
    total = (
        db.session.query(func.coalesce(func.sum(ReturnItem.quantity), 0))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(ReturnItem.sale_item_id == sale_item_id, Return.status != "cancelled")
        .scalar()
    )
    return int(total or 0)


def _attach_sale_lines(sale: Sale | None, items: list[dict]) -> list[dict]:
    """
    Check lines that point at an original sale line and fill their product
    and price from it. Cumulative returned quantity may not exceed what was sold.
    """
    requested: dict[int, int] = {}
    resolved = []
    for line in items:
        sale_item_id = line.get("sale_item_id")
        if sale_item_id is None:
            resolved.append(line)
            continue
        if sale is None:
            raise ValidationError("sale_item_id requires sale_id")

        sale_item = db.session.get(SaleItem, sale_item_id)
        if not sale_item or sale_item.sale_id != sale.id:
            raise ValidationError(
                f"Sale item {sale_item_id} does not belong to sale {sale.id}",
                details={"sale_item_id": sale_item_id, "sale_id": sale.id},
            )

        quantity = enforce_positive_quantity(line.get("quantity"))
        requested[sale_item_id] = requested.get(sale_item_id, 0) + quantity
        already = _already_returned(sale_item_id)
        if already + requested[sale_item_id] > sale_item.quantity:
            raise ValidationError(
                f"Cannot return more than sold for sale item {sale_item_id}",
                details={
                    "sale_item_id": sale_item_id,
                    "sold": sale_item.quantity,
                    "already_returned": already,
                    "requested": requested[sale_item_id],
                },
            )

        merged = dict(line)
        if merged.get("product_id") is None:
            merged["product_id"] = sale_item.product_id
        elif merged["product_id"] != sale_item.product_id:
            raise ValidationError(
                f"Product {merged['product_id']} does not match sale item {sale_item_id}",
                details={
                    "sale_item_id": sale_item_id,
                    "product_id": merged["product_id"],
                    "sold_product_id": sale_item.product_id,
                },
            )
        if not merged.get("product_name"):
            merged["product_name"] = sale_item.product_name
        if merged.get("unit_price_cents") is None:
            merged["unit_price_cents"] = sale_item.unit_price_cents
        resolved.append(merged)
    return resolved


def create_return(
    items: list[dict],
    *,
    sale_id: int | None = None,
    customer_id: int | None = None,
    refund_method: str = "cash",
    reason: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    status: str = "completed",
    as_of=None,
) -> Return:
    """
    Create a return. 'completed' returns restock immediately; 'pending'
    returns wait for complete_return().
    """
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of: {', '.join(REFUND_METHODS)}")
    if status not in CREATABLE_STATUSES:
        raise ValidationError(f"A return can only be created as: {', '.join(CREATABLE_STATUSES)}")

    def _op():
        begin_write_transaction()

        sale = None
        customer = customer_id
        if sale_id is not None:
            sale = db.session.get(Sale, sale_id)
            if not sale:
                raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
            customer = sale.customer_id

        lines = _attach_sale_lines(sale, items)

        return_doc = build_document(
            "return",
            ReturnItem,
            header={
                "sale_id": sale_id,
                "customer_id": customer,
                "user_id": user_id,
                "refund_method": refund_method,
                "status": status,
                "reason": reason,
                "notes": notes,
                "completed_at": utcnow() if status == "completed" else None,
            },
            items=lines,
            as_of=as_of,
            item_fields=("sale_item_id", "reason"),
            line_effect=_restock_line if status == "completed" else None,
        )
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info(
        "Return %s created (%s): %d item(s), total %d cents",
        return_doc.return_number, return_doc.status, len(return_doc.items), return_doc.total_cents,
    )
    return return_doc


def _get_locked_return(return_id: int) -> Return | None:
    return (
        lock_for_update(db.session.query(Return).filter_by(id=return_id))
        .populate_existing()
        .first()
    )


def complete_return(return_id: int, user_id: int | None = None) -> Return:
    """pending -> completed; applies the 'return' movements."""
    def _op():
        begin_write_transaction()
        return_doc = _get_locked_return(return_id)
        if not return_doc:
            raise NotFoundError(f"Return {return_id} not found")

        assert_transition("return", return_doc.status, "completed")

        for item in return_doc.items:
            _restock_line(return_doc, item, user_id)

        return_doc.status = "completed"
        return_doc.completed_at = utcnow()
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info("Return %s completed", return_doc.return_number)
    return return_doc


def cancel_return(return_id: int, user_id: int | None = None, reason: str | None = None) -> Return:
    """
    Cancel a return.

    A missing or already-cancelled return is reported as NotFoundError so a
    repeated cancel can never take stock out twice. If the goods have already
    left the shelf again, the compensation raises InsufficientStockError and
    nothing changes.
    """
    def _op():
        begin_write_transaction()
        return_doc = _get_locked_return(return_id)
        if not return_doc or return_doc.status == "cancelled":
            raise NotFoundError(
                f"Return {return_id} not found or already cancelled",
                details={"return_id": return_id},
            )

        assert_transition("return", return_doc.status, "cancelled")

        if return_doc.status == "completed":
            for item in return_doc.items:
                if item.product_id is None:
                    continue
                apply_delta(
                    item.product_id,
                    -item.quantity,
                    "adjustment",
                    reference=return_doc.return_number,
                    reason="Return cancellation",
                    user_id=user_id,
                    notes=reason,
                )

        return_doc.status = "cancelled"
        return_doc.cancelled_at = utcnow()
        return_doc.cancelled_by_user_id = user_id
        return_doc.cancellation_reason = reason
        db.session.commit()
        return return_doc

    return_doc = run_with_retry(_op)
    current_app.logger.info("Return %s cancelled", return_doc.return_number)
    return return_doc


def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if not return_doc:
        raise NotFoundError(f"Return {return_id} not found")
    return return_doc


def list_returns(*, status: str | None = None, sale_id: int | None = None, limit: int = 100) -> list[Return]:
    query = db.session.query(Return)
    if status is not None:
        query = query.filter(Return.status == status)
    if sale_id is not None:
        query = query.filter(Return.sale_id == sale_id)
    return query.order_by(Return.return_date.desc(), Return.id.desc()).limit(limit).all()


def get_return_stats(start_date=None, end_date=None) -> dict:
    """Count, refunded total and average of completed returns; bounds are inclusive."""
    query = db.session.query(
        func.count(Return.id).label("total_returns"),
        func.coalesce(func.sum(Return.total_cents), 0).label("total_refunded_cents"),
        func.coalesce(func.avg(Return.total_cents), 0).label("average_return_cents"),
    ).filter(Return.status == "completed")
    if start_date is not None:
        query = query.filter(Return.return_date >= start_date)
    if end_date is not None:
        query = query.filter(Return.return_date <= end_date)

    row = query.one()
    return {
        "total_returns": int(row.total_returns or 0),
        "total_refunded_cents": int(row.total_refunded_cents or 0),
        "average_return_cents": int(round(row.average_return_cents or 0)),
    }
