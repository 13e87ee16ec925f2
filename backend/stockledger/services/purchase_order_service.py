"""
Purchase Order Service - supplier orders and goods receipt

LIFECYCLE:
    draft -> sent -> partial -> received
    draft/sent -> cancelled

Stock only moves on receipt. Each received line appends an 'in' movement
and the order's status is recomputed from the line totals:
- every line fully received -> received (actual_delivery_date is stamped)
- anything received so far  -> partial
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import NotFoundError, OverReceiptError, ValidationError
from ..models import PurchaseOrder, PurchaseOrderItem, PURCHASE_ORDER_STATUSES
from stockledger.time_utils import utcnow
from stockledger.validation import enforce_positive_quantity
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import assert_transition, build_document, replace_document_items
from .ledger_service import apply_delta


# Header fields a draft order accepts on update, besides items/discount/tax
EDITABLE_FIELDS = frozenset({"supplier_id", "expected_delivery_date", "payment_terms", "notes"})


def _normalize_order_lines(items: list[dict]) -> list[dict]:
    lines = []
    for line in items:
        line = dict(line)
        if line.get("quantity_ordered") is None and "quantity" in line:
            line["quantity_ordered"] = line.pop("quantity")
        lines.append(line)
    return lines


def create_purchase_order(
    items: list[dict],
    *,
    supplier_id: int | None = None,
    user_id: int | None = None,
    expected_delivery_date=None,
    payment_terms: str | None = None,
    notes: str | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    as_of=None,
) -> PurchaseOrder:
    """Create a draft purchase order. No stock effect."""
    lines = _normalize_order_lines(items or [])

    def _op():
        begin_write_transaction()
        po = build_document(
            "purchase_order",
            PurchaseOrderItem,
            header={
                "supplier_id": supplier_id,
                "user_id": user_id,
                "status": "draft",
                "expected_delivery_date": expected_delivery_date,
                "payment_terms": payment_terms,
                "notes": notes,
            },
            items=lines,
            as_of=as_of,
            quantity_key="quantity_ordered",
            price_source="purchase_price_cents",
            item_fields=("notes",),
            discount_cents=discount_cents,
            tax_cents=tax_cents,
        )
        db.session.commit()
        return po

    po = run_with_retry(_op)
    current_app.logger.info("Purchase order %s created with %d item(s)", po.po_number, len(po.items))
    return po


def _get_locked_purchase_order(po_id: int) -> PurchaseOrder:
    po = (
        lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id))
        .populate_existing()
        .first()
    )
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found", details={"purchase_order_id": po_id})
    return po


def update_purchase_order(
    po_id: int,
    changes: dict,
    *,
    items: list[dict] | None = None,
    user_id: int | None = None,
) -> PurchaseOrder:
    """
    Edit a draft purchase order.

    changes may hold any of EDITABLE_FIELDS plus discount_cents / tax_cents.
    items, when given, replaces every line. Totals are recomputed either way.
    Anything past draft is read-only.
    """
    unknown = set(changes) - EDITABLE_FIELDS - {"discount_cents", "tax_cents"}
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    lines = _normalize_order_lines(items) if items is not None else None

    def _op():
        begin_write_transaction()
        po = _get_locked_purchase_order(po_id)
        if po.status != "draft":
            raise ValidationError(
                "Only draft purchase orders can be modified",
                details={"status": po.status},
            )

        for name in EDITABLE_FIELDS & set(changes):
            setattr(po, name, changes[name])
        replace_document_items(
            po,
            PurchaseOrderItem,
            lines,
            quantity_key="quantity_ordered",
            price_source="purchase_price_cents",
            item_fields=("notes",),
            discount_cents=changes.get("discount_cents"),
            tax_cents=changes.get("tax_cents"),
        )
        db.session.commit()
        return po

    po = run_with_retry(_op)
    current_app.logger.info("Purchase order %s updated (user %s)", po.po_number, user_id)
    return po


def update_purchase_order_status(po_id: int, new_status: str, user_id: int | None = None) -> PurchaseOrder:
    """Manual status change, checked against the purchase-order transition table."""
    def _op():
        begin_write_transaction()
        po = _get_locked_purchase_order(po_id)
        assert_transition("purchase_order", po.status, new_status)
        po.status = new_status
        if new_status == "received" and po.actual_delivery_date is None:
            po.actual_delivery_date = utcnow()
        db.session.commit()
        return po

    po = run_with_retry(_op)
    current_app.logger.info("Purchase order %s -> %s (user %s)", po.po_number, new_status, user_id)
    return po


def delete_purchase_order(po_id: int) -> None:
    """Only drafts can be deleted; anything that was sent stays on record."""
    def _op():
        begin_write_transaction()
        po = _get_locked_purchase_order(po_id)
        if po.status != "draft":
            raise ValidationError(
                "Only draft purchase orders can be deleted",
                details={"status": po.status},
            )
        po_number = po.po_number
        db.session.delete(po)
        db.session.commit()
        return po_number

    po_number = run_with_retry(_op)
    current_app.logger.info("Purchase order %s deleted", po_number)


def _next_status(po: PurchaseOrder) -> str:
    if po.items and all(item.quantity_received >= item.quantity_ordered for item in po.items):
        return "received"
    if any(item.quantity_received > 0 for item in po.items):
        return "partial"
    return po.status


def receive_purchase_order(po_id: int, receipts: list[dict], user_id: int | None = None) -> PurchaseOrder:
    """
    Receive goods against a purchase order.

    receipts: [{"item_id": int, "quantity_received": int > 0}, ...]

    The whole receipt is one unit of work: an unknown item, an over-receipt
    or a forbidden status change leaves quantities, stock and status as they
    were.
    """
    if not receipts:
        raise ValidationError("At least one receipt line is required")

    def _op():
        begin_write_transaction()
        po = _get_locked_purchase_order(po_id)
        items_by_id = {item.id: item for item in po.items}

        for receipt in receipts:
            item_id = receipt.get("item_id")
            quantity = enforce_positive_quantity(receipt.get("quantity_received"), "quantity_received")

            item = items_by_id.get(item_id)
            if item is None:
                raise NotFoundError(
                    f"Item {item_id} not found on purchase order {po.po_number}",
                    details={"item_id": item_id, "purchase_order_id": po.id},
                )

            already = item.quantity_received or 0
            if already + quantity > item.quantity_ordered:
                raise OverReceiptError(item.id, item.quantity_ordered, already, quantity)

            item.quantity_received = already + quantity

            if item.product_id is not None:
                apply_delta(
                    item.product_id,
                    quantity,
                    "in",
                    reference=po.po_number,
                    reason="Purchase order receipt",
                    user_id=user_id,
                )

        new_status = _next_status(po)
        assert_transition("purchase_order", po.status, new_status)
        if new_status == "received":
            po.actual_delivery_date = utcnow()
        po.status = new_status

        db.session.commit()
        return po

    po = run_with_retry(_op)
    current_app.logger.info("Purchase order %s received (%s)", po.po_number, po.status)
    return po


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found")
    return po


def list_purchase_orders(*, status: str | None = None, supplier_id: int | None = None, limit: int = 100) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if status is not None:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    return query.order_by(PurchaseOrder.po_date.desc(), PurchaseOrder.id.desc()).limit(limit).all()


def get_purchase_order_stats(start_date=None, end_date=None) -> dict:
    """
    Order count and value, a count per status, and the value still awaited
    from suppliers (sent + partial). Bounds are inclusive on po_date.
    """
    columns = [
        func.count(PurchaseOrder.id).label("total_orders"),
        func.coalesce(func.sum(PurchaseOrder.net_amount_cents), 0).label("total_value_cents"),
        func.coalesce(
            func.sum(case((PurchaseOrder.status.in_(("sent", "partial")), PurchaseOrder.net_amount_cents), else_=0)),
            0,
        ).label("pending_value_cents"),
    ]
    for status in PURCHASE_ORDER_STATUSES:
        columns.append(
            func.coalesce(func.sum(case((PurchaseOrder.status == status, 1), else_=0)), 0).label(f"{status}_count")
        )

    query = db.session.query(*columns)
    if start_date is not None:
        query = query.filter(PurchaseOrder.po_date >= start_date)
    if end_date is not None:
        query = query.filter(PurchaseOrder.po_date <= end_date)

    row = query.one()._asdict()
    return {key: int(value or 0) for key, value in row.items()}
