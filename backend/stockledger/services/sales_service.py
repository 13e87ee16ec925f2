"""
Sales Service - one-shot sale creation

WHY: A hardware-store ticket is rung up and paid in one go. Header, items and
the 'out' movement of every product line are committed together; if any line
oversells, nothing of the sale exists afterwards.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Sale, SaleItem, PAYMENT_METHODS, PAYMENT_STATUSES
from .concurrency import begin_write_transaction, run_with_retry
from .document_service import build_document
from .ledger_service import apply_delta


def _validate_payment(payment_method: str, payment_status: str) -> None:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")


def _sell_line(sale: Sale, item: SaleItem) -> None:
    if item.product_id is None:
        return
    apply_delta(
        item.product_id,
        -item.quantity,
        "out",
        reference=sale.sale_number,
        reason="Sale",
        user_id=sale.user_id,
        sale_id=sale.id,
        occurred_at=sale.sale_date,
    )


def create_sale_locked(
    items: list[dict],
    *,
    customer_id: int | None = None,
    user_id: int | None = None,
    payment_method: str = "cash",
    payment_status: str = "paid",
    discount_cents: int = 0,
    tax_cents: int = 0,
    notes: str | None = None,
    as_of=None,
) -> Sale:
    """
    Sale creation body, for callers that already hold the write transaction
    (the sale route itself and quotation conversion). Does not commit.
    """
    _validate_payment(payment_method, payment_status)

    return build_document(
        "sale",
        SaleItem,
        header={
            "customer_id": customer_id,
            "user_id": user_id,
            "payment_method": payment_method,
            "payment_status": payment_status,
            "notes": notes,
        },
        items=items,
        as_of=as_of,
        discount_cents=discount_cents,
        tax_cents=tax_cents,
        line_effect=_sell_line,
    )


def create_sale(
    items: list[dict],
    *,
    customer_id: int | None = None,
    user_id: int | None = None,
    payment_method: str = "cash",
    payment_status: str = "paid",
    discount_cents: int = 0,
    tax_cents: int = 0,
    notes: str | None = None,
    as_of=None,
) -> Sale:
    """Create and post a sale atomically."""
    def _op():
        begin_write_transaction()
        sale = create_sale_locked(
            items,
            customer_id=customer_id,
            user_id=user_id,
            payment_method=payment_method,
            payment_status=payment_status,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            notes=notes,
            as_of=as_of,
        )
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s created: %d item(s), net %d cents",
        sale.sale_number, len(sale.items), sale.net_amount_cents,
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(*, start_date=None, end_date=None, customer_id: int | None = None, limit: int = 100) -> list[Sale]:
    query = db.session.query(Sale)
    if start_date is not None:
        query = query.filter(Sale.sale_date >= start_date)
    if end_date is not None:
        query = query.filter(Sale.sale_date <= end_date)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    return query.order_by(Sale.sale_date.desc(), Sale.id.desc()).limit(limit).all()


def _net_when(status: str):
    return func.coalesce(
        func.sum(case((Sale.payment_status == status, Sale.net_amount_cents), else_=0)), 0
    )


def get_sales_stats(start_date=None, end_date=None) -> dict:
    """Sale count, revenue, average ticket and paid/pending split; bounds are inclusive."""
    query = db.session.query(
        func.count(Sale.id).label("total_sales"),
        func.coalesce(func.sum(Sale.net_amount_cents), 0).label("total_revenue_cents"),
        func.coalesce(func.avg(Sale.net_amount_cents), 0).label("average_sale_cents"),
        _net_when("paid").label("paid_amount_cents"),
        _net_when("pending").label("pending_amount_cents"),
    )
    if start_date is not None:
        query = query.filter(Sale.sale_date >= start_date)
    if end_date is not None:
        query = query.filter(Sale.sale_date <= end_date)

    row = query.one()
    return {
        "total_sales": int(row.total_sales or 0),
        "total_revenue_cents": int(row.total_revenue_cents or 0),
        "average_sale_cents": int(round(row.average_sale_cents or 0)),
        "paid_amount_cents": int(row.paid_amount_cents or 0),
        "pending_amount_cents": int(row.pending_amount_cents or 0),
    }
