# Overview: Read-only stock projections (low stock, valuation, movement summary, reconciliation).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from stockledger.extensions import db
from stockledger.errors import NotFoundError
from stockledger.models import Product, StockMovement
from stockledger.time_utils import to_utc_z


def get_low_stock_products() -> list[Product]:
    """Active products at or below their minimum, emptiest shelves first."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.current_stock <= Product.min_stock,
        )
        .order_by(Product.current_stock.asc(), Product.name.asc(), Product.id.asc())
        .all()
    )


def get_stock_valuation() -> dict:
    """Stock value of active products at purchase and at selling price."""
    row = (
        db.session.query(
            func.count(Product.id).label("product_count"),
            func.coalesce(func.sum(Product.current_stock), 0).label("total_quantity"),
            func.coalesce(
                func.sum(Product.current_stock * Product.purchase_price_cents), 0
            ).label("purchase_value_cents"),
            func.coalesce(
                func.sum(Product.current_stock * Product.selling_price_cents), 0
            ).label("selling_value_cents"),
        )
        .filter(Product.is_active.is_(True))
        .one()
    )
    return {
        "product_count": int(row.product_count or 0),
        "total_quantity": int(row.total_quantity or 0),
        "purchase_value_cents": int(row.purchase_value_cents or 0),
        "selling_value_cents": int(row.selling_value_cents or 0),
    }


def get_movement_summary(start_date: datetime | None = None, end_date: datetime | None = None) -> dict:
    """Count and total quantity per movement type; bounds are inclusive."""
    query = db.session.query(
        StockMovement.movement_type.label("movement_type"),
        func.count(StockMovement.id).label("count"),
        func.coalesce(func.sum(StockMovement.quantity), 0).label("total_quantity"),
    )
    if start_date is not None:
        query = query.filter(StockMovement.movement_date >= start_date)
    if end_date is not None:
        query = query.filter(StockMovement.movement_date <= end_date)

    rows = query.group_by(StockMovement.movement_type).order_by(StockMovement.movement_type).all()
    return {
        "start": to_utc_z(start_date) if start_date else None,
        "end": to_utc_z(end_date) if end_date else None,
        "rows": [
            {
                "movement_type": row.movement_type,
                "count": int(row.count or 0),
                "total_quantity": int(row.total_quantity or 0),
            }
            for row in rows
        ],
    }


def get_stock_reconciliation(product_id: int) -> dict:
    """
    Compare current_stock with what the movement trail says it should be.

    opening balance = previous_stock of the product's first movement
    (current_stock when it has none); expected = opening + signed sum.
    """
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

    first = (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.asc())
        .first()
    )
    totals = (
        db.session.query(
            func.count(StockMovement.id).label("movement_count"),
            func.coalesce(func.sum(StockMovement.new_stock - StockMovement.previous_stock), 0).label("net_change"),
        )
        .filter(StockMovement.product_id == product_id)
        .one()
    )

    opening = first.previous_stock if first else product.current_stock
    net_change = int(totals.net_change or 0)
    expected = opening + net_change

    return {
        "product_id": product.id,
        "product_name": product.name,
        "current_stock": product.current_stock,
        "opening_stock": opening,
        "net_movement": net_change,
        "expected_stock": expected,
        "movement_count": int(totals.movement_count or 0),
        "is_consistent": expected == product.current_stock,
        "difference": product.current_stock - expected,
    }
