# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API Routes

A POST creates and posts the whole ticket in one unit of work: the response
either carries the sale with its items, or an error and no trace of the
sale in the database or in the stock ledger.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_errors, with_acting_user
from ..models import PAYMENT_METHODS, PAYMENT_STATUSES
from ..services import sales_service
from ..validation import (
    PayloadPolicy,
    parse_query_datetime,
    parse_query_int,
    validate_document_payload,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


SALE_POLICY = PayloadPolicy(
    int_fields=frozenset({"customer_id", "discount_cents", "tax_cents"}),
    str_fields=frozenset({"notes"}),
    datetime_fields=frozenset({"sale_date"}),
    choices={"payment_method": PAYMENT_METHODS, "payment_status": PAYMENT_STATUSES},
)

SALE_ITEM_POLICY = PayloadPolicy(
    int_fields=frozenset({"product_id", "quantity", "unit_price_cents"}),
    str_fields=frozenset({"product_name"}),
    required=frozenset({"quantity"}),
)


@sales_bp.post("")
@with_acting_user
@json_errors("create sale")
def create_sale_route():
    """
    Create and post a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3, "unit_price_cents": 1250}],
        "customer_id": 7,              (optional)
        "payment_method": "cash",      (cash | card | transfer | check)
        "payment_status": "paid",      (paid | pending | partial)
        "discount_cents": 0,
        "tax_cents": 0,
        "notes": "..."
    }

    Returns:
        201: Sale created
        400: Invalid input
        404: Unknown product
        409: Insufficient stock on any line
    """
    header, items = validate_document_payload(request.get_json(silent=True), SALE_POLICY, SALE_ITEM_POLICY)

    sale = sales_service.create_sale(
        items,
        customer_id=header.get("customer_id"),
        user_id=g.user_id,
        payment_method=header.get("payment_method") or "cash",
        payment_status=header.get("payment_status") or "paid",
        discount_cents=header.get("discount_cents") or 0,
        tax_cents=header.get("tax_cents") or 0,
        notes=header.get("notes"),
        as_of=header.get("sale_date"),
    )
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("")
@json_errors("list sales")
def list_sales_route():
    sales = sales_service.list_sales(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
        customer_id=parse_query_int(request.args.get("customer_id"), "customer_id"),
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"sales": [sale.to_dict(include_items=False) for sale in sales]}), 200


@sales_bp.get("/stats")
@json_errors("build sales stats")
def sales_stats_route():
    stats = sales_service.get_sales_stats(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
    )
    return jsonify(stats), 200


@sales_bp.get("/<int:sale_id>")
@json_errors("get sale")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict()}), 200
