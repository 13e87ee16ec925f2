# Overview: Flask API routes for purchase orders and goods receipt; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import json_errors, with_acting_user
from ..errors import ValidationError
from ..models import PURCHASE_ORDER_STATUSES
from ..services import purchase_order_service
from ..validation import (
    PayloadPolicy,
    parse_query_datetime,
    parse_query_int,
    validate_document_payload,
    validate_items,
    validate_payload,
    validate_update_payload,
)


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


PURCHASE_ORDER_POLICY = PayloadPolicy(
    int_fields=frozenset({"supplier_id", "discount_cents", "tax_cents"}),
    str_fields=frozenset({"payment_terms", "notes"}),
    datetime_fields=frozenset({"expected_delivery_date", "po_date"}),
)

PURCHASE_ORDER_ITEM_POLICY = PayloadPolicy(
    int_fields=frozenset({"product_id", "quantity_ordered", "quantity", "unit_price_cents"}),
    str_fields=frozenset({"product_name", "notes"}),
)

STATUS_POLICY = PayloadPolicy(
    choices={"status": PURCHASE_ORDER_STATUSES},
    required=frozenset({"status"}),
)

UPDATE_POLICY = PayloadPolicy(
    int_fields=frozenset({"supplier_id", "discount_cents", "tax_cents"}),
    str_fields=frozenset({"payment_terms", "notes"}),
    datetime_fields=frozenset({"expected_delivery_date"}),
)

RECEIPT_POLICY = PayloadPolicy(
    int_fields=frozenset({"item_id", "quantity_received"}),
    required=frozenset({"item_id", "quantity_received"}),
)


@purchase_orders_bp.post("")
@with_acting_user
@json_errors("create purchase order")
def create_purchase_order_route():
    """
    Create a draft purchase order (no stock effect).

    Request body:
    {
        "items": [{"product_id": 1, "quantity_ordered": 50, "unit_price_cents": 300}],
        "supplier_id": 4,
        "expected_delivery_date": "2024-04-01",
        "payment_terms": "30 days"
    }
    """
    header, items = validate_document_payload(
        request.get_json(silent=True), PURCHASE_ORDER_POLICY, PURCHASE_ORDER_ITEM_POLICY
    )

    po = purchase_order_service.create_purchase_order(
        items,
        supplier_id=header.get("supplier_id"),
        user_id=g.user_id,
        expected_delivery_date=header.get("expected_delivery_date"),
        payment_terms=header.get("payment_terms"),
        notes=header.get("notes"),
        discount_cents=header.get("discount_cents") or 0,
        tax_cents=header.get("tax_cents") or 0,
        as_of=header.get("po_date"),
    )
    return jsonify({"purchase_order": po.to_dict()}), 201


@purchase_orders_bp.get("")
@json_errors("list purchase orders")
def list_purchase_orders_route():
    status = request.args.get("status")
    if status is not None and status not in PURCHASE_ORDER_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(PURCHASE_ORDER_STATUSES)}"}), 400

    orders = purchase_order_service.list_purchase_orders(
        status=status,
        supplier_id=parse_query_int(request.args.get("supplier_id"), "supplier_id"),
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"purchase_orders": [po.to_dict(include_items=False) for po in orders]}), 200


@purchase_orders_bp.get("/stats")
@json_errors("build purchase order stats")
def purchase_order_stats_route():
    stats = purchase_order_service.get_purchase_order_stats(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
    )
    return jsonify(stats), 200


@purchase_orders_bp.get("/<int:po_id>")
@json_errors("get purchase order")
def get_purchase_order_route(po_id: int):
    po = purchase_order_service.get_purchase_order(po_id)
    return jsonify({"purchase_order": po.to_dict()}), 200


@purchase_orders_bp.put("/<int:po_id>")
@with_acting_user
@json_errors("update purchase order")
def update_purchase_order_route(po_id: int):
    """
    Edit a draft purchase order.

    Request body (every key optional; "items" replaces all lines):
    {"payment_terms": "60 days", "items": [{"product_id": 1, "quantity_ordered": 80}]}

    Returns:
        200: Updated, totals recomputed
        400: Invalid input or order no longer a draft
        404: Purchase order or product not found
    """
    changes, items = validate_update_payload(
        request.get_json(silent=True), UPDATE_POLICY, PURCHASE_ORDER_ITEM_POLICY
    )
    po = purchase_order_service.update_purchase_order(po_id, changes, items=items, user_id=g.user_id)
    return jsonify({"purchase_order": po.to_dict()}), 200


@purchase_orders_bp.post("/<int:po_id>/status")
@with_acting_user
@json_errors("update purchase order status")
def update_purchase_order_status_route(po_id: int):
    """
    Manual status change: {"status": "sent"}

    Returns:
        200: Updated
        400: Transition not allowed from the current status
        404: Purchase order not found
    """
    data = validate_payload(request.get_json(silent=True), STATUS_POLICY)
    po = purchase_order_service.update_purchase_order_status(po_id, data["status"], user_id=g.user_id)
    return jsonify({"purchase_order": po.to_dict()}), 200


@purchase_orders_bp.post("/<int:po_id>/receive")
@with_acting_user
@json_errors("receive purchase order")
def receive_purchase_order_route(po_id: int):
    """
    Receive goods.

    Request body:
    {"items": [{"item_id": 10, "quantity_received": 20}]}

    Returns:
        200: Received; status is 'partial' or 'received'
        400: Invalid input or status does not allow receipt
        404: Purchase order or item not found
        409: More received than ordered
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    receipts = validate_items(data.get("items"), RECEIPT_POLICY)

    po = purchase_order_service.receive_purchase_order(po_id, receipts, user_id=g.user_id)
    return jsonify({"purchase_order": po.to_dict()}), 200


@purchase_orders_bp.delete("/<int:po_id>")
@json_errors("delete purchase order")
def delete_purchase_order_route(po_id: int):
    purchase_order_service.delete_purchase_order(po_id)
    return jsonify({"deleted": True, "id": po_id}), 200
