# Overview: Flask API routes for stock movements; parses input and returns JSON responses.

"""
Stock Movement API Routes

POST records a manual movement through the stock ledger. The read endpoints
expose the append-only movement trail and two projections over it.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_errors, with_acting_user
from ..models import MOVEMENT_TYPES
from ..services import inventory_service, movement_service, reporting_service
from ..validation import (
    PayloadPolicy,
    parse_query_datetime,
    parse_query_int,
    validate_payload,
)


stock_movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")


MOVEMENT_POLICY = PayloadPolicy(
    int_fields=frozenset({"product_id", "quantity"}),
    str_fields=frozenset({"reason", "reference", "notes"}),
    datetime_fields=frozenset({"movement_date"}),
    choices={"movement_type": MOVEMENT_TYPES},
    required=frozenset({"product_id", "movement_type", "quantity"}),
)


@stock_movements_bp.post("")
@with_acting_user
@json_errors("record stock movement")
def create_movement_route():
    """
    Record a manual stock movement.

    Request body:
    {
        "product_id": 1,
        "movement_type": "adjustment",   (in | out | adjustment | return)
        "quantity": -3,                  (signed for adjustments, magnitude otherwise)
        "reason": "Breakage"
    }

    Returns:
        201: Movement recorded
        400: Invalid input
        404: Product not found
        409: Stock would go negative
    """
    data = validate_payload(request.get_json(silent=True), MOVEMENT_POLICY)

    movement = inventory_service.record_manual_movement(
        data["product_id"],
        data["movement_type"],
        data["quantity"],
        reason=data.get("reason"),
        reference=data.get("reference"),
        notes=data.get("notes"),
        user_id=g.user_id,
        occurred_at=data.get("movement_date"),
    )
    return jsonify({"movement": movement.to_dict()}), 201


@stock_movements_bp.get("")
@json_errors("list stock movements")
def list_movements_route():
    movement_type = request.args.get("movement_type")
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        return jsonify({"error": f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}"}), 400

    movements = movement_service.list_movements(
        product_id=parse_query_int(request.args.get("product_id"), "product_id"),
        movement_type=movement_type,
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@stock_movements_bp.get("/product/<int:product_id>")
@json_errors("list product movements")
def product_movements_route(product_id: int):
    movements = movement_service.get_product_movements(
        product_id,
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"product_id": product_id, "movements": [m.to_dict() for m in movements]}), 200


@stock_movements_bp.get("/summary")
@json_errors("summarize stock movements")
def movement_summary_route():
    summary = reporting_service.get_movement_summary(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
    )
    return jsonify(summary), 200


@stock_movements_bp.get("/value")
@json_errors("value stock")
def stock_value_route():
    return jsonify(reporting_service.get_stock_valuation()), 200
