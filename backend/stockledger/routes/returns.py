# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

"""
Return Processing API Routes

DESIGN:
- Create returns, optionally tied to an original sale and its lines
- 'completed' returns restock immediately, 'pending' ones on /complete
- /cancel reverses a completed return with compensating movements;
  cancelling twice answers 404 the second time
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_errors, with_acting_user
from ..models import REFUND_METHODS, RETURN_STATUSES
from ..services import return_service
from ..validation import (
    PayloadPolicy,
    parse_query_datetime,
    parse_query_int,
    validate_document_payload,
    validate_payload,
)


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


RETURN_POLICY = PayloadPolicy(
    int_fields=frozenset({"sale_id", "customer_id"}),
    str_fields=frozenset({"reason", "notes"}),
    datetime_fields=frozenset({"return_date"}),
    choices={"refund_method": REFUND_METHODS, "status": ("pending", "completed")},
)

RETURN_ITEM_POLICY = PayloadPolicy(
    int_fields=frozenset({"sale_item_id", "product_id", "quantity", "unit_price_cents"}),
    str_fields=frozenset({"product_name", "reason"}),
    required=frozenset({"quantity"}),
)

CANCEL_POLICY = PayloadPolicy(str_fields=frozenset({"reason"}))


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@with_acting_user
@json_errors("create return")
def create_return_route():
    """
    Create a return.

    Request body:
    {
        "items": [{"sale_item_id": 12, "quantity": 1}, {"product_id": 3, "quantity": 2, "unit_price_cents": 500}],
        "sale_id": 123,               (optional)
        "refund_method": "cash",      (cash | credit | exchange)
        "status": "completed",        (completed | pending)
        "reason": "Wrong size"
    }

    Returns:
        201: Return created
        400: Invalid input or more returned than sold
        404: Sale or product not found
    """
    header, items = validate_document_payload(request.get_json(silent=True), RETURN_POLICY, RETURN_ITEM_POLICY)

    return_doc = return_service.create_return(
        items,
        sale_id=header.get("sale_id"),
        customer_id=header.get("customer_id"),
        refund_method=header.get("refund_method") or "cash",
        reason=header.get("reason"),
        notes=header.get("notes"),
        user_id=g.user_id,
        status=header.get("status") or "completed",
        as_of=header.get("return_date"),
    )
    return jsonify({"return": return_doc.to_dict()}), 201


@returns_bp.get("")
@json_errors("list returns")
def list_returns_route():
    status = request.args.get("status")
    if status is not None and status not in RETURN_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(RETURN_STATUSES)}"}), 400

    returns = return_service.list_returns(
        status=status,
        sale_id=parse_query_int(request.args.get("sale_id"), "sale_id"),
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"returns": [r.to_dict(include_items=False) for r in returns]}), 200


@returns_bp.get("/stats")
@json_errors("build return stats")
def return_stats_route():
    """Completed returns only."""
    stats = return_service.get_return_stats(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
    )
    return jsonify(stats), 200


@returns_bp.get("/<int:return_id>")
@json_errors("get return")
def get_return_route(return_id: int):
    return_doc = return_service.get_return(return_id)
    return jsonify({"return": return_doc.to_dict()}), 200


# =============================================================================
# RETURN LIFECYCLE
# =============================================================================

@returns_bp.post("/<int:return_id>/complete")
@with_acting_user
@json_errors("complete return")
def complete_return_route(return_id: int):
    """pending -> completed. Restocks every product line."""
    return_doc = return_service.complete_return(return_id, user_id=g.user_id)
    return jsonify({"return": return_doc.to_dict()}), 200


@returns_bp.post("/<int:return_id>/cancel")
@with_acting_user
@json_errors("cancel return")
def cancel_return_route(return_id: int):
    """
    Cancel a return.

    Request body (optional):
    {"reason": "Customer kept the item"}

    Returns:
        200: Return cancelled
        404: Return not found or already cancelled
        409: Goods already sold again; stock would go negative
    """
    data = validate_payload(request.get_json(silent=True), CANCEL_POLICY)
    return_doc = return_service.cancel_return(return_id, user_id=g.user_id, reason=data.get("reason"))
    return jsonify({"return": return_doc.to_dict()}), 200
