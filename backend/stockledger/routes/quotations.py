# Overview: Flask API routes for quotations (devis); parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import json_errors, with_acting_user
from ..models import PAYMENT_METHODS, PAYMENT_STATUSES, QUOTATION_STATUSES
from ..services import quotation_service
from ..validation import (
    PayloadPolicy,
    parse_query_datetime,
    parse_query_int,
    validate_document_payload,
    validate_payload,
    validate_update_payload,
)


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


QUOTATION_POLICY = PayloadPolicy(
    int_fields=frozenset({"customer_id", "validity_days", "discount_cents", "tax_cents"}),
    str_fields=frozenset({"notes", "terms_conditions"}),
    datetime_fields=frozenset({"quotation_date"}),
)

QUOTATION_ITEM_POLICY = PayloadPolicy(
    int_fields=frozenset({"product_id", "quantity", "unit_price_cents"}),
    str_fields=frozenset({"product_name", "description"}),
    required=frozenset({"quantity"}),
)

UPDATE_POLICY = PayloadPolicy(
    int_fields=frozenset({"customer_id", "validity_days", "discount_cents", "tax_cents"}),
    str_fields=frozenset({"notes", "terms_conditions"}),
)

STATUS_POLICY = PayloadPolicy(
    choices={"status": QUOTATION_STATUSES},
    required=frozenset({"status"}),
)

CONVERT_POLICY = PayloadPolicy(
    choices={"payment_method": PAYMENT_METHODS, "payment_status": PAYMENT_STATUSES},
)


@quotations_bp.post("")
@with_acting_user
@json_errors("create quotation")
def create_quotation_route():
    """
    Create a draft quotation.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 10}],
        "customer_id": 7,
        "validity_days": 30,
        "terms_conditions": "..."
    }
    """
    header, items = validate_document_payload(request.get_json(silent=True), QUOTATION_POLICY, QUOTATION_ITEM_POLICY)

    quotation = quotation_service.create_quotation(
        items,
        customer_id=header.get("customer_id"),
        user_id=g.user_id,
        validity_days=header.get("validity_days"),
        notes=header.get("notes"),
        terms_conditions=header.get("terms_conditions"),
        discount_cents=header.get("discount_cents") or 0,
        tax_cents=header.get("tax_cents") or 0,
        as_of=header.get("quotation_date"),
    )
    return jsonify({"quotation": quotation.to_dict()}), 201


@quotations_bp.get("")
@json_errors("list quotations")
def list_quotations_route():
    status = request.args.get("status")
    if status is not None and status not in QUOTATION_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(QUOTATION_STATUSES)}"}), 400

    quotations = quotation_service.list_quotations(
        status=status,
        customer_id=parse_query_int(request.args.get("customer_id"), "customer_id"),
        limit=parse_query_int(request.args.get("limit"), "limit", 100, minimum=1, maximum=1000),
    )
    return jsonify({"quotations": [q.to_dict(include_items=False) for q in quotations]}), 200


@quotations_bp.get("/stats")
@json_errors("build quotation stats")
def quotation_stats_route():
    stats = quotation_service.get_quotation_stats(
        start_date=parse_query_datetime(request.args.get("start"), "start"),
        end_date=parse_query_datetime(request.args.get("end"), "end", end_of_day=True),
    )
    return jsonify(stats), 200


@quotations_bp.get("/<int:quotation_id>")
@json_errors("get quotation")
def get_quotation_route(quotation_id: int):
    quotation = quotation_service.get_quotation(quotation_id)
    return jsonify({"quotation": quotation.to_dict()}), 200


@quotations_bp.put("/<int:quotation_id>")
@json_errors("update quotation")
def update_quotation_route(quotation_id: int):
    """Edit a draft quotation; "items" (optional) replaces every line."""
    changes, items = validate_update_payload(
        request.get_json(silent=True), UPDATE_POLICY, QUOTATION_ITEM_POLICY
    )
    quotation = quotation_service.update_quotation(quotation_id, changes, items=items)
    return jsonify({"quotation": quotation.to_dict()}), 200


@quotations_bp.post("/<int:quotation_id>/status")
@json_errors("update quotation status")
def update_quotation_status_route(quotation_id: int):
    data = validate_payload(request.get_json(silent=True), STATUS_POLICY)
    quotation = quotation_service.update_quotation_status(quotation_id, data["status"])
    return jsonify({"quotation": quotation.to_dict()}), 200


@quotations_bp.post("/<int:quotation_id>/convert")
@with_acting_user
@json_errors("convert quotation")
def convert_quotation_route(quotation_id: int):
    """
    Convert a sent or accepted quotation into a sale.

    Request body (optional):
    {"payment_method": "card", "payment_status": "paid"}

    Returns:
        201: Sale created, quotation converted
        400: Quotation status does not allow conversion
        404: Quotation not found
        409: Insufficient stock (quotation unchanged)
    """
    data = validate_payload(request.get_json(silent=True), CONVERT_POLICY)
    quotation, sale = quotation_service.convert_quotation_to_sale(
        quotation_id,
        payment_method=data.get("payment_method") or "cash",
        payment_status=data.get("payment_status") or "paid",
        user_id=g.user_id,
    )
    return jsonify({"quotation": quotation.to_dict(), "sale": sale.to_dict()}), 201


@quotations_bp.post("/mark-expired")
@json_errors("expire quotations")
def mark_expired_route():
    count = quotation_service.mark_expired_quotations()
    return jsonify({"expired": count}), 200


@quotations_bp.delete("/<int:quotation_id>")
@json_errors("delete quotation")
def delete_quotation_route(quotation_id: int):
    quotation_service.delete_quotation(quotation_id)
    return jsonify({"deleted": True, "id": quotation_id}), 200
