# Overview: Flask API routes for stock reports; read-only projections over products and movements.

from flask import Blueprint, jsonify

from ..decorators import json_errors
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/low-stock")
@json_errors("build low-stock report")
def low_stock_route():
    products = reporting_service.get_low_stock_products()
    return jsonify({
        "count": len(products),
        "products": [p.to_dict() for p in products],
    }), 200


@reports_bp.get("/valuation")
@json_errors("build valuation report")
def valuation_route():
    return jsonify(reporting_service.get_stock_valuation()), 200


@reports_bp.get("/reconciliation/<int:product_id>")
@json_errors("build reconciliation report")
def reconciliation_route(product_id: int):
    return jsonify(reporting_service.get_stock_reconciliation(product_id)), 200
