# Overview: Flask API routes for effective price and MOQ lookups.

from flask import Blueprint, request, jsonify, current_app

from ..services import pricing_service, moq_service
from ..time_utils import parse_iso_datetime
from ..validation import DomainError


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.get("/variants/<int:variant_id>/effective-price")
def effective_price_route(variant_id: int):
    """
    Query params:
        quantity: positive integer (default 1)
        at: ISO-8601 instant to price at (optional, default now)
    """
    try:
        try:
            at = parse_iso_datetime(request.args.get("at"))
        except ValueError:
            return jsonify({"error": "at must be an ISO-8601 datetime"}), 400
        quantity = request.args.get("quantity", "1")
        resolution = pricing_service.get_effective_price(variant_id, quantity, at)
        return jsonify({"variant_id": variant_id, "quantity": int(quantity), **resolution.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Price resolution failed")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.get("/variants/<int:variant_id>/moq")
def moq_route(variant_id: int):
    try:
        resolution = moq_service.get_moq(variant_id)
        return jsonify({"variant_id": variant_id, **resolution.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("MOQ resolution failed")
        return jsonify({"error": "Internal server error"}), 500
