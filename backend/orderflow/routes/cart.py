# Overview: Flask API routes for the customer cart.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import cart_service
from ..validation import DomainError
from ..decorators import require_user


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _failure(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@cart_bp.get("")
@require_user
def get_cart_route():
    """Priced cart: lines with resolved unit price, MOQ and stock flags, plus totals."""
    try:
        return jsonify(cart_service.get_cart(g.current_user_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to load cart")


@cart_bp.post("/items")
@require_user
def add_cart_item_route():
    """
    Request body:
    {
        "variant_id": 12,
        "quantity": 5
    }

    Quantity is added to an existing line for the same variant.

    Returns:
        201: cart after the change
        400: invalid input or below minimum order quantity
        404: unknown variant
        409: insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        variant_id = data.get("variant_id")
        if not isinstance(variant_id, int) or isinstance(variant_id, bool):
            return jsonify({"error": "variant_id is required"}), 400

        cart_service.add_to_cart(g.current_user_id, variant_id, data.get("quantity", 1))
        return jsonify(cart_service.get_cart(g.current_user_id)), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to add cart item")


@cart_bp.patch("/items/<int:item_id>")
@require_user
def update_cart_item_route(item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        cart_service.update_cart_item(g.current_user_id, item_id, data.get("quantity"))
        return jsonify(cart_service.get_cart(g.current_user_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to update cart item")


@cart_bp.delete("/items/<int:item_id>")
@require_user
def remove_cart_item_route(item_id: int):
    try:
        cart_service.remove_from_cart(g.current_user_id, item_id)
        return jsonify(cart_service.get_cart(g.current_user_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to remove cart item")


@cart_bp.delete("")
@require_user
def clear_cart_route():
    try:
        removed = cart_service.clear_cart(g.current_user_id)
        return jsonify({"removed": removed}), 200
    except Exception:
        return _failure("Failed to clear cart")
