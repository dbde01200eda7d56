# Overview: Flask API routes for customer return requests and admin decisions.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import return_service
from ..validation import DomainError
from ..decorators import require_user, require_admin


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")
admin_returns_bp = Blueprint("admin_returns", __name__, url_prefix="/api/admin/returns")


def _failure(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/reasons")
def list_reasons_route():
    return jsonify({
        "reasons": list(return_service.RETURN_REASONS),
        "window_days": current_app.config.get("RETURN_WINDOW_DAYS", 7),
        "enabled": bool(current_app.config.get("RETURNS_ENABLED", True)),
    }), 200


@returns_bp.post("")
@require_user
def create_return_route():
    """
    Request body:
    {
        "order_id": 10,
        "order_item_id": 31,
        "reason": "Wrong Item Received",
        "custom_reason": "..."     (required when reason is "Other")
    }

    Returns:
        201: return request (PENDING)
        400: returns disabled, order not delivered, window expired, bad reason
        404: order or item not found for this user
        409: an open return already exists for the item
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = data.get("order_id")
        order_item_id = data.get("order_item_id")
        if not isinstance(order_id, int) or not isinstance(order_item_id, int):
            return jsonify({"error": "order_id and order_item_id required"}), 400

        rr = return_service.create_return_request(
            g.current_user_id,
            order_id,
            order_item_id,
            data.get("reason"),
            data.get("custom_reason"),
        )
        return jsonify({"return": rr.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to create return request")


@returns_bp.get("")
@require_user
def list_my_returns_route():
    returns = return_service.list_return_requests(user_id=g.current_user_id)
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@admin_returns_bp.get("")
@require_admin
def list_returns_route():
    returns = return_service.list_return_requests(status=request.args.get("status"))
    return jsonify({"returns": [r.to_dict() for r in returns]}), 200


@admin_returns_bp.post("/<int:return_id>/status")
@require_admin
def update_return_status_route(return_id: int):
    """
    Request body:
    {
        "status": "APPROVED",
        "admin_notes": "..."   (optional)
    }

    APPROVED restocks the returned quantity.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400
        rr = return_service.update_return_status(
            return_id, str(status).upper(), g.current_admin_id, data.get("admin_notes"),
        )
        return jsonify({"return": rr.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to update return request")
