# Overview: Flask API routes for checkout, customer orders and admin status changes.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Order
from ..services import checkout_service, order_lifecycle_service, carrier_service
from ..services.order_lifecycle_service import TransitionContext
from ..time_utils import parse_iso_datetime
from ..validation import DomainError, ValidationError
from ..decorators import require_user, require_admin


orders_bp = Blueprint("orders", __name__, url_prefix="/api")
admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/orders")


def _failure(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CUSTOMER
# =============================================================================

@orders_bp.post("/checkout")
@require_user
def checkout_route():
    """
    Place an order from the caller's cart.

    Request body:
    {
        "address_id": 3,
        "coupon_code": "SAVE10",                      (optional)
        "cart_snapshot": [{"variant_id": 1, "quantity": 5}],   (optional)
        "payment": {"gateway": "razorpay", "payment_id": "pay_123"},  (optional)
        "notes": "Leave at reception"                 (optional)
    }

    Returns:
        201: order with frozen lines (status PENDING)
        400: empty cart, MOQ violation, invalid coupon, stale snapshot
        404: address not found
        409: insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        order = checkout_service.checkout(
            g.current_user_id,
            data.get("address_id"),
            coupon_code=data.get("coupon_code"),
            cart_snapshot=data.get("cart_snapshot"),
            payment=data.get("payment"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Checkout failed")


@orders_bp.get("/orders")
@require_user
def list_my_orders_route():
    orders = (
        db.session.query(Order)
        .filter_by(user_id=g.current_user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/orders/<int:order_id>")
@require_user
def get_my_order_route(order_id: int):
    order = db.session.query(Order).filter_by(id=order_id, user_id=g.current_user_id).first()
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    data = order.to_dict(include_items=True)
    data["tracking"] = order.tracking.to_dict() if order.tracking else None
    return jsonify({"order": data}), 200


# =============================================================================
# ADMIN
# =============================================================================

@admin_orders_bp.get("")
@require_admin
def list_orders_route():
    q = db.session.query(Order)
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@admin_orders_bp.get("/<int:order_id>")
@require_admin
def get_order_route(order_id: int):
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"error": "Order not found"}), 404
    data = order.to_dict(include_items=True)
    data["tracking"] = order.tracking.to_dict() if order.tracking else None
    data["allowed_transitions"] = order_lifecycle_service.allowed_targets(order.status)
    return jsonify({"order": data}), 200


@admin_orders_bp.post("/<int:order_id>/status")
@require_admin
def transition_order_route(order_id: int):
    """
    Request body:
    {
        "status": "SHIPPED",
        "notes": "...",                 (optional; cancel/refund reason)
        "tracking_number": "...",       (optional, SHIPPED)
        "carrier": "...",               (optional, SHIPPED)
        "location": "...",              (optional)
        "estimated_delivery": "2026-01-05T10:00:00Z"   (optional, SHIPPED)
    }

    Returns:
        200: order after the transition
        404: order not found
        409: transition not allowed from current status
        502: refund failed at payment gateway (status unchanged)
    """
    try:
        data = request.get_json(silent=True) or {}
        target = data.get("status")
        if not target:
            return jsonify({"error": "status is required"}), 400

        try:
            estimated = parse_iso_datetime(data.get("estimated_delivery"))
        except ValueError:
            raise ValidationError("estimated_delivery must be an ISO-8601 datetime")

        ctx = TransitionContext(
            actor_id=g.current_admin_id,
            notes=data.get("notes"),
            tracking_number=data.get("tracking_number"),
            carrier=data.get("carrier"),
            location=data.get("location"),
            estimated_delivery=estimated,
        )
        order = order_lifecycle_service.transition(order_id, str(target).upper(), ctx)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Order status change failed")


@admin_orders_bp.post("/<int:order_id>/tracking/refresh")
@require_admin
def refresh_tracking_route(order_id: int):
    try:
        added = carrier_service.refresh_tracking(order_id)
        return jsonify({"added": [u.to_dict() for u in added]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Tracking refresh failed")
