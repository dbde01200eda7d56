# Overview: Flask API routes for coupons, partners and partner earnings.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import commission_service, coupon_service
from ..validation import DomainError
from ..decorators import require_admin


partners_bp = Blueprint("partners", __name__, url_prefix="/api/admin")


def _failure(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@partners_bp.post("/coupons")
@require_admin
def create_coupon_route():
    try:
        coupon = coupon_service.create_coupon(request.get_json(silent=True) or {})
        return jsonify({"coupon": coupon.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to create coupon")


@partners_bp.post("/partners")
@require_admin
def create_partner_route():
    try:
        partner = coupon_service.create_partner(request.get_json(silent=True) or {})
        return jsonify({"partner": partner.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to create partner")


@partners_bp.put("/coupons/<int:coupon_id>/partners/<int:partner_id>")
@require_admin
def attach_partner_route(coupon_id: int, partner_id: int):
    """Request body: {"commission": "10"} (percent of sub_total - discount)."""
    try:
        data = request.get_json(silent=True) or {}
        link = coupon_service.attach_partner(coupon_id, partner_id, data.get("commission"))
        return jsonify({"coupon_partner": link.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to attach partner")


@partners_bp.get("/partners/<int:partner_id>/earnings")
@require_admin
def partner_earnings_route(partner_id: int):
    try:
        paid = request.args.get("paid")
        is_paid = None if paid is None else paid == "1"
        earnings = commission_service.list_partner_earnings(partner_id, is_paid=is_paid)
        return jsonify({
            "earnings": [e.to_dict() for e in earnings],
            "summary": commission_service.partner_summary(partner_id),
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to load partner earnings")


@partners_bp.post("/partners/<int:partner_id>/earnings/mark-paid")
@require_admin
def mark_paid_route(partner_id: int):
    """Request body: {"earning_ids": [1, 2]}"""
    try:
        data = request.get_json(silent=True) or {}
        ids = data.get("earning_ids") or []
        if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
            return jsonify({"error": "earning_ids must be a list of ids"}), 400
        updated = commission_service.mark_earnings_paid(partner_id, ids)
        return jsonify({"updated": updated, "summary": commission_service.partner_summary(partner_id)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to mark earnings paid")


@partners_bp.post("/commissions/backfill")
@require_admin
def backfill_route():
    try:
        return jsonify(commission_service.backfill_commissions()), 200
    except Exception:
        return _failure("Commission backfill failed")
