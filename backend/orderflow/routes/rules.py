# Overview: Flask API routes for admin maintenance of MOQ settings, pricing slabs and flash sales.

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services import rules_service
from ..validation import DomainError
from ..decorators import require_admin


rules_bp = Blueprint("rules", __name__, url_prefix="/api/admin/rules")


def _failure(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MOQ
# =============================================================================

@rules_bp.get("/moq")
@require_admin
def list_moq_route():
    active_only = request.args.get("active") == "1"
    return jsonify({"settings": [s.to_dict() for s in rules_service.list_moq_settings(active_only)]}), 200


@rules_bp.put("/moq")
@require_admin
def set_moq_route():
    """
    Request body:
    {
        "scope": "GLOBAL" | "PRODUCT" | "VARIANT",
        "product_id": 1,      (PRODUCT)
        "variant_id": 7,      (VARIANT)
        "min_quantity": 10
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        scope = str(data.get("scope") or "").upper()
        min_quantity = data.get("min_quantity")
        if scope == "GLOBAL":
            setting = rules_service.set_global_moq(min_quantity)
        elif scope == "PRODUCT" and isinstance(data.get("product_id"), int):
            setting = rules_service.set_product_moq(data["product_id"], min_quantity)
        elif scope == "VARIANT" and isinstance(data.get("variant_id"), int):
            setting = rules_service.set_variant_moq(data["variant_id"], min_quantity)
        else:
            return jsonify({"error": "scope must be GLOBAL, PRODUCT (with product_id) or VARIANT (with variant_id)"}), 400
        return jsonify({"setting": setting.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to set MOQ")


@rules_bp.post("/moq/<int:setting_id>/deactivate")
@require_admin
def deactivate_moq_route(setting_id: int):
    try:
        return jsonify({"setting": rules_service.deactivate_moq(setting_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to deactivate MOQ")


# =============================================================================
# PRICING SLABS
# =============================================================================

@rules_bp.get("/slabs")
@require_admin
def list_slabs_route():
    product_id = request.args.get("product_id", type=int)
    variant_id = request.args.get("variant_id", type=int)
    slabs = rules_service.list_pricing_slabs(product_id=product_id, variant_id=variant_id)
    return jsonify({"slabs": [s.to_dict() for s in slabs]}), 200


@rules_bp.post("/slabs")
@require_admin
def create_slab_route():
    try:
        slab = rules_service.create_pricing_slab(request.get_json(silent=True) or {})
        return jsonify({"slab": slab.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to create pricing slab")


@rules_bp.patch("/slabs/<int:slab_id>")
@require_admin
def update_slab_route(slab_id: int):
    try:
        slab = rules_service.update_pricing_slab(slab_id, request.get_json(silent=True) or {})
        return jsonify({"slab": slab.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to update pricing slab")


@rules_bp.delete("/slabs/<int:slab_id>")
@require_admin
def delete_slab_route(slab_id: int):
    try:
        rules_service.delete_pricing_slab(slab_id)
        return jsonify({"deleted": slab_id}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to delete pricing slab")


# =============================================================================
# FLASH SALES
# =============================================================================

@rules_bp.get("/flash-sales")
@require_admin
def list_flash_sales_route():
    active_only = request.args.get("active") == "1"
    return jsonify({"flash_sales": [s.to_dict() for s in rules_service.list_flash_sales(active_only)]}), 200


@rules_bp.post("/flash-sales")
@require_admin
def create_flash_sale_route():
    """
    Request body:
    {
        "name": "Diwali",
        "discount_percentage": "20",
        "start_time": "2026-11-01T00:00:00Z",
        "end_time": "2026-11-03T00:00:00Z",
        "product_ids": [1, 2]
    }
    """
    try:
        sale = rules_service.create_flash_sale(request.get_json(silent=True) or {})
        return jsonify({"flash_sale": sale.to_dict()}), 201
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to create flash sale")


@rules_bp.patch("/flash-sales/<int:sale_id>")
@require_admin
def update_flash_sale_route(sale_id: int):
    try:
        sale = rules_service.update_flash_sale(sale_id, request.get_json(silent=True) or {})
        return jsonify({"flash_sale": sale.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to update flash sale")


@rules_bp.post("/flash-sales/<int:sale_id>/toggle")
@require_admin
def toggle_flash_sale_route(sale_id: int):
    try:
        return jsonify({"flash_sale": rules_service.toggle_flash_sale(sale_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _failure("Failed to toggle flash sale")
