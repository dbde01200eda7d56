# Overview: Admin maintenance of pricing rules: MOQ settings, pricing slabs and flash sales.

from __future__ import annotations

from ..extensions import db
from ..models import MOQSetting, PricingSlab, FlashSale, FlashSaleProduct, Product, Variant, RuleScope
from ..validation import (
    ValidationError, NotFoundError,
    ModelValidationPolicy, validate_payload,
    enforce_rules_pricing_slab, enforce_rules_flash_sale,
    require_positive_int,
)
from .concurrency import run_with_retry


SLAB_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "variant_id", "min_qty", "max_qty", "price"},
    required_on_create={"min_qty", "price"},
)

FLASH_SALE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "discount_percentage", "start_time", "end_time", "is_active", "max_quantity"},
    required_on_create={"name", "discount_percentage", "start_time", "end_time"},
)


# =============================================================================
# MOQ settings
# =============================================================================

def _check_scope_target(scope: RuleScope) -> None:
    if scope.kind == "PRODUCT" and db.session.get(Product, scope.ref_id) is None:
        raise NotFoundError(f"Product {scope.ref_id} not found")
    if scope.kind == "VARIANT" and db.session.get(Variant, scope.ref_id) is None:
        raise NotFoundError(f"Variant {scope.ref_id} not found")


def set_moq(scope: RuleScope, min_quantity) -> MOQSetting:
    """
    Upsert the active MOQ for a scope. Older active rows of the same scope
    are deactivated so exactly one stays in force.
    """
    min_quantity = require_positive_int(min_quantity, "min_quantity")

    def _op():
        _check_scope_target(scope)
        cols = scope.columns()
        existing = (
            db.session.query(MOQSetting)
            .filter_by(is_active=True, **cols)
            .order_by(MOQSetting.id.desc())
            .all()
        )
        if existing:
            setting = existing[0]
            for stale in existing[1:]:
                stale.is_active = False
            setting.min_quantity = min_quantity
        else:
            setting = MOQSetting(min_quantity=min_quantity, is_active=True, **cols)
            db.session.add(setting)
        db.session.commit()
        return setting

    return run_with_retry(_op)


def set_global_moq(min_quantity) -> MOQSetting:
    return set_moq(RuleScope.global_(), min_quantity)


def set_product_moq(product_id: int, min_quantity) -> MOQSetting:
    return set_moq(RuleScope.product(product_id), min_quantity)


def set_variant_moq(variant_id: int, min_quantity) -> MOQSetting:
    return set_moq(RuleScope.variant(variant_id), min_quantity)


def deactivate_moq(setting_id: int) -> MOQSetting:
    def _op():
        setting = db.session.get(MOQSetting, setting_id)
        if setting is None:
            raise NotFoundError(f"MOQ setting {setting_id} not found")
        setting.is_active = False
        db.session.commit()
        return setting

    return run_with_retry(_op)


def list_moq_settings(active_only: bool = False) -> list[MOQSetting]:
    q = db.session.query(MOQSetting)
    if active_only:
        q = q.filter(MOQSetting.is_active.is_(True))
    return q.order_by(MOQSetting.id.asc()).all()


# =============================================================================
# Pricing slabs
# =============================================================================

def _check_slab_scope(product_id, variant_id) -> None:
    if (product_id is None) == (variant_id is None):
        raise ValidationError("Exactly one of product_id or variant_id is required")
    if product_id is not None:
        _check_scope_target(RuleScope.product(product_id))
    else:
        _check_scope_target(RuleScope.variant(variant_id))


def create_pricing_slab(payload: dict) -> PricingSlab:
    patch = validate_payload(model=PricingSlab, payload=payload, policy=SLAB_POLICY, partial=False)
    enforce_rules_pricing_slab(patch)

    def _op():
        _check_slab_scope(patch.get("product_id"), patch.get("variant_id"))
        slab = PricingSlab(**patch)
        db.session.add(slab)
        db.session.commit()
        return slab

    return run_with_retry(_op)


def update_pricing_slab(slab_id: int, payload: dict) -> PricingSlab:
    patch = validate_payload(model=PricingSlab, payload=payload, policy=SLAB_POLICY, partial=True)

    def _op():
        slab = db.session.get(PricingSlab, slab_id)
        if slab is None:
            raise NotFoundError(f"Pricing slab {slab_id} not found")
        merged = {
            "min_qty": patch.get("min_qty", slab.min_qty),
            "max_qty": patch["max_qty"] if "max_qty" in patch else slab.max_qty,
        }
        if "price" in patch:
            merged["price"] = patch["price"]
        enforce_rules_pricing_slab(merged)
        if "product_id" in patch or "variant_id" in patch:
            _check_slab_scope(
                patch["product_id"] if "product_id" in patch else slab.product_id,
                patch["variant_id"] if "variant_id" in patch else slab.variant_id,
            )
        for k, v in patch.items():
            setattr(slab, k, v)
        db.session.commit()
        return slab

    return run_with_retry(_op)


def delete_pricing_slab(slab_id: int) -> None:
    def _op():
        slab = db.session.get(PricingSlab, slab_id)
        if slab is None:
            raise NotFoundError(f"Pricing slab {slab_id} not found")
        db.session.delete(slab)
        db.session.commit()

    run_with_retry(_op)


def list_pricing_slabs(*, product_id: int | None = None, variant_id: int | None = None) -> list[PricingSlab]:
    q = db.session.query(PricingSlab)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if variant_id is not None:
        q = q.filter_by(variant_id=variant_id)
    return q.order_by(PricingSlab.min_qty.asc(), PricingSlab.id.asc()).all()


# =============================================================================
# Flash sales
# =============================================================================

def _parse_product_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("product_ids must be a list")
    ids = [require_positive_int(v, "product_ids") for v in raw]
    missing = sorted(set(ids) - {
        pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(ids)).all()
    })
    if missing:
        raise NotFoundError(f"Products not found: {missing}")
    return sorted(set(ids))


def create_flash_sale(payload: dict) -> FlashSale:
    payload = dict(payload or {})
    product_ids_raw = payload.pop("product_ids", None)
    patch = validate_payload(model=FlashSale, payload=payload, policy=FLASH_SALE_POLICY, partial=False)
    enforce_rules_flash_sale(patch)

    def _op():
        product_ids = _parse_product_ids(product_ids_raw)
        sale = FlashSale(**patch)
        sale.products = [FlashSaleProduct(product_id=pid) for pid in product_ids]
        db.session.add(sale)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def _replace_products(sale: FlashSale, product_ids: list[int]) -> None:
    wanted = set(product_ids)
    for link in list(sale.products):
        if link.product_id not in wanted:
            sale.products.remove(link)
    db.session.flush()
    present = {link.product_id for link in sale.products}
    for pid in product_ids:
        if pid not in present:
            sale.products.append(FlashSaleProduct(product_id=pid))


def update_flash_sale(sale_id: int, payload: dict) -> FlashSale:
    payload = dict(payload or {})
    replace_products = "product_ids" in payload
    product_ids_raw = payload.pop("product_ids", None)
    patch = validate_payload(model=FlashSale, payload=payload, policy=FLASH_SALE_POLICY, partial=True)

    def _op():
        sale = db.session.get(FlashSale, sale_id)
        if sale is None:
            raise NotFoundError(f"Flash sale {sale_id} not found")
        enforce_rules_flash_sale({
            "discount_percentage": patch.get("discount_percentage", sale.discount_percentage),
            "start_time": patch.get("start_time", sale.start_time),
            "end_time": patch.get("end_time", sale.end_time),
            "max_quantity": patch.get("max_quantity", sale.max_quantity),
        })
        for k, v in patch.items():
            setattr(sale, k, v)
        if replace_products:
            _replace_products(sale, _parse_product_ids(product_ids_raw))
        db.session.commit()
        return sale

    return run_with_retry(_op)


def toggle_flash_sale(sale_id: int) -> FlashSale:
    def _op():
        sale = db.session.get(FlashSale, sale_id)
        if sale is None:
            raise NotFoundError(f"Flash sale {sale_id} not found")
        sale.is_active = not sale.is_active
        db.session.commit()
        return sale

    return run_with_retry(_op)


def list_flash_sales(active_only: bool = False) -> list[FlashSale]:
    q = db.session.query(FlashSale)
    if active_only:
        q = q.filter(FlashSale.is_active.is_(True))
    return q.order_by(FlashSale.start_time.desc(), FlashSale.id.desc()).all()
