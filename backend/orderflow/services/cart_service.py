# Overview: Customer cart: line maintenance and priced cart view.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import CartItem, Variant
from ..money import ZERO, round2, to_decimal, money_str
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError, require_positive_int
from . import pricing_service, moq_service
from .concurrency import run_with_retry
from .inventory_service import InsufficientStock


def compute_shipping(sub_total: Decimal) -> Decimal:
    """Flat SHIPPING_CHARGE, waived when FREE_SHIPPING_THRESHOLD > 0 and reached."""
    charge = round2(current_app.config.get("SHIPPING_CHARGE", "0"))
    threshold = round2(current_app.config.get("FREE_SHIPPING_THRESHOLD", "0"))
    if threshold > ZERO and round2(sub_total) >= threshold:
        return ZERO
    return charge


def compute_tax(sub_total: Decimal) -> Decimal:
    rate = to_decimal(current_app.config.get("TAX_RATE_PERCENT", "0"))
    return round2(round2(sub_total) * rate / Decimal("100"))


def is_available(variant: Variant) -> bool:
    return variant.is_active and (variant.product is None or variant.product.is_active)


def _load_active_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    if not is_available(variant):
        raise ValidationError(f"Variant {variant.sku} is not available", details={"variant_id": variant_id})
    return variant


def validate_line(variant: Variant, quantity: int) -> None:
    """MOQ first, then stock. Raises MOQViolation / InsufficientStock."""
    moq_service.ensure_moq(variant, quantity)
    if quantity > variant.quantity:
        raise InsufficientStock(
            f"Only {variant.quantity} units of {variant.sku} in stock",
            details={"variant_id": variant.id, "requested_quantity": quantity, "on_hand": variant.quantity},
        )


def price_line(item: CartItem, now: datetime) -> dict:
    variant = item.variant
    resolution = pricing_service.resolve_price_for(variant, item.quantity, now)
    moq = moq_service.resolve_moq(variant)
    return {
        "id": item.id,
        "variant_id": variant.id,
        "product_id": variant.product_id,
        "sku": variant.sku,
        "name": variant.product.name if variant.product else variant.sku,
        "quantity": item.quantity,
        "in_stock": variant.quantity >= item.quantity,
        "min_quantity": moq.min_quantity,
        "meets_moq": item.quantity >= moq.min_quantity,
        "pricing": resolution.to_dict(),
        "unit_price": money_str(resolution.unit_price),
        "line_total": money_str(resolution.line_total(item.quantity)),
    }


def list_cart_items(user_id: int) -> list[CartItem]:
    return db.session.query(CartItem).filter_by(user_id=user_id).order_by(CartItem.id.asc()).all()


def get_cart(user_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    lines = [price_line(item, now) for item in list_cart_items(user_id)]
    sub_total = round2(sum((Decimal(line["line_total"]) for line in lines), ZERO))
    shipping = compute_shipping(sub_total) if lines else ZERO
    tax = compute_tax(sub_total)
    return {
        "items": lines,
        "item_count": len(lines),
        "total_quantity": sum(line["quantity"] for line in lines),
        "sub_total": money_str(sub_total),
        "tax": money_str(tax),
        "shipping_cost": money_str(shipping),
        "total": money_str(sub_total + tax + shipping),
    }


def add_to_cart(user_id: int, variant_id: int, quantity) -> CartItem:
    """Add quantity to the user's line for variant_id (creating it). The merged quantity is validated."""
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        variant = _load_active_variant(variant_id)
        item = db.session.query(CartItem).filter_by(user_id=user_id, variant_id=variant_id).first()
        merged = quantity + (item.quantity if item else 0)
        validate_line(variant, merged)
        if item is None:
            item = CartItem(user_id=user_id, variant_id=variant_id, quantity=merged)
            db.session.add(item)
        else:
            item.quantity = merged
        db.session.commit()
        return item

    return run_with_retry(_op)


def _get_user_item(user_id: int, item_id: int) -> CartItem:
    item = db.session.query(CartItem).filter_by(id=item_id, user_id=user_id).first()
    if item is None:
        raise NotFoundError(f"Cart item {item_id} not found", details={"item_id": item_id})
    return item


def update_cart_item(user_id: int, item_id: int, quantity) -> CartItem:
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        item = _get_user_item(user_id, item_id)
        variant = _load_active_variant(item.variant_id)
        validate_line(variant, quantity)
        item.quantity = quantity
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_from_cart(user_id: int, item_id: int) -> None:
    def _op():
        db.session.delete(_get_user_item(user_id, item_id))
        db.session.commit()

    run_with_retry(_op)


def clear_cart(user_id: int, *, commit: bool = True) -> int:
    """Delete every line of the user's cart. With commit=False the caller owns the transaction."""
    count = db.session.query(CartItem).filter_by(user_id=user_id).delete(synchronize_session=False)
    if commit:
        db.session.commit()
    return count
