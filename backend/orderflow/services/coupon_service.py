# Overview: Coupon lookup, discount computation and admin setup of coupons/partners.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Coupon, CouponPartner, Partner
from ..models.partners import DISCOUNT_PERCENTAGE, DISCOUNT_FIXED
from ..money import ZERO, round2, percent_of, to_decimal, money_str
from ..validation import (
    ValidationError, ConflictError, NotFoundError,
    ModelValidationPolicy, validate_payload,
)
from .concurrency import run_with_retry


COUPON_POLICY = ModelValidationPolicy(
    writable_fields={"code", "discount_type", "discount_value", "min_order_amount", "max_uses", "is_active"},
    required_on_create={"code", "discount_type", "discount_value"},
)

PARTNER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "is_active"},
    required_on_create={"name", "email"},
)


class CouponError(ValidationError):
    """Coupon cannot be applied to this cart."""


def _max_discount_percent() -> Decimal:
    return to_decimal(current_app.config.get("COUPON_MAX_DISCOUNT_PERCENT", "90"))


def compute_discount(coupon: Coupon, sub_total: Decimal, max_percent: Decimal = Decimal("90")) -> Decimal:
    """
    PERCENTAGE: sub_total * min(value, max_percent) / 100
    FIXED: min(value, sub_total)
    Either way the result is capped at max_percent of sub_total.
    """
    sub_total = round2(sub_total)
    value = to_decimal(coupon.discount_value)
    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = percent_of(sub_total, min(value, max_percent))
    else:
        discount = round2(min(value, sub_total))
    return min(discount, percent_of(sub_total, max_percent))


def find_coupon(code: str) -> Coupon | None:
    if not code or not str(code).strip():
        return None
    return (
        db.session.query(Coupon)
        .filter(func.upper(Coupon.code) == str(code).strip().upper())
        .first()
    )


def apply_coupon(code: str, sub_total: Decimal) -> tuple[Coupon, Decimal]:
    """Validate a coupon against a cart sub-total. Returns (coupon, discount)."""
    coupon = find_coupon(code)
    if coupon is None or not coupon.is_active:
        raise CouponError("Invalid or inactive coupon code", details={"coupon_code": code})
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise CouponError("Coupon usage limit reached", details={"coupon_code": coupon.code})
    if coupon.min_order_amount is not None and round2(sub_total) < round2(coupon.min_order_amount):
        raise CouponError(
            f"Minimum order amount for this coupon is {money_str(coupon.min_order_amount)}",
            details={"coupon_code": coupon.code, "min_order_amount": money_str(coupon.min_order_amount)},
        )
    return coupon, compute_discount(coupon, sub_total, _max_discount_percent())


def _enforce_coupon_rules(patch: dict) -> None:
    if "discount_type" in patch and patch["discount_type"] not in (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED):
        raise ValidationError("discount_type must be PERCENTAGE or FIXED")
    value = patch.get("discount_value")
    if value is not None and value <= ZERO:
        raise ValidationError("discount_value must be > 0")
    if patch.get("max_uses") is not None and patch["max_uses"] < 1:
        raise ValidationError("max_uses must be >= 1")
    if "code" in patch:
        patch["code"] = patch["code"].upper()


def create_coupon(payload: dict) -> Coupon:
    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
    _enforce_coupon_rules(patch)

    def _op():
        coupon = Coupon(**patch)
        db.session.add(coupon)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Coupon code {patch['code']} already exists")
        return coupon

    return run_with_retry(_op)


def create_partner(payload: dict) -> Partner:
    patch = validate_payload(model=Partner, payload=payload, policy=PARTNER_POLICY, partial=False)
    patch["email"] = patch["email"].lower()

    def _op():
        partner = Partner(**patch)
        db.session.add(partner)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Partner {patch['email']} already exists")
        return partner

    return run_with_retry(_op)


def attach_partner(coupon_id: int, partner_id: int, commission) -> CouponPartner:
    """Link a partner to a coupon with a commission percentage (upsert)."""
    try:
        pct = to_decimal(commission)
    except ValueError:
        raise ValidationError("commission must be a number")
    if pct < ZERO or pct > Decimal("100"):
        raise ValidationError("commission must be between 0 and 100")

    def _op():
        if db.session.get(Coupon, coupon_id) is None:
            raise NotFoundError(f"Coupon {coupon_id} not found")
        if db.session.get(Partner, partner_id) is None:
            raise NotFoundError(f"Partner {partner_id} not found")
        link = db.session.query(CouponPartner).filter_by(coupon_id=coupon_id, partner_id=partner_id).first()
        if link is None:
            link = CouponPartner(coupon_id=coupon_id, partner_id=partner_id)
            db.session.add(link)
        link.commission = pct
        db.session.commit()
        return link

    return run_with_retry(_op)
