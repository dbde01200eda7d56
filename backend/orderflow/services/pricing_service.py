# Overview: Effective unit price resolution (base price, quantity slabs, flash sales).

"""
Price resolution, in order:

1. base = variant.sale_price if set, else variant.price
2. slabs: variant-scoped and product-scoped slabs merged, sorted by min_qty
   (variant slab first on a tie); the first band containing the quantity
   replaces the base price
3. flash sale: if a live sale (is_active, start <= now < end) covers the
   product, the percentage discount applies to the step-2 price

Each step rounds half-up to cents. resolve_price() is pure: callers pass
the candidate slabs and flash sales, so it can be exercised without a
session. resolve_price_for() loads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_

from ..extensions import db
from ..models import Variant, PricingSlab, FlashSale, FlashSaleProduct
from ..money import round2, apply_percent_discount, money_str
from ..time_utils import utcnow, normalize_utc, in_half_open_window, to_utc_z
from ..validation import NotFoundError, require_positive_int


SOURCE_DEFAULT = "DEFAULT"
SOURCE_VARIANT_SLAB = "VARIANT_SLAB"
SOURCE_PRODUCT_SLAB = "PRODUCT_SLAB"
SOURCE_FLASH_SALE = "FLASH_SALE"


@dataclass(frozen=True)
class AppliedSlab:
    id: int
    min_qty: int
    max_qty: int | None
    price: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "min_qty": self.min_qty,
            "max_qty": self.max_qty,
            "price": money_str(self.price),
        }


@dataclass(frozen=True)
class AppliedFlashSale:
    id: int
    name: str
    discount_percentage: Decimal
    end_time: datetime
    original_price: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "discount_percentage": str(self.discount_percentage),
            "end_time": to_utc_z(self.end_time),
            "original_price": money_str(self.original_price),
        }


@dataclass(frozen=True)
class PriceResolution:
    unit_price: Decimal
    source: str
    base_price: Decimal
    applied_slab: AppliedSlab | None = None
    flash_sale: AppliedFlashSale | None = None

    def line_total(self, quantity: int) -> Decimal:
        return round2(self.unit_price * quantity)

    def to_dict(self) -> dict:
        return {
            "unit_price": money_str(self.unit_price),
            "source": self.source,
            "base_price": money_str(self.base_price),
            "applied_slab": self.applied_slab.to_dict() if self.applied_slab else None,
            "flash_sale": self.flash_sale.to_dict() if self.flash_sale else None,
        }


def select_slab(slabs, quantity: int) -> PricingSlab | None:
    ordered = sorted(
        slabs,
        key=lambda s: (s.min_qty, 0 if s.variant_id is not None else 1, s.id or 0),
    )
    for slab in ordered:
        if slab.contains(quantity):
            return slab
    return None


def select_live_flash_sale(flash_sales, now: datetime) -> FlashSale | None:
    """Highest discount among live sales; lowest id wins a tie."""
    live = [
        s for s in flash_sales
        if s.is_active and in_half_open_window(s.start_time, s.end_time, now)
    ]
    if not live:
        return None
    return min(live, key=lambda s: (-Decimal(s.discount_percentage), s.id or 0))


def resolve_price(
    variant: Variant,
    quantity: int,
    now: datetime,
    *,
    slabs=(),
    flash_sales=(),
) -> PriceResolution:
    base = round2(variant.base_price)
    price = base
    source = SOURCE_DEFAULT
    applied_slab = None

    relevant = [
        s for s in slabs
        if s.variant_id == variant.id
        or (s.variant_id is None and s.product_id == variant.product_id)
    ]
    slab = select_slab(relevant, quantity)
    if slab is not None:
        price = round2(slab.price)
        source = SOURCE_VARIANT_SLAB if slab.variant_id is not None else SOURCE_PRODUCT_SLAB
        applied_slab = AppliedSlab(slab.id, slab.min_qty, slab.max_qty, price)

    applied_sale = None
    sale = select_live_flash_sale(flash_sales, normalize_utc(now))
    if sale is not None:
        discounted = apply_percent_discount(price, sale.discount_percentage)
        applied_sale = AppliedFlashSale(
            id=sale.id,
            name=sale.name,
            discount_percentage=Decimal(sale.discount_percentage),
            end_time=sale.end_time,
            original_price=price,
        )
        price = discounted
        source = SOURCE_FLASH_SALE

    return PriceResolution(
        unit_price=price,
        source=source,
        base_price=base,
        applied_slab=applied_slab,
        flash_sale=applied_sale,
    )


def load_slabs(variant: Variant) -> list[PricingSlab]:
    return (
        db.session.query(PricingSlab)
        .filter(
            or_(
                PricingSlab.variant_id == variant.id,
                (PricingSlab.product_id == variant.product_id) & PricingSlab.variant_id.is_(None),
            )
        )
        .all()
    )


def load_flash_sales(product_id: int, now: datetime) -> list[FlashSale]:
    # Window bounds are re-checked in select_live_flash_sale
    return (
        db.session.query(FlashSale)
        .join(FlashSaleProduct, FlashSaleProduct.flash_sale_id == FlashSale.id)
        .filter(
            FlashSaleProduct.product_id == product_id,
            FlashSale.is_active.is_(True),
            FlashSale.start_time <= now,
            FlashSale.end_time > now,
        )
        .all()
    )


def resolve_price_for(variant: Variant, quantity: int, now: datetime | None = None) -> PriceResolution:
    now = normalize_utc(now) if now is not None else utcnow()
    return resolve_price(
        variant,
        quantity,
        now,
        slabs=load_slabs(variant),
        flash_sales=load_flash_sales(variant.product_id, now),
    )


def get_effective_price(variant_id: int, quantity, now: datetime | None = None) -> PriceResolution:
    quantity = require_positive_int(quantity, "quantity")
    variant = db.session.get(Variant, variant_id)
    if variant is None:
        raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return resolve_price_for(variant, quantity, now)
