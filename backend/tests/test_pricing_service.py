"""
Tests for effective price resolution.

resolve_price() is pure, so most cases build transient model objects and
never touch the session.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from orderflow.models import Variant, PricingSlab, FlashSale, FlashSaleProduct
from orderflow.services import pricing_service
from orderflow.services.pricing_service import (
    resolve_price,
    SOURCE_DEFAULT, SOURCE_VARIANT_SLAB, SOURCE_PRODUCT_SLAB, SOURCE_FLASH_SALE,
)
from orderflow.validation import NotFoundError, ValidationError

from conftest import live_window


NOW = datetime(2026, 3, 1, 12, 0, 0)


def _variant(price="100.00", sale_price=None, variant_id=1, product_id=10):
    return Variant(
        id=variant_id,
        product_id=product_id,
        sku="SKU-1",
        price=Decimal(price),
        sale_price=Decimal(sale_price) if sale_price else None,
        quantity=100,
        is_active=True,
    )


def _slab(slab_id, min_qty, max_qty, price, variant_id=None, product_id=None):
    return PricingSlab(
        id=slab_id, min_qty=min_qty, max_qty=max_qty, price=Decimal(price),
        variant_id=variant_id, product_id=product_id,
    )


def _sale(sale_id, pct, start=NOW - timedelta(hours=1), end=NOW + timedelta(hours=1), active=True):
    return FlashSale(
        id=sale_id, name=f"Sale {sale_id}", discount_percentage=Decimal(pct),
        start_time=start, end_time=end, is_active=active,
    )


class TestResolvePrice:
    def test_no_rules_uses_base_price(self):
        r = resolve_price(_variant("49.90"), 3, NOW)
        assert r.unit_price == Decimal("49.90")
        assert r.source == SOURCE_DEFAULT
        assert r.applied_slab is None and r.flash_sale is None

    def test_sale_price_replaces_list_price_as_base(self):
        r = resolve_price(_variant("100.00", sale_price="90.00"), 1, NOW)
        assert r.unit_price == Decimal("90.00")
        assert r.base_price == Decimal("90.00")

    def test_variant_slab_matches_at_min_qty(self):
        v = _variant()
        r = resolve_price(v, 10, NOW, slabs=[_slab(1, 10, None, "80.00", variant_id=v.id)])
        assert r.unit_price == Decimal("80.00")
        assert r.source == SOURCE_VARIANT_SLAB
        assert r.applied_slab.id == 1

    def test_product_slab_applies_to_variant_of_product(self):
        v = _variant()
        r = resolve_price(v, 12, NOW, slabs=[_slab(1, 10, 20, "85.00", product_id=v.product_id)])
        assert r.unit_price == Decimal("85.00")
        assert r.source == SOURCE_PRODUCT_SLAB

    def test_quantity_outside_all_bands_falls_back_to_base(self):
        v = _variant()
        slabs = [_slab(1, 10, 20, "85.00", variant_id=v.id)]
        assert resolve_price(v, 9, NOW, slabs=slabs).source == SOURCE_DEFAULT
        assert resolve_price(v, 21, NOW, slabs=slabs).source == SOURCE_DEFAULT
        assert resolve_price(v, 20, NOW, slabs=slabs).unit_price == Decimal("85.00")

    def test_first_band_by_min_qty_wins(self):
        v = _variant()
        slabs = [
            _slab(2, 50, None, "70.00", variant_id=v.id),
            _slab(1, 10, None, "80.00", variant_id=v.id),
        ]
        # both bands contain 60; ascending min_qty puts the 10+ band first
        assert resolve_price(v, 60, NOW, slabs=slabs).unit_price == Decimal("80.00")

    def test_variant_slab_precedes_product_slab_on_equal_min_qty(self):
        v = _variant()
        slabs = [
            _slab(1, 10, None, "82.00", product_id=v.product_id),
            _slab(2, 10, None, "79.00", variant_id=v.id),
        ]
        r = resolve_price(v, 10, NOW, slabs=slabs)
        assert r.unit_price == Decimal("79.00")
        assert r.source == SOURCE_VARIANT_SLAB

    def test_slabs_of_other_variants_are_ignored(self):
        v = _variant(variant_id=1)
        r = resolve_price(v, 10, NOW, slabs=[_slab(1, 1, None, "10.00", variant_id=2)])
        assert r.source == SOURCE_DEFAULT

    def test_flash_sale_discounts_slab_price_not_base(self):
        v = _variant()
        r = resolve_price(
            v, 10, NOW,
            slabs=[_slab(1, 10, None, "80.00", variant_id=v.id)],
            flash_sales=[_sale(1, "20")],
        )
        assert r.unit_price == Decimal("64.00")
        assert r.source == SOURCE_FLASH_SALE
        assert r.flash_sale.original_price == Decimal("80.00")
        assert r.applied_slab.price == Decimal("80.00")

    def test_flash_sale_window_is_half_open(self):
        v = _variant()
        starts_now = _sale(1, "10", start=NOW, end=NOW + timedelta(hours=1))
        ends_now = _sale(2, "10", start=NOW - timedelta(hours=1), end=NOW)
        assert resolve_price(v, 1, NOW, flash_sales=[starts_now]).source == SOURCE_FLASH_SALE
        assert resolve_price(v, 1, NOW, flash_sales=[ends_now]).source == SOURCE_DEFAULT

    def test_inactive_flash_sale_is_ignored(self):
        r = resolve_price(_variant(), 1, NOW, flash_sales=[_sale(1, "50", active=False)])
        assert r.unit_price == Decimal("100.00")

    def test_highest_live_discount_wins(self):
        r = resolve_price(_variant(), 1, NOW, flash_sales=[_sale(1, "10"), _sale(2, "25"), _sale(3, "15")])
        assert r.flash_sale.id == 2
        assert r.unit_price == Decimal("75.00")

    def test_rounding_is_half_up_per_step(self):
        r = resolve_price(_variant("10.05"), 1, NOW, flash_sales=[_sale(1, "50")])
        assert r.unit_price == Decimal("5.03")

        v = _variant()
        r = resolve_price(
            v, 5, NOW,
            slabs=[_slab(1, 5, None, "33.33", variant_id=v.id)],
            flash_sales=[_sale(1, "15")],
        )
        assert r.unit_price == Decimal("28.33")

    def test_resolution_is_deterministic(self):
        v = _variant()
        slabs = [_slab(1, 10, None, "80.00", variant_id=v.id), _slab(2, 10, None, "81.00", product_id=v.product_id)]
        sales = [_sale(1, "20"), _sale(2, "20")]
        first = resolve_price(v, 10, NOW, slabs=slabs, flash_sales=sales)
        for _ in range(5):
            assert resolve_price(v, 10, NOW, slabs=list(reversed(slabs)), flash_sales=list(reversed(sales))) == first

    def test_line_total_rounds_once_per_line(self):
        r = resolve_price(_variant("33.33"), 3, NOW)
        assert r.line_total(3) == Decimal("99.99")


class TestGetEffectivePrice:
    def test_scenario_base_100_slab_80_at_quantity_10(self, db_session, variant):
        db_session.add(PricingSlab(variant_id=variant.id, min_qty=10, max_qty=None, price=Decimal("80.00")))
        db_session.commit()

        r = pricing_service.get_effective_price(variant.id, 10)
        assert r.unit_price == Decimal("80.00")
        assert r.source == SOURCE_VARIANT_SLAB

    def test_scenario_slab_plus_live_flash_sale(self, db_session, variant, product):
        db_session.add(PricingSlab(product_id=product.id, min_qty=10, max_qty=None, price=Decimal("80.00")))
        start, end = live_window()
        sale = FlashSale(name="Spring", discount_percentage=Decimal("20"), start_time=start, end_time=end, is_active=True)
        sale.products = [FlashSaleProduct(product_id=product.id)]
        db_session.add(sale)
        db_session.commit()

        r = pricing_service.get_effective_price(variant.id, 10)
        assert r.unit_price == Decimal("64.00")
        assert r.source == SOURCE_FLASH_SALE
        assert r.flash_sale.original_price == Decimal("80.00")

    def test_flash_sale_on_other_product_does_not_apply(self, db_session, variant, make_variant):
        from orderflow.models import Product
        other = Product(name="Nut", slug="nut")
        db_session.add(other)
        db_session.flush()
        start, end = live_window()
        sale = FlashSale(name="Nuts", discount_percentage=Decimal("50"), start_time=start, end_time=end, is_active=True)
        sale.products = [FlashSaleProduct(product_id=other.id)]
        db_session.add(sale)
        db_session.commit()

        assert pricing_service.get_effective_price(variant.id, 1).source == SOURCE_DEFAULT

    def test_explicit_instant_outside_window(self, db_session, variant, product):
        start, end = live_window()
        sale = FlashSale(name="Later", discount_percentage=Decimal("30"), start_time=start, end_time=end, is_active=True)
        sale.products = [FlashSaleProduct(product_id=product.id)]
        db_session.add(sale)
        db_session.commit()

        assert pricing_service.get_effective_price(variant.id, 1, end).source == SOURCE_DEFAULT
        assert pricing_service.get_effective_price(variant.id, 1, start).source == SOURCE_FLASH_SALE

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFoundError):
            pricing_service.get_effective_price(999999, 1)

    @pytest.mark.parametrize("quantity", [0, -1, "abc", 1.5, True])
    def test_rejects_invalid_quantity(self, db_session, variant, quantity):
        with pytest.raises(ValidationError):
            pricing_service.get_effective_price(variant.id, quantity)
