# Overview: Checkout: turn a cart into a PENDING order with frozen prices in one transaction.

"""
Checkout Invariants

- Every line is validated (MOQ, then stock) before the first write; any
  failure aborts the whole checkout and the cart is left untouched.
- Unit prices and amounts are resolved once and frozen into the order
  lines. Later rule changes never alter an existing order.
- Stock decrements go through the inventory ledger with reason "sale" and
  the order id as reference.
- Carrier sync is dispatched only after the order has committed.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Address, Order, OrderItem, FlashSale, Payment, Coupon
from ..models.inventory import REASON_SALE
from ..money import ZERO, round2
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError
from . import pricing_service, inventory_service, carrier_service
from .cart_service import list_cart_items, is_available, validate_line, compute_shipping, compute_tax, clear_cart
from .concurrency import run_with_retry, begin_write_transaction
from .coupon_service import apply_coupon
from .dispatch import dispatch_after_commit
from .document_service import next_document_number
from .order_lifecycle_service import PENDING


ORDER_DOCUMENT_TYPE = "ORDER"


class CheckoutError(ValidationError):
    """Cart cannot be checked out as submitted."""


def _snapshot_matches(items, snapshot) -> bool:
    """snapshot: [{"variant_id": int, "quantity": int}, ...] as the client last saw the cart."""
    try:
        submitted = sorted((int(s["variant_id"]), int(s["quantity"])) for s in snapshot)
    except (KeyError, TypeError, ValueError):
        raise CheckoutError("cart_snapshot must be a list of {variant_id, quantity}")
    current = sorted((item.variant_id, item.quantity) for item in items)
    return submitted == current


def checkout(
    user_id: int,
    address_id: int,
    coupon_code: str | None = None,
    cart_snapshot: list | None = None,
    *,
    payment: dict | None = None,
    notes: str | None = None,
) -> Order:
    """
    Place an order from the user's cart.

    payment, when given, records the gateway payment reference
    ({"gateway": ..., "payment_id": ...}) in CREATED state; the PAID
    transition captures it.
    """

    def _op():
        begin_write_transaction()
        now = utcnow()

        items = list_cart_items(user_id)
        if not items:
            raise CheckoutError("Cart is empty")

        address = db.session.get(Address, address_id) if address_id is not None else None
        if address is None or address.user_id != user_id:
            raise NotFoundError("Shipping address not found", details={"address_id": address_id})

        if cart_snapshot is not None and not _snapshot_matches(items, cart_snapshot):
            raise CheckoutError("Cart has changed since it was last viewed; please review it again")

        # Phase 1: resolve and validate every line, no writes
        priced = []
        for item in items:
            variant = item.variant
            if not is_available(variant):
                raise CheckoutError(f"Variant {variant.sku} is no longer available", details={"variant_id": variant.id})
            validate_line(variant, item.quantity)
            resolution = pricing_service.resolve_price_for(variant, item.quantity, now)
            priced.append((item, variant, resolution))

        sub_total = round2(sum((r.line_total(i.quantity) for i, _, r in priced), ZERO))

        coupon = None
        discount = ZERO
        if coupon_code:
            coupon, discount = apply_coupon(coupon_code, sub_total)

        shipping = compute_shipping(sub_total)
        tax = compute_tax(sub_total)
        total = round2(sub_total + tax + shipping - discount)

        # Phase 2: writes
        order = Order(
            order_number=next_document_number(
                document_type=ORDER_DOCUMENT_TYPE,
                prefix=current_app.config.get("ORDER_NUMBER_PREFIX", "ORD"),
            ),
            user_id=user_id,
            status=PENDING,
            sub_total=sub_total,
            tax=tax,
            shipping_cost=shipping,
            discount=discount,
            total=total,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            shipping_address_id=address.id,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        sale_units: dict[int, int] = {}
        for item, variant, resolution in priced:
            sale = resolution.flash_sale
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity=item.quantity,
                price=resolution.unit_price,
                subtotal=resolution.line_total(item.quantity),
                price_source=resolution.source,
                original_price=sale.original_price if sale else resolution.base_price,
                flash_sale_id=sale.id if sale else None,
                flash_sale_name=sale.name if sale else None,
                flash_sale_discount=sale.discount_percentage if sale else None,
            ))
            inventory_service.decrement(
                variant.id,
                item.quantity,
                reason=REASON_SALE,
                reference_id=order.id,
                actor_id=user_id,
                notes=f"Order {order.order_number}",
            )
            if sale:
                sale_units[sale.id] = sale_units.get(sale.id, 0) + item.quantity

        for sale_id, units in sale_units.items():
            db.session.query(FlashSale).filter_by(id=sale_id).update(
                {FlashSale.sold_count: FlashSale.sold_count + units}, synchronize_session=False,
            )

        if coupon is not None:
            db.session.query(Coupon).filter_by(id=coupon.id).update(
                {Coupon.used_count: Coupon.used_count + 1}, synchronize_session=False,
            )

        if payment:
            if not payment.get("gateway") or not payment.get("payment_id"):
                raise CheckoutError("payment requires gateway and payment_id")
            db.session.add(Payment(
                order_id=order.id,
                gateway=str(payment["gateway"]),
                gateway_payment_id=str(payment["payment_id"]),
                amount=total,
            ))

        clear_cart(user_id, commit=False)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s placed by user %s: %d line(s), total %s",
        order.order_number, user_id, len(order.items), order.total,
    )
    if carrier_service.carrier_enabled():
        dispatch_after_commit(carrier_service.sync_order_to_carrier, order.id)
    return order
