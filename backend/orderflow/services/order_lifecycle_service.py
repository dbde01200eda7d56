# Overview: Order status state machine and the side effects bound to each transition.

"""
Order Lifecycle

STATE MACHINE:
    PENDING    -> PROCESSING | PAID | CANCELLED
    PROCESSING -> PAID | SHIPPED | CANCELLED
    PAID       -> PROCESSING | SHIPPED | CANCELLED | REFUNDED
    SHIPPED    -> DELIVERED | PROCESSING | CANCELLED
    DELIVERED  -> REFUNDED
    CANCELLED  -> REFUNDED
    REFUNDED: terminal

RULES:
1. transition() is the only writer of Order.status after checkout creates
   the order as PENDING.
2. The status write and its side effects (stock returns, tracking, payment
   capture, refund, commissions) share one transaction. If any of them
   fails, the order keeps its previous status and nothing else changes.
3. Carrier calls are best-effort: they are dispatched after commit and
   their failure never affects the order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Order, Tracking, TrackingUpdate, Refund
from ..models.inventory import REASON_RETURN
from ..models.payments import PAYMENT_CAPTURED, PAYMENT_REFUNDED, PAYMENT_CREATED
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError
from . import inventory_service, commission_service, carrier_service
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
from .dispatch import dispatch_after_commit
from .payment_gateway import refund_payment


PENDING = "PENDING"
PROCESSING = "PROCESSING"
PAID = "PAID"
SHIPPED = "SHIPPED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"
REFUNDED = "REFUNDED"

VALID_STATUSES = (PENDING, PROCESSING, PAID, SHIPPED, DELIVERED, CANCELLED, REFUNDED)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PROCESSING, PAID, CANCELLED}),
    PROCESSING: frozenset({PAID, SHIPPED, CANCELLED}),
    PAID: frozenset({PROCESSING, SHIPPED, CANCELLED, REFUNDED}),
    SHIPPED: frozenset({DELIVERED, PROCESSING, CANCELLED}),
    DELIVERED: frozenset({REFUNDED}),
    CANCELLED: frozenset({REFUNDED}),
    REFUNDED: frozenset(),
}

DEFAULT_CARRIER = "Default Carrier"


class InvalidTransition(ConflictError):
    """Raised when the requested status change is not an edge of the state machine."""


@dataclass
class TransitionContext:
    actor_id: int | None = None
    notes: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    location: str | None = None
    estimated_delivery: datetime | None = None


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def allowed_targets(status: str) -> list[str]:
    return sorted(ALLOWED_TRANSITIONS.get(status, frozenset()))


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise InvalidTransition(
            f"Invalid status '{status}'. Must be one of: {', '.join(VALID_STATUSES)}",
            details={"status": status},
        )


# =============================================================================
# Side effects (run inside the transition's transaction)
# =============================================================================

def _on_cancelled(order: Order, ctx: TransitionContext, after_commit: list) -> None:
    for item in order.items:
        inventory_service.increment(
            item.variant_id,
            item.quantity,
            reason=REASON_RETURN,
            reference_id=order.id,
            actor_id=ctx.actor_id,
            notes=f"Order {order.order_number} cancelled",
        )
    order.cancel_reason = ctx.notes or "Cancelled by admin"
    order.cancelled_at = utcnow()
    order.cancelled_by = ctx.actor_id
    if order.carrier_order_id:
        after_commit.append((carrier_service.cancel_carrier_order, order.id, order.carrier_order_id))


def _on_shipped(order: Order, ctx: TransitionContext, after_commit: list) -> None:
    now = utcnow()
    tracking_number = ctx.tracking_number or order.awb_code or f"SHP{int(now.timestamp() * 1000)}"
    carrier = ctx.carrier or order.courier_name or DEFAULT_CARRIER

    tracking = order.tracking
    if tracking is None:
        tracking = Tracking(order_id=order.id, tracking_number=tracking_number, carrier=carrier, status=SHIPPED)
        db.session.add(tracking)
    else:
        tracking.tracking_number = tracking_number
        tracking.carrier = carrier
        tracking.status = SHIPPED
    tracking.shipped_at = now
    if ctx.estimated_delivery is not None:
        tracking.estimated_delivery = ctx.estimated_delivery
    db.session.flush()

    db.session.add(TrackingUpdate(
        tracking_id=tracking.id,
        status=SHIPPED,
        location=ctx.location or "Warehouse",
        description=ctx.notes or carrier_service.describe_tracking_status(SHIPPED),
        timestamp=now,
    ))


def _on_delivered(order: Order, ctx: TransitionContext, after_commit: list) -> None:
    now = utcnow()
    tracking = order.tracking
    if tracking is None:
        tracking = Tracking(
            order_id=order.id,
            tracking_number=order.awb_code or f"SHP{int(now.timestamp() * 1000)}",
            carrier=order.courier_name or DEFAULT_CARRIER,
            status=DELIVERED,
        )
        db.session.add(tracking)
    tracking.status = DELIVERED
    tracking.delivered_at = now
    db.session.flush()

    db.session.add(TrackingUpdate(
        tracking_id=tracking.id,
        status=DELIVERED,
        location=ctx.location or "Delivery address",
        description=ctx.notes or carrier_service.describe_tracking_status(DELIVERED),
        timestamp=now,
    ))
    db.session.flush()

    commission_service.process_order_commissions(order)


def _on_paid(order: Order, ctx: TransitionContext, after_commit: list) -> None:
    payment = order.payment
    if payment is not None and payment.status == PAYMENT_CREATED:
        payment.status = PAYMENT_CAPTURED
        payment.captured_at = utcnow()


def _on_refunded(order: Order, ctx: TransitionContext, after_commit: list) -> None:
    payment = order.payment
    if payment is not None and payment.status == PAYMENT_CAPTURED:
        result = refund_payment(payment.gateway_payment_id, order.total, ctx.notes)
        db.session.add(Refund(
            payment_id=payment.id,
            gateway_refund_id=result.refund_id,
            amount=order.total,
            status=result.status,
            reason=ctx.notes,
            created_by=ctx.actor_id,
        ))
        payment.status = PAYMENT_REFUNDED
    order.refunded_at = utcnow()


_SIDE_EFFECTS = {
    CANCELLED: _on_cancelled,
    SHIPPED: _on_shipped,
    DELIVERED: _on_delivered,
    PAID: _on_paid,
    REFUNDED: _on_refunded,
}


def transition(order_id: int, target_status: str, context: TransitionContext | None = None) -> Order:
    """
    Move an order to target_status and apply the transition's side effects.

    Raises:
        NotFoundError: order does not exist
        InvalidTransition: target is unknown or not allowed from the current status
        InsufficientStock / ExternalCollaboratorFailure: side effect failed;
            nothing was written
    """
    validate_status(target_status)
    ctx = context or TransitionContext()

    def _op():
        begin_write_transaction()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        previous = order.status
        if not can_transition(previous, target_status):
            raise InvalidTransition(
                f"Cannot change order status from {previous} to {target_status}",
                details={
                    "order_id": order.id,
                    "from_status": previous,
                    "to_status": target_status,
                    "allowed": allowed_targets(previous),
                },
            )

        after_commit: list = []
        side_effect = _SIDE_EFFECTS.get(target_status)
        if side_effect is not None:
            side_effect(order, ctx, after_commit)

        order.status = target_status
        if ctx.notes:
            entry = f"[{target_status}] {ctx.notes}"
            order.notes = f"{order.notes}\n{entry}" if order.notes else entry
        db.session.commit()
        return order, previous, after_commit

    # A gateway refund must not be repeated by a retry
    attempts = 1 if target_status == REFUNDED else 3
    order, previous, after_commit = run_with_retry(_op, attempts=attempts)

    current_app.logger.info(
        "Order %s: %s -> %s (actor=%s)", order.order_number, previous, target_status, ctx.actor_id,
    )
    for func, *args in after_commit:
        dispatch_after_commit(func, *args)
    return order
