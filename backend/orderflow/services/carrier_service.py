# Overview: Carrier (shipping provider) collaborator and best-effort order sync.

"""
Carrier sync never blocks or rolls back an order write. Every function here
runs after commit (see dispatch.py), opens its own unit of work, and logs
collaborator failures instead of raising them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Order, Tracking, TrackingUpdate
from ..money import money_str
from ..time_utils import utcnow
from .payment_gateway import ExternalCollaboratorFailure


EXTENSION_KEY = "orderflow.carrier_client"

CARRIER_CREATED = "CREATED"
CARRIER_AWB_ASSIGNED = "AWB_ASSIGNED"
CARRIER_CANCELLED = "CANCELLED"

TRACKING_DESCRIPTIONS = {
    "PROCESSING": "Order is being processed",
    "SHIPPED": "Order has been shipped",
    "IN_TRANSIT": "Order is in transit",
    "OUT_FOR_DELIVERY": "Order is out for delivery",
    "DELIVERED": "Order has been delivered",
    "FAILED": "Delivery attempt failed",
    "RETURNED": "Order has been returned",
}


def describe_tracking_status(status: str) -> str:
    return TRACKING_DESCRIPTIONS.get(status, "Status updated")


@dataclass(frozen=True)
class Shipment:
    carrier_order_id: str
    shipment_id: str


@dataclass(frozen=True)
class CarrierAssignment:
    tracking_code: str
    carrier_name: str


@dataclass(frozen=True)
class CarrierEvent:
    status: str
    location: str | None = None
    description: str | None = None
    occurred_at: datetime | None = None


@dataclass
class ShipmentRequest:
    order_number: str
    order_date: datetime | None
    address: dict
    items: list[dict] = field(default_factory=list)
    sub_total: str | None = None
    length: float = 0
    breadth: float = 0
    height: float = 0
    weight: float = 0


class CarrierClient:
    """Interface for a shipping provider. Errors raise ExternalCollaboratorFailure."""
    name = "base"

    def create_shipment(self, request: ShipmentRequest) -> Shipment:
        raise NotImplementedError

    def assign_carrier(self, shipment_id: str) -> CarrierAssignment:
        raise NotImplementedError

    def cancel(self, carrier_order_id: str) -> None:
        raise NotImplementedError

    def track(self, tracking_code: str) -> list[CarrierEvent]:
        raise NotImplementedError


class DisabledCarrierClient(CarrierClient):
    name = "disabled"

    def create_shipment(self, request):
        raise ExternalCollaboratorFailure("Carrier is not configured")

    def assign_carrier(self, shipment_id):
        raise ExternalCollaboratorFailure("Carrier is not configured")

    def cancel(self, carrier_order_id):
        raise ExternalCollaboratorFailure("Carrier is not configured")

    def track(self, tracking_code):
        raise ExternalCollaboratorFailure("Carrier is not configured")


def init_app(app) -> None:
    app.extensions.setdefault(EXTENSION_KEY, DisabledCarrierClient())


def set_carrier_client(app, client: CarrierClient) -> None:
    app.extensions[EXTENSION_KEY] = client


def get_carrier_client() -> CarrierClient:
    return current_app.extensions[EXTENSION_KEY]


def carrier_enabled() -> bool:
    return bool(current_app.config.get("CARRIER_ENABLED"))


def build_shipment_request(order: Order) -> ShipmentRequest:
    """Package dimensions: max length/breadth, summed height and weight by quantity."""
    length = breadth = height = weight = 0.0
    items = []
    for item in order.items:
        v = item.variant
        length = max(length, float(v.shipping_length or 0))
        breadth = max(breadth, float(v.shipping_breadth or 0))
        height += float(v.shipping_height or 0) * item.quantity
        weight += float(v.shipping_weight or 0) * item.quantity
        items.append({
            "name": v.product.name if v.product else v.sku,
            "sku": v.sku,
            "units": item.quantity,
            "selling_price": money_str(item.price),
        })

    addr = order.shipping_address
    address = {}
    if addr is not None:
        address = {
            "name": addr.name,
            "line1": addr.line1,
            "city": addr.city,
            "state": addr.state,
            "postal_code": addr.postal_code,
            "country": addr.country,
            "phone": addr.phone,
        }

    return ShipmentRequest(
        order_number=order.order_number,
        order_date=order.created_at,
        address=address,
        items=items,
        sub_total=money_str(order.sub_total),
        length=length,
        breadth=breadth,
        height=height,
        weight=weight,
    )


def sync_order_to_carrier(order_id: int) -> bool:
    """
    Create the carrier shipment for a new order, then request a tracking code.

    Returns True when both calls succeeded. A failure after the shipment was
    created keeps the carrier ids already recorded.
    """
    if not carrier_enabled():
        return False

    order = db.session.get(Order, order_id)
    if order is None:
        current_app.logger.warning("Carrier sync skipped: order %s not found", order_id)
        return False

    client = get_carrier_client()
    try:
        shipment = client.create_shipment(build_shipment_request(order))
    except Exception:
        current_app.logger.exception("Carrier shipment creation failed for order %s", order.order_number)
        return False

    order.carrier_order_id = str(shipment.carrier_order_id)
    order.carrier_shipment_id = str(shipment.shipment_id)
    order.carrier_status = CARRIER_CREATED
    db.session.commit()

    try:
        assignment = client.assign_carrier(order.carrier_shipment_id)
    except Exception:
        current_app.logger.exception("Carrier assignment failed for order %s", order.order_number)
        return False

    order.awb_code = assignment.tracking_code
    order.courier_name = assignment.carrier_name
    order.carrier_status = CARRIER_AWB_ASSIGNED
    db.session.commit()

    current_app.logger.info(
        "Order %s synced to carrier (shipment %s, awb %s)",
        order.order_number, order.carrier_shipment_id, order.awb_code,
    )
    return True


def cancel_carrier_order(order_id: int, carrier_order_id: str) -> bool:
    if not carrier_enabled():
        return False
    try:
        get_carrier_client().cancel(carrier_order_id)
    except Exception:
        current_app.logger.exception("Carrier cancellation failed for order %s", order_id)
        return False

    order = db.session.get(Order, order_id)
    if order is not None:
        order.carrier_status = CARRIER_CANCELLED
        db.session.commit()
    return True


def refresh_tracking(order_id: int) -> list[TrackingUpdate]:
    """
    Pull carrier events for an order and append the new ones to its tracking
    timeline. A carrier DELIVERED event moves a SHIPPED order to DELIVERED
    through the lifecycle state machine; for an order in any other status
    it is skipped.
    """
    from . import order_lifecycle_service as lifecycle

    order = db.session.get(Order, order_id)
    if order is None or not order.awb_code:
        return []

    try:
        events = get_carrier_client().track(order.awb_code)
    except Exception:
        current_app.logger.exception("Tracking refresh failed for order %s", order.order_number)
        return []

    tracking = order.tracking
    if tracking is None:
        tracking = Tracking(
            order_id=order.id,
            tracking_number=order.awb_code,
            carrier=order.courier_name or "Default Carrier",
            status=order.status,
        )
        db.session.add(tracking)
        db.session.flush()

    seen = {(u.status, u.location) for u in tracking.updates}
    added = []
    delivered = False
    for event in events:
        if (event.status, event.location) in seen:
            continue
        if event.status == lifecycle.DELIVERED:
            # only the lifecycle transition below records delivery
            if lifecycle.can_transition(order.status, lifecycle.DELIVERED):
                delivered = True
            elif order.status != lifecycle.DELIVERED:
                current_app.logger.warning(
                    "Ignoring carrier DELIVERED event for order %s in status %s",
                    order.order_number, order.status,
                )
            continue
        update = TrackingUpdate(
            tracking_id=tracking.id,
            status=event.status,
            location=event.location,
            description=event.description or describe_tracking_status(event.status),
            timestamp=event.occurred_at or utcnow(),
        )
        db.session.add(update)
        added.append(update)
        seen.add((event.status, event.location))
        tracking.status = event.status
    db.session.commit()

    if delivered:
        lifecycle.transition(
            order.id,
            lifecycle.DELIVERED,
            lifecycle.TransitionContext(location="Delivery address", notes="Delivered per carrier tracking"),
        )
    return added
