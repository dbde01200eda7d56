from __future__ import annotations

from ..extensions import db
from ..money import money_str
from orderflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    Monetary fields are a frozen snapshot taken at checkout and are never
    recomputed from live catalog prices. status (and the carrier fields) are
    written only by order_lifecycle_service after creation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    sub_total = db.Column(db.Numeric(12, 2), nullable=False)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)
    coupon_code = db.Column(db.String(64), nullable=True)

    shipping_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Carrier correlation (best-effort sync, may lag the order status)
    carrier_order_id = db.Column(db.String(64), nullable=True, index=True)
    carrier_shipment_id = db.Column(db.String(64), nullable=True)
    carrier_status = db.Column(db.String(32), nullable=True)
    awb_code = db.Column(db.String(64), nullable=True)
    courier_name = db.Column(db.String(128), nullable=True)

    # Cancellation / refund audit
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    coupon = db.relationship("Coupon")
    shipping_address = db.relationship("Address")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "sub_total": money_str(self.sub_total),
            "tax": money_str(self.tax),
            "shipping_cost": money_str(self.shipping_cost),
            "discount": money_str(self.discount),
            "total": money_str(self.total),
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "shipping_address_id": self.shipping_address_id,
            "notes": self.notes,
            "carrier_order_id": self.carrier_order_id,
            "carrier_shipment_id": self.carrier_shipment_id,
            "carrier_status": self.carrier_status,
            "awb_code": self.awb_code,
            "courier_name": self.courier_name,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line. price and subtotal are frozen at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    # How price was resolved (DEFAULT, VARIANT_SLAB, PRODUCT_SLAB, FLASH_SALE)
    price_source = db.Column(db.String(16), nullable=False, default="DEFAULT")
    original_price = db.Column(db.Numeric(12, 2), nullable=True)
    flash_sale_id = db.Column(db.Integer, db.ForeignKey("flash_sales.id"), nullable=True)
    flash_sale_name = db.Column(db.String(255), nullable=True)
    flash_sale_discount = db.Column(db.Numeric(5, 2), nullable=True)

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price": money_str(self.price),
            "subtotal": money_str(self.subtotal),
            "price_source": self.price_source,
            "original_price": money_str(self.original_price),
            "flash_sale_id": self.flash_sale_id,
            "flash_sale_name": self.flash_sale_name,
            "flash_sale_discount": str(self.flash_sale_discount) if self.flash_sale_discount is not None else None,
        }


class Tracking(db.Model):
    """Shipment tracking, one per order."""
    __tablename__ = "trackings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    tracking_number = db.Column(db.String(64), nullable=False)
    carrier = db.Column(db.String(128), nullable=False, default="Default Carrier")
    status = db.Column(db.String(32), nullable=False)
    estimated_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("tracking", uselist=False, lazy=True))
    updates = db.relationship("TrackingUpdate", backref="tracking", lazy=True, order_by="TrackingUpdate.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "status": self.status,
            "estimated_delivery": to_utc_z(self.estimated_delivery),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "updates": [u.to_dict() for u in self.updates],
        }


class TrackingUpdate(db.Model):
    """Append-only carrier timeline event."""
    __tablename__ = "tracking_updates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tracking_id = db.Column(db.Integer, db.ForeignKey("trackings.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "location": self.location,
            "description": self.description,
            "timestamp": to_utc_z(self.timestamp),
        }


class ReturnRequest(db.Model):
    """
    Customer return of one delivered order line.

    Approval restocks the line through the inventory ledger.
    """
    __tablename__ = "return_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    reason = db.Column(db.String(64), nullable=False)
    custom_reason = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    admin_notes = db.Column(db.Text, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order")
    order_item = db.relationship("OrderItem", backref=db.backref("return_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "custom_reason": self.custom_reason,
            "status": self.status,
            "admin_notes": self.admin_notes,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating human-readable order numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
