from __future__ import annotations

from ..extensions import db
from ..money import money_str
from orderflow.time_utils import to_utc_z


PAYMENT_CREATED = "CREATED"
PAYMENT_CAPTURED = "CAPTURED"
PAYMENT_REFUNDED = "REFUNDED"


class Payment(db.Model):
    """
    Gateway payment backing an order (at most one per order).

    status moves CREATED -> CAPTURED -> REFUNDED, driven by order transitions.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    gateway = db.Column(db.String(32), nullable=False)
    gateway_payment_id = db.Column(db.String(128), nullable=False, unique=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_CREATED, index=True)
    captured_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "gateway": self.gateway,
            "gateway_payment_id": self.gateway_payment_id,
            "amount": money_str(self.amount),
            "status": self.status,
            "captured_at": to_utc_z(self.captured_at),
            "created_at": to_utc_z(self.created_at),
        }


class Refund(db.Model):
    """
    Append-only record of a refund confirmed by the gateway.

    IMMUTABLE: never updated or deleted.
    """
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    gateway_refund_id = db.Column(db.String(128), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", backref=db.backref("refunds", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "gateway_refund_id": self.gateway_refund_id,
            "amount": money_str(self.amount),
            "status": self.status,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
