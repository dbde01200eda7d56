from __future__ import annotations

from ..extensions import db
from ..money import money_str
from orderflow.time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"


class Coupon(db.Model):
    """Promotional code. Partners attached to it earn commission on delivery."""
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_PERCENTAGE)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    min_order_amount = db.Column(db.Numeric(12, 2), nullable=True)
    max_uses = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    partners = db.relationship("CouponPartner", backref="coupon", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_value": money_str(self.discount_value),
            "min_order_amount": money_str(self.min_order_amount),
            "max_uses": self.max_uses,
            "used_count": self.used_count,
            "is_active": self.is_active,
        }


class Partner(db.Model):
    """Referral / affiliate partner."""
    __tablename__ = "partners"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_active": self.is_active,
        }


class CouponPartner(db.Model):
    __tablename__ = "coupon_partners"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "partner_id", name="uq_coupon_partner"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    # Percent of (order sub_total - discount)
    commission = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    partner = db.relationship("Partner", backref=db.backref("coupon_links", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "partner_id": self.partner_id,
            "commission": str(self.commission),
        }


class PartnerEarning(db.Model):
    """
    Commission owed to a partner for one delivered order.

    At most one set of earnings exists per order; see CommissionMarker.
    """
    __tablename__ = "partner_earnings"
    __table_args__ = (
        db.Index("ix_partner_earnings_order_partner", "order_id", "partner_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=False, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    partner = db.relationship("Partner", backref=db.backref("earnings", lazy=True))
    order = db.relationship("Order", backref=db.backref("partner_earnings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "order_id": self.order_id,
            "coupon_id": self.coupon_id,
            "amount": money_str(self.amount),
            "percentage": str(self.percentage),
            "is_paid": self.is_paid,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }


class CommissionMarker(db.Model):
    """
    One row per order whose commissions have been processed.

    The unique order_id turns a second concurrent delivery into an
    IntegrityError instead of a duplicate set of earnings.
    """
    __tablename__ = "commission_markers"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    earnings_created = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
