from __future__ import annotations

from ..extensions import db
from orderflow.time_utils import to_utc_z


class CartItem(db.Model):
    """One line of a user's cart. (user_id, variant_id) is unique."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("user_id", "variant_id", name="uq_cart_items_user_variant"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }
