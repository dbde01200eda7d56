from __future__ import annotations

from ..extensions import db
from orderflow.time_utils import to_utc_z


REASON_SALE = "sale"
REASON_RETURN = "return"
REASON_MANUAL = "manual"
VALID_REASONS = (REASON_SALE, REASON_RETURN, REASON_MANUAL)


class InventoryLogEntry(db.Model):
    """
    Append-only audit row for one stock mutation.

    IMMUTABLE: never updated or deleted. new_quantity always equals
    previous_quantity + quantity_change, so replaying a variant's rows in id
    order reconstructs its on-hand quantity.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.CheckConstraint("new_quantity = previous_quantity + quantity_change", name="ck_inventory_logs_snapshot"),
        db.Index("ix_inventory_logs_variant_created", "variant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    # Signed: negative for sales, positive for returns/cancellations
    quantity_change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(16), nullable=False, index=True)
    # Order id, return request id, or free-form reference for manual moves
    reference_id = db.Column(db.String(64), nullable=True, index=True)

    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("Variant", backref=db.backref("inventory_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "quantity_change": self.quantity_change,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
