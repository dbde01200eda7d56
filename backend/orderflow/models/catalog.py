from __future__ import annotations

from ..extensions import db
from ..money import money_str
from orderflow.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product. Owned by catalog management; the engine only reads it.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Variant(db.Model):
    """
    Sellable unit of a product.

    quantity is on-hand stock. It is only ever changed through
    inventory_service.increment/decrement, each of which appends an
    InventoryLogEntry in the same transaction.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_variants_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    sale_price = db.Column(db.Numeric(12, 2), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Shipping dimensions (cm / kg), passed through to the carrier payload
    shipping_length = db.Column(db.Numeric(8, 2), nullable=True)
    shipping_breadth = db.Column(db.Numeric(8, 2), nullable=True)
    shipping_height = db.Column(db.Numeric(8, 2), nullable=True)
    shipping_weight = db.Column(db.Numeric(8, 3), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def base_price(self):
        return self.sale_price if self.sale_price is not None else self.price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "price": money_str(self.price),
            "sale_price": money_str(self.sale_price),
            "quantity": self.quantity,
            "is_active": self.is_active,
            "shipping_length": money_str(self.shipping_length),
            "shipping_breadth": money_str(self.shipping_breadth),
            "shipping_height": money_str(self.shipping_height),
            "shipping_weight": str(self.shipping_weight) if self.shipping_weight is not None else None,
        }


class Address(db.Model):
    """Shipping address, owned by account management."""
    __tablename__ = "addresses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    line1 = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    state = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(16), nullable=False)
    country = db.Column(db.String(64), nullable=False, default="India")
    phone = db.Column(db.String(32), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "line1": self.line1,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
        }
