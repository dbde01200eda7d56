from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..money import money_str
from orderflow.time_utils import to_utc_z


SCOPE_GLOBAL = "GLOBAL"
SCOPE_PRODUCT = "PRODUCT"
SCOPE_VARIANT = "VARIANT"
VALID_SCOPES = (SCOPE_GLOBAL, SCOPE_PRODUCT, SCOPE_VARIANT)


@dataclass(frozen=True)
class RuleScope:
    """
    Tagged scope of a rule: GLOBAL, PRODUCT(product_id) or VARIANT(variant_id).

    Rows keep nullable product_id / variant_id columns for indexing; this is
    the value the services reason about.
    """
    kind: str
    ref_id: int | None = None

    def __post_init__(self):
        if self.kind not in VALID_SCOPES:
            raise ValueError(f"invalid scope {self.kind!r}")
        if (self.kind == SCOPE_GLOBAL) != (self.ref_id is None):
            raise ValueError(f"scope {self.kind} {'takes no' if self.kind == SCOPE_GLOBAL else 'requires a'} reference")

    @classmethod
    def global_(cls) -> "RuleScope":
        return cls(SCOPE_GLOBAL)

    @classmethod
    def product(cls, product_id: int) -> "RuleScope":
        return cls(SCOPE_PRODUCT, product_id)

    @classmethod
    def variant(cls, variant_id: int) -> "RuleScope":
        return cls(SCOPE_VARIANT, variant_id)

    def columns(self) -> dict:
        return {
            "scope": self.kind,
            "product_id": self.ref_id if self.kind == SCOPE_PRODUCT else None,
            "variant_id": self.ref_id if self.kind == SCOPE_VARIANT else None,
        }


class MOQSetting(db.Model):
    """
    Minimum order quantity rule.

    Several rows may exist per scope; the resolver takes the active one by
    precedence VARIANT > PRODUCT > GLOBAL > 1. Rows are never removed by
    the engine, only deactivated by admins.
    """
    __tablename__ = "moq_settings"
    __table_args__ = (
        db.CheckConstraint(
            "(scope = 'GLOBAL' AND product_id IS NULL AND variant_id IS NULL)"
            " OR (scope = 'PRODUCT' AND product_id IS NOT NULL AND variant_id IS NULL)"
            " OR (scope = 'VARIANT' AND variant_id IS NOT NULL AND product_id IS NULL)",
            name="ck_moq_scope_refs",
        ),
        db.CheckConstraint("min_quantity >= 1", name="ck_moq_min_quantity"),
        db.Index("ix_moq_scope_active", "scope", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(16), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    min_quantity = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def rule_scope(self) -> RuleScope:
        if self.scope == SCOPE_VARIANT:
            return RuleScope.variant(self.variant_id)
        if self.scope == SCOPE_PRODUCT:
            return RuleScope.product(self.product_id)
        return RuleScope.global_()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "min_quantity": self.min_quantity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PricingSlab(db.Model):
    """
    Quantity band with a fixed unit price, scoped to a product or a variant.

    Bands of one scope are expected not to overlap; resolution takes the first
    band (ascending min_qty) that contains the quantity.
    """
    __tablename__ = "pricing_slabs"
    __table_args__ = (
        db.CheckConstraint(
            "(product_id IS NULL) <> (variant_id IS NULL)",
            name="ck_pricing_slab_single_scope",
        ),
        db.CheckConstraint("min_qty >= 1", name="ck_pricing_slab_min_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    min_qty = db.Column(db.Integer, nullable=False)
    max_qty = db.Column(db.Integer, nullable=True)  # NULL = open-ended
    price = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def rule_scope(self) -> RuleScope:
        if self.variant_id is not None:
            return RuleScope.variant(self.variant_id)
        return RuleScope.product(self.product_id)

    def contains(self, quantity: int) -> bool:
        return quantity >= self.min_qty and (self.max_qty is None or quantity <= self.max_qty)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "min_qty": self.min_qty,
            "max_qty": self.max_qty,
            "price": money_str(self.price),
        }


class FlashSale(db.Model):
    """
    Time-boxed percentage discount over a set of products.

    Live for a product iff is_active and start_time <= now < end_time.
    sold_count is bumped at checkout for lines priced by the sale.
    """
    __tablename__ = "flash_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    max_quantity = db.Column(db.Integer, nullable=True)
    sold_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    products = db.relationship("FlashSaleProduct", backref="flash_sale", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "discount_percentage": str(self.discount_percentage),
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "is_active": self.is_active,
            "max_quantity": self.max_quantity,
            "sold_count": self.sold_count,
            "product_ids": sorted(p.product_id for p in self.products),
        }


class FlashSaleProduct(db.Model):
    __tablename__ = "flash_sale_products"
    __table_args__ = (
        db.UniqueConstraint("flash_sale_id", "product_id", name="uq_flash_sale_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    flash_sale_id = db.Column(db.Integer, db.ForeignKey("flash_sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
