from __future__ import annotations

from ..extensions import db
from ..quantities import Quantity, quantity_to_str
from ..time_utils import to_utc_z, utcnow
from .lifecycle import SoftDeleteMixin


class Product(SoftDeleteMixin, db.Model):
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_business_state", "business_id", "record_state"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Serialized products carry one serial number per unit through transfers
    is_serialized = db.Column(db.Boolean, nullable=False, default=False)

    # Per-product low-stock threshold; the caller's threshold wins when given
    alert_quantity = db.Column(Quantity, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    business = db.relationship("Business", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "is_serialized": self.is_serialized,
            "alert_quantity": quantity_to_str(self.alert_quantity),
            "record_state": self.record_state,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariation(SoftDeleteMixin, db.Model):
    """
    Stock-keeping unit. Stock is tracked per (variation, location), never per
    product.
    """
    __tablename__ = "product_variations"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_variations_business_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("variations", lazy=True))

    @property
    def is_serialized(self) -> bool:
        return bool(self.product and self.product.is_serialized)

    def __repr__(self) -> str:
        return f"<ProductVariation id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "is_serialized": self.is_serialized,
            "record_state": self.record_state,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }
