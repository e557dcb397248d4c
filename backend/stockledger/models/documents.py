from __future__ import annotations

from ..extensions import db
from ..quantities import Quantity, quantity_to_str
from ..time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Finalized sale. Only the stock-relevant part of a sale lives here:
    pricing, payments and customers belong to the sales system.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("business_id", "invoice_number", name="uq_sales_business_invoice"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="final")
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    items = db.relationship("SaleItem", back_populates="sale", order_by="SaleItem.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [i.to_dict() for i in self.items],
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False)
    quantity = db.Column(Quantity, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    sale = db.relationship("Sale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_variation_id": self.product_variation_id,
            "quantity": quantity_to_str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }


class PurchaseReceipt(db.Model):
    """
    Goods received from a supplier.

    DRAFT receipts have no stock effect. Approval posts one ``purchase`` entry
    per item and can happen only once.
    """
    __tablename__ = "purchase_receipts"
    __table_args__ = (
        db.UniqueConstraint("business_id", "receipt_number", name="uq_receipts_business_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    receipt_number = db.Column(db.String(64), nullable=False)
    supplier_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)  # draft, approved
    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("PurchaseReceiptItem", back_populates="receipt", order_by="PurchaseReceiptItem.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "receipt_number": self.receipt_number,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "items": [i.to_dict() for i in self.items],
        }


class PurchaseReceiptItem(db.Model):
    __tablename__ = "purchase_receipt_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("purchase_receipts.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False)
    quantity = db.Column(Quantity, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    receipt = db.relationship("PurchaseReceipt", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_variation_id": self.product_variation_id,
            "quantity": quantity_to_str(self.quantity),
            "unit_cost_cents": self.unit_cost_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }


class CustomerReturn(db.Model):
    """Goods a customer brought back against an earlier sale."""
    __tablename__ = "customer_returns"
    __table_args__ = (
        db.UniqueConstraint("business_id", "return_number", name="uq_returns_business_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    return_number = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    items = db.relationship("CustomerReturnItem", back_populates="customer_return", order_by="CustomerReturnItem.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "sale_id": self.sale_id,
            "return_number": self.return_number,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [i.to_dict() for i in self.items],
        }


class CustomerReturnItem(db.Model):
    __tablename__ = "customer_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("customer_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False)
    quantity = db.Column(Quantity, nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    customer_return = db.relationship("CustomerReturn", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "product_variation_id": self.product_variation_id,
            "quantity": quantity_to_str(self.quantity),
            "ledger_entry_id": self.ledger_entry_id,
        }


class StockCorrection(db.Model):
    """
    Operator-approved drift correction; the source document of every
    ``correction`` ledger entry.
    """
    __tablename__ = "stock_corrections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False, index=True)

    reason = db.Column(db.Text, nullable=False)

    # What the cache said, what the ledger said, and where we ended up
    cached_quantity = db.Column(Quantity, nullable=False)
    derived_quantity = db.Column(Quantity, nullable=False)
    target_quantity = db.Column(Quantity, nullable=False)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "product_variation_id": self.product_variation_id,
            "reason": self.reason,
            "cached_quantity": quantity_to_str(self.cached_quantity),
            "derived_quantity": quantity_to_str(self.derived_quantity),
            "target_quantity": quantity_to_str(self.target_quantity),
            "ledger_entry_id": self.ledger_entry_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
