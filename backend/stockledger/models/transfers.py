from __future__ import annotations

from ..extensions import db
from ..quantities import Quantity, quantity_to_str
from ..time_utils import to_utc_z, utcnow


class Transfer(db.Model):
    """
    Stock transfer between two locations of the same business.

    LIFECYCLE:
        draft -> sent -> in_transit -> verifying -> verified -> completed
        draft | sent | in_transit -> cancelled

    ``status`` is the only state; the *_at columns are metadata recorded on
    each transition. ``stock_deducted`` is set when the source ledger was
    debited (on send) and stays set; ``stock_reversed`` marks that a
    cancellation restored the source.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("business_id", "transfer_number", name="uq_transfers_business_number"),
        db.Index("ix_transfers_business_status_created", "business_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)

    # e.g. "TR-001-20250101-0001"
    transfer_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)
    stock_reversed = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    in_transit_at = db.Column(db.DateTime(timezone=True), nullable=True)
    arrived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    sent_by_user_id = db.Column(db.Integer, nullable=True)
    verified_by_user_id = db.Column(db.Integer, nullable=True)
    completed_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    from_location = db.relationship("BusinessLocation", foreign_keys=[from_location_id])
    to_location = db.relationship("BusinessLocation", foreign_keys=[to_location_id])
    items = db.relationship(
        "TransferItem",
        back_populates="transfer",
        order_by="TransferItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "transfer_number": self.transfer_number,
            "status": self.status,
            "stock_deducted": self.stock_deducted,
            "stock_reversed": self.stock_reversed,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at),
            "in_transit_at": to_utc_z(self.in_transit_at),
            "arrived_at": to_utc_z(self.arrived_at),
            "verified_at": to_utc_z(self.verified_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by_user_id": self.created_by_user_id,
            "sent_by_user_id": self.sent_by_user_id,
            "verified_by_user_id": self.verified_by_user_id,
            "completed_by_user_id": self.completed_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "product_variation_id", name="uq_transfer_items_variation"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False, index=True)

    # Requested quantity (what leaves the source on send)
    quantity = db.Column(Quantity, nullable=False)

    # Counted at the destination; may differ from quantity
    received_quantity = db.Column(Quantity, nullable=True)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    serial_numbers = db.Column(db.JSON, nullable=True)
    received_serial_numbers = db.Column(db.JSON, nullable=True)

    # Ledger links
    out_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)
    in_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)
    reversal_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    transfer = db.relationship("Transfer", back_populates="items")
    variation = db.relationship("ProductVariation")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_variation_id": self.product_variation_id,
            "quantity": quantity_to_str(self.quantity),
            "received_quantity": quantity_to_str(self.received_quantity),
            "verified": self.verified,
            "verified_at": to_utc_z(self.verified_at),
            "serial_numbers": list(self.serial_numbers or []),
            "received_serial_numbers": list(self.received_serial_numbers or []),
            "out_entry_id": self.out_entry_id,
            "in_entry_id": self.in_entry_id,
            "reversal_entry_id": self.reversal_entry_id,
        }
