from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import object_session

from ..errors import LedgerImmutableError
from ..extensions import db
from ..quantities import Quantity, ZERO, quantity_to_str
from ..time_utils import to_utc_z, utcnow


class LedgerEntry(db.Model):
    """
    One signed stock movement for a (variation, location) key.

    APPEND-ONLY: rows are never updated or deleted. Corrections are new
    entries. ``balance_after`` is the running balance at the moment the entry
    was appended, so the last entry of a key always matches the cached
    balance unless something bypassed the ledger.
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_key_occurred", "product_variation_id", "location_id", "occurred_at", "id"),
        db.Index("ix_ledger_business_created", "business_id", "created_at"),
        db.Index("ix_ledger_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_change = db.Column(Quantity, nullable=False)
    balance_after = db.Column(Quantity, nullable=False)

    # Source document; NULL only for opening stock
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    # Business time (may be backdated) vs wall-clock append time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "product_variation_id": self.product_variation_id,
            "transaction_type": self.transaction_type,
            "quantity_change": quantity_to_str(self.quantity_change),
            "balance_after": quantity_to_str(self.balance_after),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "unit_cost_cents": self.unit_cost_cents,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise LedgerImmutableError(f"ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError(f"ledger entry {target.id} cannot be deleted")


class VariationLocationBalance(db.Model):
    """
    Cached balance projection: one row per (variation, location).

    Rows are created and changed only by ledger appends, in the same
    transaction as the entry. ``last_entry_id`` points at the entry whose
    ``balance_after`` the row currently mirrors.
    """
    __tablename__ = "variation_location_balances"
    __table_args__ = (
        db.UniqueConstraint("product_variation_id", "location_id", name="uq_balances_variation_location"),
        db.Index("ix_balances_location_qty", "location_id", "qty_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_variation_id = db.Column(db.Integer, db.ForeignKey("product_variations.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False, index=True)

    qty_available = db.Column(Quantity, nullable=False, default=ZERO)
    last_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "product_variation_id": self.product_variation_id,
            "location_id": self.location_id,
            "qty_available": quantity_to_str(self.qty_available),
            "last_entry_id": self.last_entry_id,
            "updated_at": to_utc_z(self.updated_at),
        }
