from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .lifecycle import SoftDeleteMixin


class Business(SoftDeleteMixin, db.Model):
    """
    Tenant root. Every location, product and ledger row belongs to exactly one
    business, and no stock may move across business boundaries.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "record_state": self.record_state,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }


class BusinessLocation(SoftDeleteMixin, db.Model):
    """
    Physical place that holds stock (store, warehouse).

    Location codes are unique within a business, not globally.
    """
    __tablename__ = "business_locations"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_locations_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    business = db.relationship("Business", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<BusinessLocation id={self.id} business_id={self.business_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "code": self.code,
            "record_state": self.record_state,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
        }
