from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class SequenceCounter(db.Model):
    """
    Gapless counter per (business, location, day, document family).

    ``current_value`` is the last number handed out; 0 means none yet. It is
    only ever advanced with a single UPDATE ... SET current_value =
    current_value + 1 so concurrent callers serialize on the row.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint(
            "business_id", "location_id", "scope_date", "sequence_type",
            name="uq_sequence_counters_scope",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("business_locations.id"), nullable=False)
    scope_date = db.Column(db.Date, nullable=False)
    sequence_type = db.Column(db.String(32), nullable=False, default="invoice")
    current_value = db.Column(db.BigInteger, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "location_id": self.location_id,
            "scope_date": self.scope_date.isoformat() if self.scope_date else None,
            "sequence_type": self.sequence_type,
            "current_value": self.current_value,
            "updated_at": to_utc_z(self.updated_at),
        }
