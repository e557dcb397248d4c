from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class IdempotencyKey(db.Model):
    """
    Client-supplied key for a mutating request.

    The row is inserted in the same transaction as the work it guards, so it
    only exists once that work committed. ``response`` is the JSON payload
    replayed to later requests with the same key.
    """
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False)
    key = db.Column(db.String(128), nullable=False)
    response = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "key": self.key,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
