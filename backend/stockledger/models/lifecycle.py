from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..time_utils import utcnow


RECORD_ACTIVE = "active"
RECORD_DELETED = "deleted"


@dataclass(frozen=True)
class Lifecycle:
    """Tagged record state: ``active`` or ``deleted`` at a point in time."""
    state: str
    at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state == RECORD_ACTIVE


class SoftDeleteMixin:
    """
    Soft delete as an explicit state.

    ``record_state`` is the source of truth; ``deleted_at`` is set exactly when
    the state is ``deleted``. Deleted rows stay in place so historic ledger
    entries keep their references.
    """

    record_state = db.Column(db.String(16), nullable=False, default=RECORD_ACTIVE, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def lifecycle(self) -> Lifecycle:
        if self.record_state == RECORD_DELETED:
            return Lifecycle(RECORD_DELETED, self.deleted_at)
        return Lifecycle(RECORD_ACTIVE)

    @property
    def is_active(self) -> bool:
        return self.record_state != RECORD_DELETED

    def mark_deleted(self, at: datetime | None = None) -> None:
        self.record_state = RECORD_DELETED
        self.deleted_at = at or utcnow()

    def restore(self) -> None:
        self.record_state = RECORD_ACTIVE
        self.deleted_at = None


def active_only(query, model):
    """Filter a query down to rows whose lifecycle is active."""
    return query.filter(model.record_state == RECORD_ACTIVE)
