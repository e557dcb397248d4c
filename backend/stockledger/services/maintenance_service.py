# Overview: Service-layer housekeeping; prunes expired idempotency keys.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..models import IdempotencyKey
from ..time_utils import utcnow
from .concurrency import get_session


def cleanup_idempotency_keys(*, older_than_hours: int | None = None, session=None) -> int:
    """
    Delete idempotency keys older than the retention window.

    Ledger entries are never touched here.
    """
    session = get_session(session)
    if older_than_hours is None:
        older_than_hours = current_app.config.get("IDEMPOTENCY_KEY_RETENTION_HOURS", 72)

    cutoff = utcnow() - timedelta(hours=older_than_hours)
    deleted = session.query(IdempotencyKey).filter(
        IdempotencyKey.created_at < cutoff
    ).delete(synchronize_session=False)
    session.commit()

    current_app.logger.info("Deleted %s idempotency key(s) older than %s hours", deleted, older_than_hours)
    return deleted
