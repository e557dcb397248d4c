# Overview: Transaction boundaries, row locking and idempotent retries for stock mutations.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import IdempotencyKey
from ..time_utils import utcnow


def get_session(session=None):
    """Explicit session if given, else the app-scoped Flask-SQLAlchemy session."""
    return session if session is not None else db.session


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the engine opens every
    transaction with BEGIN IMMEDIATE instead (see extensions). populate_existing
    makes sure a row already in the identity map is re-read under the lock.
    """
    return query.with_for_update().populate_existing()


@contextmanager
def atomic(session=None, *, commit: bool = True):
    """
    Unit of work around one operation.

    commit=True: commit on success, roll back on any error.
    commit=False: flush only; the enclosing owner commits or rolls back.
    """
    session = get_session(session)
    try:
        yield session
        if commit:
            session.commit()
        else:
            session.flush()
    except Exception:
        if commit:
            session.rollback()
        raise


def run_idempotent(
    scope: str,
    key: str | None,
    func,
    *,
    session=None,
    attempts: int | None = None,
    backoff_base: float = 0.1,
):
    """
    Run ``func`` once per (scope, key) and commit its result.

    Returns ``(payload, replayed)``. ``func`` must return a JSON-serializable
    payload; it is stored with the key in the same transaction as the work,
    so a completed key replays the payload and a rolled-back attempt leaves
    no key behind. Retries on OperationalError, StaleDataError and
    IntegrityError (a concurrent request with the same key won the insert).

    Without a key the work runs exactly once and is never retried: a stock
    mutation repeated blindly could double-count.
    """
    session = get_session(session)

    if not key:
        with atomic(session):
            payload = func()
        return payload, False

    if attempts is None:
        attempts = current_app.config.get("IDEMPOTENCY_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        existing = session.query(IdempotencyKey).filter_by(scope=scope, key=key).one_or_none()
        if existing is not None:
            payload = existing.response
            session.rollback()
            current_app.logger.info("Replaying idempotent request scope=%s key=%s", scope, key)
            return payload, True

        try:
            payload = func()
            session.add(IdempotencyKey(scope=scope, key=key, response=payload, completed_at=utcnow()))
            session.commit()
            return payload, False
        except (OperationalError, StaleDataError, IntegrityError) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying idempotent request scope=%s key=%s after %s", scope, key, type(exc).__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
