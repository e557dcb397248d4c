# Overview: Gapless per-scope sequence numbers for documents (invoices, transfers, receipts, returns).

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import SequenceExhausted, UnknownReference, ValidationError
from ..models import BusinessLocation, SequenceCounter
from ..time_utils import business_date, utcnow
from .concurrency import get_session

"""
Sequence rules:
- Scope key is (business_id, location_id, scope_date, sequence_type).
- Values start at 1 and increase by exactly 1; no value is handed out twice.
- The counter is advanced by a single atomic UPDATE inside the caller's
  transaction. If that transaction rolls back, so does the increment, which
  keeps the run gapless.
"""

SEQUENCE_INVOICE = "invoice"
SEQUENCE_TRANSFER = "transfer"
SEQUENCE_RECEIPT = "receipt"
SEQUENCE_RETURN = "return"

SEQUENCE_TYPES = {SEQUENCE_INVOICE, SEQUENCE_TRANSFER, SEQUENCE_RECEIPT, SEQUENCE_RETURN}

DOCUMENT_PREFIXES = {
    SEQUENCE_INVOICE: "INV",
    SEQUENCE_TRANSFER: "TR",
    SEQUENCE_RECEIPT: "GRN",
    SEQUENCE_RETURN: "RET",
}


def _validate_scope(session, business_id: int, location_id: int, sequence_type: str) -> None:
    if sequence_type not in SEQUENCE_TYPES:
        raise ValidationError(f"unknown sequence_type: {sequence_type}")
    location = session.get(BusinessLocation, location_id)
    if location is None or not location.is_active or location.business_id != business_id:
        raise UnknownReference(f"location {location_id} not found")


def _scope_clause(business_id: int, location_id: int, scope_date: date, sequence_type: str):
    return (
        SequenceCounter.business_id == business_id,
        SequenceCounter.location_id == location_id,
        SequenceCounter.scope_date == scope_date,
        SequenceCounter.sequence_type == sequence_type,
    )


def _max_value() -> int:
    return int(current_app.config.get("SEQUENCE_MAX_VALUE", 2**31 - 1))


def next_sequence(
    business_id: int,
    location_id: int,
    scope_date: date | None = None,
    sequence_type: str = SEQUENCE_INVOICE,
    *,
    session=None,
) -> int:
    """
    Allocate the next value for the scope.

    Ensures the counter row exists, then increments it with one UPDATE and
    reads the value back in the same transaction.
    """
    session = get_session(session)
    _validate_scope(session, business_id, location_id, sequence_type)
    scope_date = business_date(scope_date)
    scope = _scope_clause(business_id, location_id, scope_date, sequence_type)
    max_value = _max_value()

    stmt = (
        update(SequenceCounter)
        .where(*scope, SequenceCounter.current_value < max_value)
        .values(current_value=SequenceCounter.current_value + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = session.execute(stmt)
    if not result.rowcount:
        if session.query(SequenceCounter.id).filter(*scope).first() is not None:
            raise SequenceExhausted(
                f"{sequence_type} sequence exhausted for location {location_id} on {scope_date.isoformat()}"
            )
        try:
            with session.begin_nested():
                session.add(SequenceCounter(
                    business_id=business_id,
                    location_id=location_id,
                    scope_date=scope_date,
                    sequence_type=sequence_type,
                    current_value=0,
                ))
        except IntegrityError:
            # A concurrent caller created the row first; fall through to its increment
            pass
        result = session.execute(stmt)
        if not result.rowcount:
            raise SequenceExhausted(
                f"{sequence_type} sequence exhausted for location {location_id} on {scope_date.isoformat()}"
            )

    return session.query(SequenceCounter.current_value).filter(*scope).scalar()


def get_current_value(
    business_id: int,
    location_id: int,
    scope_date: date | None = None,
    sequence_type: str = SEQUENCE_INVOICE,
    *,
    session=None,
) -> int:
    """Last value handed out for the scope, 0 when none yet."""
    session = get_session(session)
    scope = _scope_clause(business_id, location_id, business_date(scope_date), sequence_type)
    value = session.query(SequenceCounter.current_value).filter(*scope).scalar()
    return value or 0


def reset_sequence(
    business_id: int,
    location_id: int,
    scope_date: date | None = None,
    sequence_type: str = SEQUENCE_INVOICE,
    *,
    value: int = 0,
    session=None,
) -> SequenceCounter:
    """
    Administrative reset: the next allocation returns value + 1.

    Resetting below numbers already used will produce duplicate document
    numbers; callers own that decision.
    """
    session = get_session(session)
    _validate_scope(session, business_id, location_id, sequence_type)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("value must be a non-negative integer")
    if value > _max_value():
        raise ValidationError(f"value must be <= {_max_value()}")

    scope_date = business_date(scope_date)
    counter = session.query(SequenceCounter).filter(
        *_scope_clause(business_id, location_id, scope_date, sequence_type)
    ).populate_existing().one_or_none()
    if counter is None:
        counter = SequenceCounter(
            business_id=business_id,
            location_id=location_id,
            scope_date=scope_date,
            sequence_type=sequence_type,
        )
        session.add(counter)

    previous = counter.current_value or 0
    counter.current_value = value
    counter.updated_at = utcnow()
    session.flush()

    current_app.logger.info(
        "Sequence reset business=%s location=%s date=%s type=%s from=%s to=%s",
        business_id, location_id, scope_date.isoformat(), sequence_type, previous, value,
    )
    return counter


def format_document_number(prefix: str, location_id: int, scope_date: date, value: int, pad: int = 4) -> str:
    """e.g. TR-001-20250101-0001"""
    return f"{prefix}-{location_id:03d}-{scope_date:%Y%m%d}-{value:0{pad}d}"


def next_document_number(
    business_id: int,
    location_id: int,
    sequence_type: str,
    scope_date: date | None = None,
    *,
    session=None,
) -> str:
    scope_date = business_date(scope_date)
    value = next_sequence(business_id, location_id, scope_date, sequence_type, session=session)
    return format_document_number(DOCUMENT_PREFIXES[sequence_type], location_id, scope_date, value)
