# Overview: Service-layer operations for the stock ledger; the only writer of ledger entries and cached balances.

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InsufficientStock,
    InvalidQuantity,
    OpeningStockExists,
    UnknownReference,
    ValidationError,
)
from ..models import (
    BusinessLocation,
    CustomerReturn,
    LedgerEntry,
    ProductVariation,
    PurchaseReceipt,
    Sale,
    StockCorrection,
    Transfer,
    VariationLocationBalance,
)
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import normalize_datetime, parse_iso_datetime, utcnow
from .balance_service import reconstruct_balance
from .concurrency import get_session, lock_for_update

"""
Stock Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted; corrections are new entries.
- Every append updates the cached balance for the same (variation, location)
  in the same transaction, under a row lock, so the cache equals the fold of
  the ledger after every committed append.
- balance_after = prior cached balance + quantity_change (corrections rebase
  on the ledger fold instead, see append_correction).
- Balance rows are locked in sorted (variation_id, location_id) order.
- occurred_at is business time and may be backdated; created_at is wall clock.
"""


TXN_OPENING_STOCK = "opening_stock"
TXN_PURCHASE = "purchase"
TXN_SALE = "sale"
TXN_TRANSFER_OUT = "transfer_out"
TXN_TRANSFER_IN = "transfer_in"
TXN_CORRECTION = "correction"
TXN_RETURN = "return"
TXN_TRANSFER_OUT_REVERSAL = "transfer_out_reversal"
TXN_SUPPLIER_RETURN = "supplier_return"

POSITIVE_TYPES = frozenset({
    TXN_OPENING_STOCK,
    TXN_PURCHASE,
    TXN_TRANSFER_IN,
    TXN_TRANSFER_OUT_REVERSAL,
    TXN_RETURN,
})
NEGATIVE_TYPES = frozenset({TXN_SALE, TXN_TRANSFER_OUT, TXN_SUPPLIER_RETURN})
TRANSACTION_TYPES = POSITIVE_TYPES | NEGATIVE_TYPES | {TXN_CORRECTION}

REF_SALE = "sale"
REF_PURCHASE_RECEIPT = "purchase_receipt"
REF_TRANSFER = "transfer"
REF_CUSTOMER_RETURN = "customer_return"
REF_STOCK_CORRECTION = "stock_correction"

# Allowed clock skew for occurred_at relative to server time
FUTURE_SKEW = timedelta(minutes=2)

_REFERENCE_MODELS: dict[str, type] = {}


def register_reference_type(name: str, model) -> None:
    """
    Map a reference_type string to the model holding the source document.

    The model must expose ``id`` and ``business_id``.
    """
    _REFERENCE_MODELS[name] = model


def reference_types() -> list[str]:
    return sorted(_REFERENCE_MODELS)


register_reference_type(REF_SALE, Sale)
register_reference_type(REF_PURCHASE_RECEIPT, PurchaseReceipt)
register_reference_type(REF_TRANSFER, Transfer)
register_reference_type(REF_CUSTOMER_RETURN, CustomerReturn)
register_reference_type(REF_STOCK_CORRECTION, StockCorrection)


@dataclass
class LedgerEntryInput:
    business_id: int
    location_id: int
    product_variation_id: int
    transaction_type: str
    quantity_change: Decimal | int | str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    occurred_at: Optional[datetime | str] = None
    unit_cost_cents: Optional[int] = None
    note: Optional[str] = None
    created_by_user_id: Optional[int] = None
    allow_negative: bool = False
    # False only for entries completing a movement that already left stock
    require_active: bool = True

    @property
    def key(self) -> tuple[int, int]:
        return (self.product_variation_id, self.location_id)


def parse_occurred_at(value) -> datetime:
    """
    Normalize occurred_at to canonical UTC-naive datetime.

    Backdating is allowed; anything beyond a small clock skew into the future
    is refused.
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        dt = normalize_datetime(value)
    elif isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError("occurred_at must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError("occurred_at must be an ISO-8601 datetime")
    else:
        raise ValidationError("invalid occurred_at")

    if dt > utcnow() + FUTURE_SKEW:
        raise ValidationError("occurred_at cannot be in the future")
    return dt


def _check_sign(transaction_type: str, qty: Decimal) -> None:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"unknown transaction_type: {transaction_type}")
    if qty == 0:
        raise InvalidQuantity("quantity_change must be non-zero")
    if transaction_type in POSITIVE_TYPES and qty < 0:
        raise InvalidQuantity(f"{transaction_type} requires a positive quantity_change")
    if transaction_type in NEGATIVE_TYPES and qty > 0:
        raise InvalidQuantity(f"{transaction_type} requires a negative quantity_change")


def validate_stock_key(
    business_id: int,
    variation_id: int,
    location_id: int,
    *,
    require_active: bool = True,
    session=None,
) -> None:
    """
    Variation and location must exist and belong to business_id.

    With require_active the variation, its product and the location must also
    be active. Ownership is checked either way.
    """
    session = get_session(session)

    variation = session.get(ProductVariation, variation_id)
    if variation is None or variation.business_id != business_id:
        raise UnknownReference(f"product variation {variation_id} not found")
    if require_active and not (variation.is_active and variation.product is not None and variation.product.is_active):
        raise UnknownReference(f"product variation {variation_id} not found")

    location = session.get(BusinessLocation, location_id)
    if location is None or location.business_id != business_id:
        raise UnknownReference(f"location {location_id} not found")
    if require_active and not location.is_active:
        raise UnknownReference(f"location {location_id} not found")


def _validate_reference(entry: LedgerEntryInput, session) -> None:
    if entry.reference_type is None and entry.reference_id is None:
        if entry.transaction_type == TXN_OPENING_STOCK:
            return
        raise ValidationError(f"{entry.transaction_type} entries require a reference")

    if entry.reference_type is None or entry.reference_id is None:
        raise ValidationError("reference_type and reference_id must be given together")

    model = _REFERENCE_MODELS.get(entry.reference_type)
    if model is None:
        raise ValidationError(f"unknown reference_type: {entry.reference_type}")

    doc = session.get(model, entry.reference_id)
    if doc is None or doc.business_id != entry.business_id:
        raise UnknownReference(f"{entry.reference_type} {entry.reference_id} not found")


def _balance_query(session, variation_id: int, location_id: int):
    return session.query(VariationLocationBalance).filter_by(
        product_variation_id=variation_id,
        location_id=location_id,
    )


def _get_or_create_balance(session, business_id: int, variation_id: int, location_id: int) -> VariationLocationBalance:
    """
    Locked balance row for the key, created at zero if missing.

    Creation runs in a savepoint; losing the insert race to a concurrent
    appender rolls back the savepoint and re-reads the winner's row.
    """
    balance = lock_for_update(_balance_query(session, variation_id, location_id)).one_or_none()
    if balance is not None:
        return balance

    try:
        with session.begin_nested():
            balance = VariationLocationBalance(
                business_id=business_id,
                product_variation_id=variation_id,
                location_id=location_id,
                qty_available=ZERO,
            )
            session.add(balance)
    except IntegrityError:
        balance = lock_for_update(_balance_query(session, variation_id, location_id)).one()
    return balance


def lock_balances(business_id: int, keys: Iterable[tuple[int, int]], *, session=None) -> dict:
    """
    Lock (creating where needed) the balance rows for ``keys``.

    Keys are (variation_id, location_id) and are locked in sorted order so two
    multi-item operations can never wait on each other in a cycle.
    """
    session = get_session(session)
    locked = {}
    for variation_id, location_id in sorted(set(keys)):
        locked[(variation_id, location_id)] = _get_or_create_balance(
            session, business_id, variation_id, location_id
        )
    return locked


def _has_entries(session, variation_id: int, location_id: int) -> bool:
    return (
        session.query(LedgerEntry.id)
        .filter_by(product_variation_id=variation_id, location_id=location_id)
        .first()
        is not None
    )


def shortage_detail(variation_id: int, location_id: int, requested: Decimal, available: Decimal) -> dict:
    return {
        "product_variation_id": variation_id,
        "location_id": location_id,
        "requested": quantity_to_str(requested),
        "available": quantity_to_str(available),
        "shortage": quantity_to_str(requested - available),
    }


def append_entries(entries: list[LedgerEntryInput], *, session=None) -> list[LedgerEntry]:
    """
    Append several entries atomically.

    Every entry is validated, every affected balance is locked, and the
    combined effect per key is checked before anything is written. An
    InsufficientStock error lists every short key. Nothing is committed; the
    caller's transaction wrapper owns commit/rollback.
    """
    session = get_session(session)
    if not entries:
        return []

    business_ids = {e.business_id for e in entries}
    if len(business_ids) != 1:
        raise ValidationError("all entries of one append must belong to the same business")
    business_id = business_ids.pop()

    quantities = []
    occurred = []
    checked_keys = set()
    validated = set()
    for entry in entries:
        qty = to_quantity(entry.quantity_change)
        _check_sign(entry.transaction_type, qty)
        if (entry.key, entry.require_active) not in validated:
            validate_stock_key(
                business_id, entry.product_variation_id, entry.location_id,
                require_active=entry.require_active, session=session,
            )
            validated.add((entry.key, entry.require_active))
            checked_keys.add(entry.key)
        _validate_reference(entry, session)
        quantities.append(qty)
        occurred.append(parse_occurred_at(entry.occurred_at))

    balances = lock_balances(business_id, checked_keys, session=session)

    for entry in entries:
        if entry.transaction_type == TXN_OPENING_STOCK and _has_entries(session, *entry.key):
            raise OpeningStockExists(
                f"opening stock already recorded for variation {entry.product_variation_id} "
                f"at location {entry.location_id}"
            )

    # Combined effect per key; negative-allowed entries are exempt from the check
    projected = {key: bal.qty_available for key, bal in balances.items()}
    withdrawn = defaultdict(lambda: ZERO)
    strict_keys = set()
    for entry, qty in zip(entries, quantities):
        projected[entry.key] += qty
        if qty < 0:
            withdrawn[entry.key] += -qty
        if not entry.allow_negative:
            strict_keys.add(entry.key)

    shortages = [
        shortage_detail(key[0], key[1], withdrawn[key], balances[key].qty_available)
        for key in sorted(strict_keys)
        if projected[key] < 0
    ]
    if shortages:
        raise InsufficientStock("insufficient stock", shortages=shortages)
    for value in projected.values():
        # resulting balances must fit the storage column
        to_quantity(value)

    rows = []
    for entry, qty, occurred_at in zip(entries, quantities, occurred):
        balance = balances[entry.key]
        new_balance = balance.qty_available + qty

        row = LedgerEntry(
            business_id=business_id,
            location_id=entry.location_id,
            product_variation_id=entry.product_variation_id,
            transaction_type=entry.transaction_type,
            quantity_change=qty,
            balance_after=new_balance,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            unit_cost_cents=entry.unit_cost_cents,
            note=entry.note,
            created_by_user_id=entry.created_by_user_id,
            occurred_at=occurred_at,
            created_at=utcnow(),
        )
        session.add(row)
        session.flush()

        balance.qty_available = new_balance
        balance.last_entry_id = row.id
        rows.append(row)

        current_app.logger.debug(
            "Ledger append id=%s type=%s variation=%s location=%s change=%s balance_after=%s",
            row.id, row.transaction_type, row.product_variation_id, row.location_id,
            quantity_to_str(qty), quantity_to_str(new_balance),
        )

    session.flush()
    return rows


def append_entry(entry: LedgerEntryInput, *, session=None) -> LedgerEntry:
    """Append one entry and update the cached balance in the same transaction."""
    return append_entries([entry], session=session)[0]


def append_correction(
    *,
    business_id: int,
    variation_id: int,
    location_id: int,
    quantity_change,
    reference_id: int,
    reference_type: str = REF_STOCK_CORRECTION,
    note: str | None = None,
    user_id: int | None = None,
    occurred_at=None,
    session=None,
) -> LedgerEntry:
    """
    The single sanctioned write that repairs drift.

    Unlike append_entry it rebases on the ledger fold rather than the cache:
    balance_after = derived + quantity_change, and the cache is set to that
    value. A zero change is allowed here only (a pure resync, still audited).
    """
    session = get_session(session)

    qty = to_quantity(quantity_change)
    validate_stock_key(business_id, variation_id, location_id, session=session)
    entry = LedgerEntryInput(
        business_id=business_id,
        location_id=location_id,
        product_variation_id=variation_id,
        transaction_type=TXN_CORRECTION,
        quantity_change=qty,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    _validate_reference(entry, session)
    occurred = parse_occurred_at(occurred_at)

    balance = lock_balances(business_id, [(variation_id, location_id)], session=session)[(variation_id, location_id)]
    derived = reconstruct_balance(variation_id, location_id, session=session)
    new_balance = derived + qty
    if new_balance < 0:
        raise InsufficientStock(
            "correction would make the balance negative",
            shortages=[shortage_detail(variation_id, location_id, -qty, derived)],
        )

    row = LedgerEntry(
        business_id=business_id,
        location_id=location_id,
        product_variation_id=variation_id,
        transaction_type=TXN_CORRECTION,
        quantity_change=qty,
        balance_after=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=user_id,
        occurred_at=occurred,
        created_at=utcnow(),
    )
    session.add(row)
    session.flush()

    previous = balance.qty_available
    balance.qty_available = new_balance
    balance.last_entry_id = row.id
    session.flush()

    current_app.logger.info(
        "Ledger correction id=%s variation=%s location=%s cached=%s derived=%s change=%s",
        row.id, variation_id, location_id,
        quantity_to_str(previous), quantity_to_str(derived), quantity_to_str(qty),
    )
    return row


def set_opening_stock(
    *,
    business_id: int,
    variation_id: int,
    location_id: int,
    quantity,
    unit_cost_cents: int | None = None,
    occurred_at=None,
    user_id: int | None = None,
    note: str | None = None,
    session=None,
) -> LedgerEntry:
    """Record the first stock of a key. Refused once the key has any entry."""
    return append_entry(
        LedgerEntryInput(
            business_id=business_id,
            location_id=location_id,
            product_variation_id=variation_id,
            transaction_type=TXN_OPENING_STOCK,
            quantity_change=quantity,
            unit_cost_cents=unit_cost_cents,
            occurred_at=occurred_at,
            note=note,
            created_by_user_id=user_id,
        ),
        session=session,
    )


def encode_cursor(entry: LedgerEntry) -> str:
    return f"{entry.occurred_at.isoformat()}|{entry.id}"


def _decode_cursor(cursor: str) -> tuple[datetime, int]:
    try:
        raw_dt, raw_id = cursor.split("|")
        dt = parse_iso_datetime(raw_dt)
        if dt is None:
            raise ValueError(cursor)
        return dt, int(raw_id)
    except ValueError:
        raise ValidationError("cursor must be in format <ISO-8601>|<id>")


def list_entries(
    *,
    business_id: int | None = None,
    variation_id: int | None = None,
    location_id: int | None = None,
    transaction_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    cursor: str | None = None,
    limit: int = 100,
    session=None,
) -> tuple[list[LedgerEntry], str | None]:
    """
    Ledger history, newest first (occurred_at DESC, id DESC).

    Date range is inclusive on both ends. Returns (rows, next_cursor);
    next_cursor is None on the last page.
    """
    session = get_session(session)
    limit = max(1, min(int(limit), 500))

    q = session.query(LedgerEntry)
    if business_id is not None:
        q = q.filter(LedgerEntry.business_id == business_id)
    if variation_id is not None:
        q = q.filter(LedgerEntry.product_variation_id == variation_id)
    if location_id is not None:
        q = q.filter(LedgerEntry.location_id == location_id)
    if transaction_type is not None:
        if transaction_type not in TRANSACTION_TYPES:
            raise ValidationError(f"unknown transaction_type: {transaction_type}")
        q = q.filter(LedgerEntry.transaction_type == transaction_type)
    if start is not None:
        q = q.filter(LedgerEntry.occurred_at >= start)
    if end is not None:
        q = q.filter(LedgerEntry.occurred_at <= end)

    if cursor:
        cursor_dt, cursor_id = _decode_cursor(cursor)
        q = q.filter(
            or_(
                LedgerEntry.occurred_at < cursor_dt,
                and_(LedgerEntry.occurred_at == cursor_dt, LedgerEntry.id < cursor_id),
            )
        )

    rows = q.order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc()).limit(limit + 1).all()

    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = encode_cursor(rows[-1])
    return rows, next_cursor
