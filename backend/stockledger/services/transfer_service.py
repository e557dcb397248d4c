# Overview: Transfer state machine; moves stock between locations through the ledger.

"""
Inter-location stock transfers.

LIFECYCLE:
1. draft:      Transfer created, items added/removed. No stock effect.
2. sent:       Source debited (one transfer_out per item), all-or-nothing.
3. in_transit: Goods left the building. No stock effect.
4. verifying:  Arrived at destination; items are counted one by one.
5. verified:   Destination credited (one transfer_in per item, received qty).
6. completed:  Closed. No stock effect.

draft, sent and in_transit may be cancelled. Cancelling after the source was
debited writes one transfer_out_reversal per item, so the source balance is
restored by new ledger entries rather than by editing old ones.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import (
    IncompleteVerification,
    InvalidQuantity,
    InvalidStateTransition,
    TransferNotEditable,
    UnknownReference,
    ValidationError,
)
from ..models import BusinessLocation, ProductVariation, Transfer, TransferItem
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import utcnow
from .concurrency import get_session, lock_for_update
from .ledger_service import (
    REF_TRANSFER,
    TXN_TRANSFER_IN,
    TXN_TRANSFER_OUT,
    TXN_TRANSFER_OUT_REVERSAL,
    LedgerEntryInput,
    append_entries,
    validate_stock_key,
)
from .sequence_service import SEQUENCE_TRANSFER, next_document_number


# Transfer status constants
STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_IN_TRANSIT = "in_transit"
STATUS_VERIFYING = "verifying"
STATUS_VERIFIED = "verified"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

STATUSES = (
    STATUS_DRAFT,
    STATUS_SENT,
    STATUS_IN_TRANSIT,
    STATUS_VERIFYING,
    STATUS_VERIFIED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)

ALLOWED_TRANSITIONS = {
    STATUS_DRAFT: {STATUS_SENT, STATUS_CANCELLED},
    STATUS_SENT: {STATUS_IN_TRANSIT, STATUS_CANCELLED},
    STATUS_IN_TRANSIT: {STATUS_VERIFYING, STATUS_CANCELLED},
    STATUS_VERIFYING: {STATUS_VERIFIED},
    STATUS_VERIFIED: {STATUS_COMPLETED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def _assert_transition(transfer: Transfer, to_status: str) -> None:
    if not can_transition(transfer.status, to_status):
        raise InvalidStateTransition(
            f"Cannot move transfer {transfer.transfer_number} from {transfer.status} to {to_status}",
            from_status=transfer.status,
            to_status=to_status,
        )


def _set_status(transfer: Transfer, to_status: str, user_id: int | None) -> None:
    from_status = transfer.status
    transfer.status = to_status
    current_app.logger.info(
        "Transfer %s (%s) %s -> %s by user=%s",
        transfer.id, transfer.transfer_number, from_status, to_status, user_id,
    )


def _load_transfer(session, transfer_id: int) -> Transfer:
    transfer = lock_for_update(session.query(Transfer).filter_by(id=transfer_id)).one_or_none()
    if transfer is None:
        raise UnknownReference(f"transfer {transfer_id} not found")
    return transfer


def _active_location(session, business_id: int, location_id: int) -> BusinessLocation:
    location = session.get(BusinessLocation, location_id)
    if location is None or not location.is_active or location.business_id != business_id:
        raise UnknownReference(f"location {location_id} not found")
    return location


def _normalize_serials(serials, field: str) -> list[str]:
    if serials is None:
        return []
    cleaned = [str(s).strip() for s in serials]
    if any(not s for s in cleaned):
        raise ValidationError(f"{field} must not contain empty serial numbers")
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError(f"{field} contains duplicates")
    return cleaned


def _serial_count(qty: Decimal, field: str) -> int:
    if qty != qty.to_integral_value():
        raise InvalidQuantity(f"{field} must be a whole number for serialized products")
    return int(qty)


def create_transfer(
    business_id: int,
    from_location_id: int,
    to_location_id: int,
    *,
    user_id: int | None = None,
    notes: str | None = None,
    items: list[dict] | None = None,
    session=None,
) -> Transfer:
    """
    Create a draft transfer numbered TR-<from>-<yyyymmdd>-<n>.

    ``items`` may carry initial lines as dicts with product_variation_id,
    quantity and optional serial_numbers.
    """
    session = get_session(session)

    if from_location_id == to_location_id:
        raise ValidationError("Cannot transfer to the same location")
    _active_location(session, business_id, from_location_id)
    _active_location(session, business_id, to_location_id)

    transfer_number = next_document_number(
        business_id, from_location_id, SEQUENCE_TRANSFER, session=session
    )

    transfer = Transfer(
        business_id=business_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        transfer_number=transfer_number,
        status=STATUS_DRAFT,
        notes=notes,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(transfer)
    session.flush()

    for item in items or []:
        add_transfer_item(
            transfer.id,
            item.get("product_variation_id"),
            item.get("quantity"),
            serial_numbers=item.get("serial_numbers"),
            session=session,
        )

    current_app.logger.info(
        "Transfer %s (%s) created: location %s -> %s",
        transfer.id, transfer_number, from_location_id, to_location_id,
    )
    return transfer


def add_transfer_item(
    transfer_id: int,
    variation_id: int,
    quantity,
    *,
    serial_numbers: list[str] | None = None,
    session=None,
) -> TransferItem:
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)

    if transfer.status != STATUS_DRAFT:
        raise TransferNotEditable(f"Cannot add items to transfer in {transfer.status} status")

    qty = to_quantity(quantity)
    if qty <= 0:
        raise InvalidQuantity("quantity must be positive")

    validate_stock_key(transfer.business_id, variation_id, transfer.from_location_id, session=session)

    if any(i.product_variation_id == variation_id for i in transfer.items):
        raise ValidationError(f"product variation {variation_id} is already on this transfer")

    variation = session.get(ProductVariation, variation_id)
    serials = _normalize_serials(serial_numbers, "serial_numbers")
    if variation.is_serialized:
        if len(serials) != _serial_count(qty, "quantity"):
            raise ValidationError("serialized items need exactly one serial number per unit")
    elif serials:
        raise ValidationError(f"product variation {variation_id} is not serialized")

    item = TransferItem(
        transfer=transfer,
        product_variation_id=variation_id,
        quantity=qty,
        serial_numbers=serials or None,
    )
    session.add(item)
    session.flush()
    return item


def remove_transfer_item(transfer_id: int, item_id: int, *, session=None) -> None:
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)

    if transfer.status != STATUS_DRAFT:
        raise TransferNotEditable(f"Cannot remove items from transfer in {transfer.status} status")

    item = next((i for i in transfer.items if i.id == item_id), None)
    if item is None:
        raise UnknownReference(f"transfer item {item_id} not found")

    transfer.items.remove(item)
    session.flush()


def send_transfer(transfer_id: int, *, user_id: int | None = None, session=None) -> Transfer:
    """
    draft -> sent. Debits the source for every item or for none.

    Balances are locked in (variation, location) order and checked together;
    InsufficientStock lists every short item.
    """
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_SENT)

    if not transfer.items:
        raise ValidationError("Cannot send a transfer with no items")

    entries = [
        LedgerEntryInput(
            business_id=transfer.business_id,
            location_id=transfer.from_location_id,
            product_variation_id=item.product_variation_id,
            transaction_type=TXN_TRANSFER_OUT,
            quantity_change=-item.quantity,
            reference_type=REF_TRANSFER,
            reference_id=transfer.id,
            note=transfer.transfer_number,
            created_by_user_id=user_id,
        )
        for item in transfer.items
    ]
    rows = append_entries(entries, session=session)
    for item, row in zip(transfer.items, rows):
        item.out_entry_id = row.id

    transfer.stock_deducted = True
    transfer.sent_at = utcnow()
    transfer.sent_by_user_id = user_id
    _set_status(transfer, STATUS_SENT, user_id)
    session.flush()
    return transfer


def dispatch_transfer(transfer_id: int, *, user_id: int | None = None, session=None) -> Transfer:
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_IN_TRANSIT)

    transfer.in_transit_at = utcnow()
    _set_status(transfer, STATUS_IN_TRANSIT, user_id)
    session.flush()
    return transfer


def mark_arrived(transfer_id: int, *, user_id: int | None = None, session=None) -> Transfer:
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_VERIFYING)

    transfer.arrived_at = utcnow()
    _set_status(transfer, STATUS_VERIFYING, user_id)
    session.flush()
    return transfer


def verify_item(
    transfer_id: int,
    item_id: int,
    received_quantity,
    received_serial_numbers: list[str] | None = None,
    *,
    user_id: int | None = None,
    session=None,
) -> TransferItem:
    """
    Record what actually arrived for one item.

    The received quantity may differ from the requested one, including zero.
    For serialized products the received serials must number exactly the
    received quantity and come from the serials that were sent.
    """
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)

    if transfer.status != STATUS_VERIFYING:
        raise TransferNotEditable(f"Cannot verify items of transfer in {transfer.status} status")

    item = next((i for i in transfer.items if i.id == item_id), None)
    if item is None:
        raise UnknownReference(f"transfer item {item_id} not found")

    qty = to_quantity(received_quantity)
    if qty < 0:
        raise InvalidQuantity("received_quantity must not be negative")

    serials = _normalize_serials(received_serial_numbers, "received_serial_numbers")
    if item.serial_numbers:
        if len(serials) != _serial_count(qty, "received_quantity"):
            raise ValidationError("received serial numbers must match received_quantity")
        unknown = sorted(set(serials) - set(item.serial_numbers))
        if unknown:
            raise ValidationError(f"serial numbers not on this transfer: {', '.join(unknown)}")
    elif serials:
        raise ValidationError("item is not serialized")

    item.received_quantity = qty
    item.received_serial_numbers = serials or None
    item.verified = True
    item.verified_at = utcnow()
    session.flush()
    return item


def verify_transfer(transfer_id: int, *, user_id: int | None = None, session=None) -> Transfer:
    """
    verifying -> verified. Credits the destination with received quantities.

    Every item must be verified first; items received as zero write no entry.
    """
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_VERIFIED)

    unverified = [item.id for item in transfer.items if not item.verified]
    if unverified:
        raise IncompleteVerification(
            f"{len(unverified)} item(s) on transfer {transfer.transfer_number} are not verified",
            unverified_item_ids=unverified,
        )

    receiving = [item for item in transfer.items if item.received_quantity and item.received_quantity > 0]
    entries = [
        LedgerEntryInput(
            business_id=transfer.business_id,
            location_id=transfer.to_location_id,
            product_variation_id=item.product_variation_id,
            transaction_type=TXN_TRANSFER_IN,
            quantity_change=item.received_quantity,
            reference_type=REF_TRANSFER,
            reference_id=transfer.id,
            note=transfer.transfer_number,
            created_by_user_id=user_id,
            require_active=False,
        )
        for item in receiving
    ]
    rows = append_entries(entries, session=session)
    for item, row in zip(receiving, rows):
        item.in_entry_id = row.id

    transfer.verified_at = utcnow()
    transfer.verified_by_user_id = user_id
    _set_status(transfer, STATUS_VERIFIED, user_id)
    session.flush()
    return transfer


def complete_transfer(transfer_id: int, *, user_id: int | None = None, session=None) -> Transfer:
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_COMPLETED)

    transfer.completed_at = utcnow()
    transfer.completed_by_user_id = user_id
    _set_status(transfer, STATUS_COMPLETED, user_id)
    session.flush()
    return transfer


def cancel_transfer(
    transfer_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
    session=None,
) -> Transfer:
    """
    Cancel from draft, sent or in_transit.

    If the source was already debited, each item gets a compensating
    transfer_out_reversal entry. stock_deducted stays set as history;
    stock_reversed records the compensation.
    """
    session = get_session(session)
    transfer = _load_transfer(session, transfer_id)
    _assert_transition(transfer, STATUS_CANCELLED)

    if transfer.stock_deducted and not transfer.stock_reversed:
        entries = [
            LedgerEntryInput(
                business_id=transfer.business_id,
                location_id=transfer.from_location_id,
                product_variation_id=item.product_variation_id,
                transaction_type=TXN_TRANSFER_OUT_REVERSAL,
                quantity_change=item.quantity,
                reference_type=REF_TRANSFER,
                reference_id=transfer.id,
                note=f"cancel {transfer.transfer_number}",
                created_by_user_id=user_id,
                require_active=False,
            )
            for item in transfer.items
        ]
        rows = append_entries(entries, session=session)
        for item, row in zip(transfer.items, rows):
            item.reversal_entry_id = row.id
        transfer.stock_reversed = True

    transfer.cancelled_at = utcnow()
    transfer.cancelled_by_user_id = user_id
    transfer.cancellation_reason = reason
    _set_status(transfer, STATUS_CANCELLED, user_id)
    session.flush()
    return transfer


def get_transfer(transfer_id: int, *, session=None) -> Transfer:
    session = get_session(session)
    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise UnknownReference(f"transfer {transfer_id} not found")
    return transfer


def get_discrepancies(transfer: Transfer) -> list[dict]:
    """Verified items whose received quantity or serials differ from what was sent."""
    rows = []
    for item in transfer.items:
        if not item.verified:
            continue
        received = item.received_quantity if item.received_quantity is not None else ZERO
        missing = sorted(set(item.serial_numbers or []) - set(item.received_serial_numbers or []))
        if received == item.quantity and not missing:
            continue
        rows.append({
            "item_id": item.id,
            "product_variation_id": item.product_variation_id,
            "requested": quantity_to_str(item.quantity),
            "received": quantity_to_str(received),
            "difference": quantity_to_str(received - item.quantity),
            "missing_serial_numbers": missing,
        })
    return rows


def get_transfer_summary(transfer_id: int, *, session=None) -> dict:
    transfer = get_transfer(transfer_id, session=session)

    total_requested = sum((i.quantity for i in transfer.items), ZERO)
    total_received = sum((i.received_quantity or ZERO for i in transfer.items if i.verified), ZERO)

    data = transfer.to_dict(include_items=True)
    data["summary"] = {
        "item_count": len(transfer.items),
        "verified_count": sum(1 for i in transfer.items if i.verified),
        "total_requested": quantity_to_str(total_requested),
        "total_received": quantity_to_str(total_received),
        "allowed_transitions": sorted(ALLOWED_TRANSITIONS[transfer.status]),
    }
    data["discrepancies"] = get_discrepancies(transfer)
    return data


def list_transfers(
    *,
    business_id: int | None = None,
    status: str | None = None,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    location_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
    session=None,
) -> list[Transfer]:
    """``location_id`` matches either end of the transfer."""
    session = get_session(session)

    q = session.query(Transfer)
    if business_id is not None:
        q = q.filter(Transfer.business_id == business_id)
    if status is not None:
        if status not in STATUSES:
            raise ValidationError(f"unknown status: {status}")
        q = q.filter(Transfer.status == status)
    if from_location_id is not None:
        q = q.filter(Transfer.from_location_id == from_location_id)
    if to_location_id is not None:
        q = q.filter(Transfer.to_location_id == to_location_id)
    if location_id is not None:
        q = q.filter((Transfer.from_location_id == location_id) | (Transfer.to_location_id == location_id))

    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    return q.order_by(Transfer.created_at.desc(), Transfer.id.desc()).offset(offset).limit(limit).all()
