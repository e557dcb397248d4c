# Overview: Purchasing boundary; goods receipts post purchase entries once, supplier returns post them back.

"""
LIFECYCLE:
    draft -> approved

Draft receipts have no stock effect. Approval writes one purchase entry per
item and cannot be repeated. Supplier returns are booked against an approved
receipt and may not exceed what it brought in.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import InvalidQuantity, InvalidStateTransition, UnknownReference, ValidationError
from ..models import LedgerEntry, PurchaseReceipt, PurchaseReceiptItem
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import utcnow
from .concurrency import get_session, lock_for_update
from .ledger_service import (
    REF_PURCHASE_RECEIPT,
    TXN_PURCHASE,
    TXN_SUPPLIER_RETURN,
    LedgerEntryInput,
    append_entries,
    validate_stock_key,
)
from .sequence_service import SEQUENCE_RECEIPT, next_document_number


RECEIPT_STATUS_DRAFT = "draft"
RECEIPT_STATUS_APPROVED = "approved"


def _load_receipt(session, receipt_id: int) -> PurchaseReceipt:
    receipt = lock_for_update(session.query(PurchaseReceipt).filter_by(id=receipt_id)).one_or_none()
    if receipt is None:
        raise UnknownReference(f"purchase receipt {receipt_id} not found")
    return receipt


def create_receipt(
    business_id: int,
    location_id: int,
    items: list[dict],
    *,
    supplier_name: str | None = None,
    user_id: int | None = None,
    session=None,
) -> PurchaseReceipt:
    """Create a draft receipt numbered GRN-<loc>-<yyyymmdd>-<n>."""
    session = get_session(session)
    if not items:
        raise ValidationError("a receipt needs at least one item")

    lines = []
    for raw in items:
        variation_id = raw.get("product_variation_id")
        qty = to_quantity(raw.get("quantity"))
        if qty <= 0:
            raise InvalidQuantity("received quantities must be positive")
        validate_stock_key(business_id, variation_id, location_id, session=session)
        lines.append((variation_id, qty, raw.get("unit_cost_cents")))

    receipt = PurchaseReceipt(
        business_id=business_id,
        location_id=location_id,
        receipt_number=next_document_number(business_id, location_id, SEQUENCE_RECEIPT, session=session),
        supplier_name=supplier_name,
        status=RECEIPT_STATUS_DRAFT,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(receipt)
    for variation_id, qty, cost in lines:
        session.add(PurchaseReceiptItem(
            receipt=receipt,
            product_variation_id=variation_id,
            quantity=qty,
            unit_cost_cents=cost,
        ))
    session.flush()
    return receipt


def approve_receipt(receipt_id: int, *, user_id: int | None = None, occurred_at=None, session=None) -> PurchaseReceipt:
    session = get_session(session)
    receipt = _load_receipt(session, receipt_id)

    if receipt.status != RECEIPT_STATUS_DRAFT:
        raise InvalidStateTransition(
            f"Cannot approve receipt {receipt.receipt_number} in {receipt.status} status",
            from_status=receipt.status,
            to_status=RECEIPT_STATUS_APPROVED,
        )

    rows = append_entries(
        [
            LedgerEntryInput(
                business_id=receipt.business_id,
                location_id=receipt.location_id,
                product_variation_id=item.product_variation_id,
                transaction_type=TXN_PURCHASE,
                quantity_change=item.quantity,
                reference_type=REF_PURCHASE_RECEIPT,
                reference_id=receipt.id,
                unit_cost_cents=item.unit_cost_cents,
                occurred_at=occurred_at,
                note=receipt.receipt_number,
                created_by_user_id=user_id,
            )
            for item in receipt.items
        ],
        session=session,
    )
    for item, row in zip(receipt.items, rows):
        item.ledger_entry_id = row.id

    receipt.status = RECEIPT_STATUS_APPROVED
    receipt.approved_at = utcnow()
    receipt.approved_by_user_id = user_id
    session.flush()

    current_app.logger.info("Receipt %s (%s) approved by user=%s", receipt.id, receipt.receipt_number, user_id)
    return receipt


def _returned_to_supplier(session, receipt: PurchaseReceipt) -> dict[int, Decimal]:
    rows = (
        session.query(LedgerEntry.product_variation_id, LedgerEntry.quantity_change)
        .filter(
            LedgerEntry.reference_type == REF_PURCHASE_RECEIPT,
            LedgerEntry.reference_id == receipt.id,
            LedgerEntry.transaction_type == TXN_SUPPLIER_RETURN,
        )
        .all()
    )
    returned: dict[int, Decimal] = {}
    for variation_id, change in rows:
        returned[variation_id] = returned.get(variation_id, ZERO) - change
    return returned


def return_to_supplier(
    receipt_id: int,
    items: list[dict],
    *,
    user_id: int | None = None,
    note: str | None = None,
    session=None,
) -> list[LedgerEntry]:
    """
    Send goods of an approved receipt back to the supplier.

    Each item is limited to the receipt quantity minus earlier supplier
    returns for the same variation.
    """
    session = get_session(session)
    receipt = _load_receipt(session, receipt_id)
    if receipt.status != RECEIPT_STATUS_APPROVED:
        raise ValidationError("only approved receipts can be returned to the supplier")
    if not items:
        raise ValidationError("a supplier return needs at least one item")

    received: dict[int, Decimal] = {}
    for item in receipt.items:
        received[item.product_variation_id] = received.get(item.product_variation_id, ZERO) + item.quantity
    already = _returned_to_supplier(session, receipt)

    requested: dict[int, Decimal] = {}
    for raw in items:
        variation_id = raw.get("product_variation_id")
        if variation_id not in received:
            raise ValidationError(f"product variation {variation_id} is not on receipt {receipt.receipt_number}")
        qty = to_quantity(raw.get("quantity"))
        if qty <= 0:
            raise InvalidQuantity("return quantities must be positive")
        requested[variation_id] = requested.get(variation_id, ZERO) + qty

    for variation_id, qty in requested.items():
        remaining = received[variation_id] - already.get(variation_id, ZERO)
        if qty > remaining:
            raise ValidationError(
                f"cannot return {quantity_to_str(qty)} of variation {variation_id}; "
                f"only {quantity_to_str(remaining)} remain on receipt {receipt.receipt_number}"
            )

    return append_entries(
        [
            LedgerEntryInput(
                business_id=receipt.business_id,
                location_id=receipt.location_id,
                product_variation_id=variation_id,
                transaction_type=TXN_SUPPLIER_RETURN,
                quantity_change=-qty,
                reference_type=REF_PURCHASE_RECEIPT,
                reference_id=receipt.id,
                note=note or receipt.receipt_number,
                created_by_user_id=user_id,
            )
            for variation_id, qty in requested.items()
        ],
        session=session,
    )
