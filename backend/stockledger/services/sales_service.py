# Overview: Sales boundary; turns a finalized sale into invoice-numbered sale ledger entries.

from __future__ import annotations

from ..errors import InvalidQuantity, ValidationError
from ..models import Sale, SaleItem
from ..quantities import to_quantity
from ..time_utils import business_date, utcnow
from .concurrency import get_session
from .ledger_service import (
    REF_SALE,
    TXN_SALE,
    LedgerEntryInput,
    append_entries,
    parse_occurred_at,
    validate_stock_key,
)
from .sequence_service import SEQUENCE_INVOICE, next_document_number


def _parse_items(items) -> list[tuple]:
    if not items:
        raise ValidationError("a sale needs at least one item")
    parsed = []
    for raw in items:
        variation_id = raw.get("product_variation_id")
        if not isinstance(variation_id, int) or isinstance(variation_id, bool):
            raise ValidationError("product_variation_id must be an integer")
        qty = to_quantity(raw.get("quantity"))
        if qty <= 0:
            raise InvalidQuantity("sale quantities must be positive")
        parsed.append((variation_id, qty, raw.get("unit_price_cents")))
    return parsed


def finalize_sale(
    business_id: int,
    location_id: int,
    items: list[dict],
    *,
    user_id: int | None = None,
    occurred_at=None,
    session=None,
) -> Sale:
    """
    Record a final sale and debit stock for every item, or for none.

    The invoice number comes from the location's daily invoice sequence in the
    same transaction, so a rejected sale (e.g. InsufficientStock) rolls the
    number back along with everything else once the caller rolls back.
    """
    session = get_session(session)
    parsed = _parse_items(items)
    for variation_id, _, _ in parsed:
        validate_stock_key(business_id, variation_id, location_id, session=session)

    occurred = parse_occurred_at(occurred_at)
    invoice_number = next_document_number(
        business_id, location_id, SEQUENCE_INVOICE, business_date(occurred), session=session
    )

    sale = Sale(
        business_id=business_id,
        location_id=location_id,
        invoice_number=invoice_number,
        status="final",
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(sale)
    session.flush()

    sale_items = []
    for variation_id, qty, price in parsed:
        sale_item = SaleItem(
            sale=sale,
            product_variation_id=variation_id,
            quantity=qty,
            unit_price_cents=price,
        )
        session.add(sale_item)
        sale_items.append(sale_item)
    session.flush()

    rows = append_entries(
        [
            LedgerEntryInput(
                business_id=business_id,
                location_id=location_id,
                product_variation_id=variation_id,
                transaction_type=TXN_SALE,
                quantity_change=-qty,
                reference_type=REF_SALE,
                reference_id=sale.id,
                occurred_at=occurred,
                note=invoice_number,
                created_by_user_id=user_id,
            )
            for variation_id, qty, _ in parsed
        ],
        session=session,
    )
    for sale_item, row in zip(sale_items, rows):
        sale_item.ledger_entry_id = row.id
    session.flush()
    return sale
