# Overview: Customer returns boundary; puts sold goods back on the shelf through return entries.

from __future__ import annotations

from decimal import Decimal

from ..errors import InvalidQuantity, UnknownReference, ValidationError
from ..models import CustomerReturn, CustomerReturnItem, Sale
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import utcnow
from .concurrency import get_session, lock_for_update
from .ledger_service import REF_CUSTOMER_RETURN, TXN_RETURN, LedgerEntryInput, append_entries
from .sequence_service import SEQUENCE_RETURN, next_document_number


def returned_quantity(sale_item_id: int, *, session=None) -> Decimal:
    """Total already returned against one sale line."""
    session = get_session(session)
    quantities = (
        session.query(CustomerReturnItem.quantity)
        .filter(CustomerReturnItem.sale_item_id == sale_item_id)
        .all()
    )
    return sum((q for (q,) in quantities), ZERO)


def record_customer_return(
    sale_id: int,
    items: list[dict],
    *,
    reason: str | None = None,
    user_id: int | None = None,
    session=None,
) -> CustomerReturn:
    """
    Restock items of an earlier sale at the sale's location.

    ``items`` are dicts with sale_item_id and quantity. A line cannot be
    returned beyond what was sold minus earlier returns. The sale row is
    locked so two concurrent returns of the same sale cannot both pass that
    check.
    """
    session = get_session(session)
    sale = lock_for_update(session.query(Sale).filter_by(id=sale_id)).one_or_none()
    if sale is None:
        raise UnknownReference(f"sale {sale_id} not found")
    if not items:
        raise ValidationError("a return needs at least one item")

    sale_items = {item.id: item for item in sale.items}
    requested: dict[int, Decimal] = {}
    for raw in items:
        sale_item_id = raw.get("sale_item_id")
        if sale_item_id not in sale_items:
            raise UnknownReference(f"sale item {sale_item_id} not found on sale {sale.invoice_number}")
        qty = to_quantity(raw.get("quantity"))
        if qty <= 0:
            raise InvalidQuantity("return quantities must be positive")
        requested[sale_item_id] = requested.get(sale_item_id, ZERO) + qty

    for sale_item_id, qty in requested.items():
        sold = sale_items[sale_item_id].quantity
        remaining = sold - returned_quantity(sale_item_id, session=session)
        if qty > remaining:
            raise ValidationError(
                f"cannot return {quantity_to_str(qty)} of sale item {sale_item_id}; "
                f"only {quantity_to_str(remaining)} remain returnable"
            )

    customer_return = CustomerReturn(
        business_id=sale.business_id,
        location_id=sale.location_id,
        sale_id=sale.id,
        return_number=next_document_number(sale.business_id, sale.location_id, SEQUENCE_RETURN, session=session),
        reason=reason,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(customer_return)
    session.flush()

    return_items = []
    for sale_item_id, qty in requested.items():
        return_item = CustomerReturnItem(
            customer_return=customer_return,
            sale_item_id=sale_item_id,
            product_variation_id=sale_items[sale_item_id].product_variation_id,
            quantity=qty,
        )
        session.add(return_item)
        return_items.append(return_item)
    session.flush()

    rows = append_entries(
        [
            LedgerEntryInput(
                business_id=sale.business_id,
                location_id=sale.location_id,
                product_variation_id=item.product_variation_id,
                transaction_type=TXN_RETURN,
                quantity_change=item.quantity,
                reference_type=REF_CUSTOMER_RETURN,
                reference_id=customer_return.id,
                note=customer_return.return_number,
                created_by_user_id=user_id,
            )
            for item in return_items
        ],
        session=session,
    )
    for item, row in zip(return_items, rows):
        item.ledger_entry_id = row.id
    session.flush()
    return customer_return
