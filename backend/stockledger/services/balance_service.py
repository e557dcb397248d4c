# Overview: Service-layer reads for cached balances and ledger-derived balances.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..models import (
    LedgerEntry,
    Product,
    ProductVariation,
    VariationLocationBalance,
    active_only,
)
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import to_utc_z
from .concurrency import get_session


@dataclass(frozen=True)
class Availability:
    product_variation_id: int
    location_id: int
    requested: Decimal
    current: Decimal

    @property
    def available(self) -> bool:
        return self.current >= self.requested

    @property
    def shortage(self) -> Decimal:
        return max(self.requested - self.current, ZERO)

    def to_dict(self) -> dict:
        return {
            "product_variation_id": self.product_variation_id,
            "location_id": self.location_id,
            "requested": quantity_to_str(self.requested),
            "current": quantity_to_str(self.current),
            "available": self.available,
            "shortage": quantity_to_str(self.shortage),
        }


def get_balance(variation_id: int, location_id: int, *, session=None) -> Decimal:
    """Cached balance; zero when the key has never been touched."""
    session = get_session(session)
    qty = (
        session.query(VariationLocationBalance.qty_available)
        .filter_by(product_variation_id=variation_id, location_id=location_id)
        .scalar()
    )
    return qty if qty is not None else ZERO


def _ordered_entries(session, variation_id: int, location_id: int, as_of: datetime | None = None):
    q = session.query(LedgerEntry).filter(
        LedgerEntry.product_variation_id == variation_id,
        LedgerEntry.location_id == location_id,
    )
    if as_of is not None:
        q = q.filter(LedgerEntry.occurred_at <= as_of)
    return q.order_by(LedgerEntry.occurred_at.asc(), LedgerEntry.created_at.asc(), LedgerEntry.id.asc())


def reconstruct_balance(variation_id: int, location_id: int, as_of: datetime | None = None, *, session=None) -> Decimal:
    """
    Fold the ledger for one key, ignoring the cache.

    as_of is inclusive (occurred_at <= as_of). The fold is done in Decimal,
    never in float, so it matches the cache to the last digit.
    """
    session = get_session(session)
    total = ZERO
    for (change,) in _ordered_entries(session, variation_id, location_id, as_of).with_entities(
        LedgerEntry.quantity_change
    ):
        total += change
    return total


def get_location_balances(location_id: int, *, include_zero: bool = True, session=None) -> list[VariationLocationBalance]:
    session = get_session(session)
    q = session.query(VariationLocationBalance).filter(VariationLocationBalance.location_id == location_id)
    if not include_zero:
        q = q.filter(VariationLocationBalance.qty_available != ZERO)
    return q.order_by(VariationLocationBalance.product_variation_id.asc()).all()


def check_availability(items, location_id: int, *, session=None) -> list[Availability]:
    """
    Batch stock check against the cached balance.

    ``items`` is an iterable of (variation_id, quantity) pairs. Repeated
    variations are summed so a request cannot pass by splitting a line.
    Read-only: takes no locks, so the answer is advisory until an append
    re-checks it under lock.
    """
    session = get_session(session)
    requested: "OrderedDict[int, Decimal]" = OrderedDict()
    for variation_id, quantity in items:
        requested[variation_id] = requested.get(variation_id, ZERO) + to_quantity(quantity)

    return [
        Availability(
            product_variation_id=variation_id,
            location_id=location_id,
            requested=qty,
            current=get_balance(variation_id, location_id, session=session),
        )
        for variation_id, qty in requested.items()
    ]


def _stock_listing(session, business_id: int, location_id: int | None):
    q = (
        session.query(VariationLocationBalance)
        .join(ProductVariation, ProductVariation.id == VariationLocationBalance.product_variation_id)
        .join(Product, Product.id == ProductVariation.product_id)
        .filter(VariationLocationBalance.business_id == business_id)
    )
    q = active_only(active_only(q, ProductVariation), Product)
    if location_id is not None:
        q = q.filter(VariationLocationBalance.location_id == location_id)
    return q


def list_low_stock(business_id: int, threshold=None, location_id: int | None = None, *, session=None) -> list[VariationLocationBalance]:
    """
    Balances at or below ``threshold``.

    Without a threshold each product's own alert_quantity applies and
    products without one are skipped.
    """
    session = get_session(session)
    q = _stock_listing(session, business_id, location_id)
    if threshold is not None:
        q = q.filter(VariationLocationBalance.qty_available <= to_quantity(threshold))
    else:
        q = q.filter(
            Product.alert_quantity.isnot(None),
            VariationLocationBalance.qty_available <= Product.alert_quantity,
        )
    return q.order_by(
        VariationLocationBalance.qty_available.asc(),
        VariationLocationBalance.product_variation_id.asc(),
    ).all()


def list_zero_stock(business_id: int, location_id: int | None = None, *, session=None) -> list[VariationLocationBalance]:
    session = get_session(session)
    q = _stock_listing(session, business_id, location_id).filter(VariationLocationBalance.qty_available <= ZERO)
    return q.order_by(VariationLocationBalance.product_variation_id.asc()).all()


def balance_history(
    variation_id: int,
    location_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    session=None,
) -> list[dict]:
    """
    Running balance series in business-time order.

    ``running_balance`` follows occurred_at order; ``balance_after`` is what
    the entry recorded at append time. The two differ when entries were
    backdated.
    """
    session = get_session(session)
    running = ZERO
    points = []
    for entry in _ordered_entries(session, variation_id, location_id, end):
        running += entry.quantity_change
        if start is not None and entry.occurred_at < start:
            continue
        points.append({
            "entry_id": entry.id,
            "occurred_at": to_utc_z(entry.occurred_at),
            "transaction_type": entry.transaction_type,
            "quantity_change": quantity_to_str(entry.quantity_change),
            "running_balance": quantity_to_str(running),
            "balance_after": quantity_to_str(entry.balance_after),
            "reference_type": entry.reference_type,
            "reference_id": entry.reference_id,
        })
    return points
