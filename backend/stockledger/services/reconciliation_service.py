# Overview: Detects drift between cached balances and the ledger; corrects only on explicit request.

"""
Reconciliation compares the cached balance of a key with the fold of its
ledger entries.

- variance = cached - derived. Positive means the cache claims more stock
  than the ledger supports (overage), negative means less (shortage).
- Drift is a finding, never an exception. Nothing here writes unless an
  operator calls correct_drift.
- The ledger is the source of truth: by default a correction resyncs the
  cache to the ledger. A physical count may be supplied as the target instead,
  in which case the difference is booked as a correction entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import UnknownReference, ValidationError
from ..models import BusinessLocation, LedgerEntry, StockCorrection, VariationLocationBalance
from ..quantities import ZERO, quantity_to_str, to_quantity
from ..time_utils import utcnow
from .balance_service import get_balance, reconstruct_balance
from .concurrency import get_session
from .ledger_service import append_correction, lock_balances, validate_stock_key


STATUS_OK = "ok"
STATUS_DRIFTED = "drifted"


@dataclass(frozen=True)
class ReconciliationResult:
    product_variation_id: int
    location_id: int
    cached: Decimal
    derived: Decimal

    @property
    def variance(self) -> Decimal:
        return self.cached - self.derived

    @property
    def status(self) -> str:
        return STATUS_OK if self.variance == 0 else STATUS_DRIFTED

    def variance_pct(self) -> Decimal | None:
        if self.derived == 0:
            return None
        return (abs(self.variance) / abs(self.derived) * 100).quantize(Decimal("0.01"))

    def requires_investigation(self, pct_threshold: Decimal, units_threshold: Decimal) -> bool:
        if self.status == STATUS_OK:
            return False
        if abs(self.variance) >= units_threshold:
            return True
        pct = self.variance_pct()
        # Any drift against a zero ledger balance is suspicious
        return pct is None or pct >= pct_threshold

    def to_dict(self) -> dict:
        pct = self.variance_pct()
        return {
            "product_variation_id": self.product_variation_id,
            "location_id": self.location_id,
            "cached": quantity_to_str(self.cached),
            "derived": quantity_to_str(self.derived),
            "variance": quantity_to_str(self.variance),
            "variance_pct": str(pct) if pct is not None else None,
            "status": self.status,
        }


@dataclass
class ReconciliationReport:
    results: list[ReconciliationResult] = field(default_factory=list)
    pct_threshold: Decimal = Decimal("5")
    units_threshold: Decimal = Decimal("10")
    checked_at: object = None

    @property
    def drifted(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.status == STATUS_DRIFTED]

    def summary(self) -> dict:
        drifted = self.drifted
        return {
            "checked": len(self.results),
            "ok": len(self.results) - len(drifted),
            "drifted": len(drifted),
            "overages": sum(1 for r in drifted if r.variance > 0),
            "shortages": sum(1 for r in drifted if r.variance < 0),
            "total_absolute_variance": quantity_to_str(sum((abs(r.variance) for r in drifted), ZERO)),
            "requires_investigation": sum(
                1 for r in drifted if r.requires_investigation(self.pct_threshold, self.units_threshold)
            ),
        }

    def to_dict(self, *, drifted_only: bool = False) -> dict:
        rows = self.drifted if drifted_only else self.results
        return {
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "summary": self.summary(),
            "results": [r.to_dict() for r in rows],
        }


def _thresholds() -> tuple[Decimal, Decimal]:
    return (
        Decimal(str(current_app.config.get("RECONCILIATION_VARIANCE_PCT", "5"))),
        Decimal(str(current_app.config.get("RECONCILIATION_VARIANCE_UNITS", "10"))),
    )


def reconcile(variation_id: int, location_id: int, *, session=None) -> ReconciliationResult:
    """Compare cache and ledger fold for one key. Never corrects."""
    session = get_session(session)
    result = ReconciliationResult(
        product_variation_id=variation_id,
        location_id=location_id,
        cached=get_balance(variation_id, location_id, session=session),
        derived=reconstruct_balance(variation_id, location_id, session=session),
    )
    if result.status == STATUS_DRIFTED:
        current_app.logger.warning(
            "Balance drift variation=%s location=%s cached=%s derived=%s variance=%s",
            variation_id, location_id,
            quantity_to_str(result.cached), quantity_to_str(result.derived), quantity_to_str(result.variance),
        )
    return result


def _keys_for(session, column: str, value: int) -> list[tuple[int, int]]:
    """
    Every (variation_id, location_id) with a cached balance or a ledger entry.

    A key whose balance row is missing still has ledger history to check.
    """
    keys = set()
    for model in (VariationLocationBalance, LedgerEntry):
        rows = (
            session.query(model.product_variation_id, model.location_id)
            .filter(getattr(model, column) == value)
            .distinct()
            .all()
        )
        keys.update((variation_id, location_id) for variation_id, location_id in rows)
    return sorted(keys, key=lambda k: (k[1], k[0]))


def _report_for(session, keys) -> ReconciliationReport:
    pct, units = _thresholds()
    report = ReconciliationReport(pct_threshold=pct, units_threshold=units, checked_at=utcnow())
    for variation_id, location_id in keys:
        report.results.append(reconcile(variation_id, location_id, session=session))
    return report


def reconcile_location(location_id: int, *, session=None) -> ReconciliationReport:
    session = get_session(session)
    if session.get(BusinessLocation, location_id) is None:
        raise UnknownReference(f"location {location_id} not found")
    return _report_for(session, _keys_for(session, "location_id", location_id))


def reconcile_business(business_id: int, *, session=None) -> ReconciliationReport:
    session = get_session(session)
    return _report_for(session, _keys_for(session, "business_id", business_id))


def correct_drift(
    variation_id: int,
    location_id: int,
    *,
    user_id: int | None = None,
    reason: str,
    target_quantity=None,
    session=None,
) -> StockCorrection:
    """
    Explicit operator correction.

    Without a target the cache is resynced to the ledger: the correction
    entry carries a zero change and exists for the audit trail. With a target
    (a physical count) the entry carries target - derived and both ledger and
    cache end at the target. Refused when there is nothing to correct.
    """
    session = get_session(session)
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    location = session.get(BusinessLocation, location_id)
    if location is None:
        raise UnknownReference(f"location {location_id} not found")
    business_id = location.business_id
    validate_stock_key(business_id, variation_id, location_id, session=session)

    lock_balances(business_id, [(variation_id, location_id)], session=session)
    cached = get_balance(variation_id, location_id, session=session)
    derived = reconstruct_balance(variation_id, location_id, session=session)

    target = derived if target_quantity is None else to_quantity(target_quantity)
    if target < 0:
        raise ValidationError("target_quantity must not be negative")
    if cached == derived and target == derived:
        raise ValidationError("balance is already consistent with the ledger")

    correction = StockCorrection(
        business_id=business_id,
        location_id=location_id,
        product_variation_id=variation_id,
        reason=str(reason).strip(),
        cached_quantity=cached,
        derived_quantity=derived,
        target_quantity=target,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    session.add(correction)
    session.flush()

    entry = append_correction(
        business_id=business_id,
        variation_id=variation_id,
        location_id=location_id,
        quantity_change=target - derived,
        reference_id=correction.id,
        note=correction.reason[:255],
        user_id=user_id,
        session=session,
    )
    correction.ledger_entry_id = entry.id
    session.flush()
    return correction
