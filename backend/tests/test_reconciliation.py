# Overview: Pytest coverage for drift detection between cached balances and the ledger, and operator corrections.

from decimal import Decimal

import pytest
from sqlalchemy import update

from stockledger.errors import UnknownReference, ValidationError
from stockledger.models import LedgerEntry, StockCorrection, VariationLocationBalance
from stockledger.services import balance_service, reconciliation_service
from stockledger.services.concurrency import atomic
from stockledger.services.reconciliation_service import ReconciliationResult


def _tamper(db_session, variation, location, qty):
    """Edit the cached balance directly, the way a manual data patch would."""
    table = VariationLocationBalance.__table__
    db_session.execute(
        update(table)
        .where(table.c.product_variation_id == variation.id, table.c.location_id == location.id)
        .values(qty_available=Decimal(qty))
    )
    db_session.commit()


class TestReconcile:
    def test_consistent_key_is_ok(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")

        result = reconciliation_service.reconcile(variation.id, location_a.id)

        assert result.status == "ok"
        assert result.variance == Decimal("0")

    def test_manual_edit_is_reported_as_drift(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        _tamper(db_session, variation, location_a, "45")

        result = reconciliation_service.reconcile(variation.id, location_a.id)

        assert result.status == "drifted"
        assert result.cached == Decimal("45")
        assert result.derived == Decimal("50")
        assert result.variance == Decimal("-5")
        assert result.to_dict()["variance"] == "-5"

    def test_reconcile_never_corrects(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        _tamper(db_session, variation, location_a, "45")

        reconciliation_service.reconcile(variation.id, location_a.id)
        reconciliation_service.reconcile_location(location_a.id)

        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("45")
        assert db_session.query(LedgerEntry).count() == 1

    def test_variance_thresholds(self):
        small = ReconciliationResult(1, 1, cached=Decimal("99"), derived=Decimal("100"))
        assert small.variance_pct() == Decimal("1")
        assert not small.requires_investigation(Decimal("5"), Decimal("10"))

        large_pct = ReconciliationResult(1, 1, cached=Decimal("8"), derived=Decimal("10"))
        assert large_pct.requires_investigation(Decimal("5"), Decimal("10"))

        large_units = ReconciliationResult(1, 1, cached=Decimal("1000"), derived=Decimal("1011"))
        assert large_units.requires_investigation(Decimal("5"), Decimal("10"))

        from_nothing = ReconciliationResult(1, 1, cached=Decimal("3"), derived=Decimal("0"))
        assert from_nothing.variance_pct() is None


class TestReports:
    def test_location_report_summary(self, db_session, variation, variation_b, location_a, location_b, stock):
        stock(variation, location_a, "50")
        stock(variation_b, location_a, "20")
        stock(variation, location_b, "7")
        _tamper(db_session, variation, location_a, "45")
        _tamper(db_session, variation_b, location_a, "22")

        report = reconciliation_service.reconcile_location(location_a.id)
        summary = report.summary()

        assert summary["checked"] == 2
        assert summary["ok"] == 0
        assert summary["drifted"] == 2
        assert summary["overages"] == 1
        assert summary["shortages"] == 1
        assert summary["total_absolute_variance"] == "7"
        # -5 of 50 is 10 %, +2 of 20 is 10 %: both above the 5 % default
        assert summary["requires_investigation"] == 2

    def test_business_report_and_drifted_only(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "50")
        stock(variation, location_b, "10")
        _tamper(db_session, variation, location_b, "9")

        report = reconciliation_service.reconcile_business(variation.business_id)
        assert len(report.results) == 2

        body = report.to_dict(drifted_only=True)
        assert [r["location_id"] for r in body["results"]] == [location_b.id]
        assert body["summary"]["checked"] == 2

    def test_missing_balance_row_is_reported(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        db_session.execute(VariationLocationBalance.__table__.delete())
        db_session.commit()

        for report in (
            reconciliation_service.reconcile_location(location_a.id),
            reconciliation_service.reconcile_business(variation.business_id),
        ):
            summary = report.summary()
            assert summary["checked"] == 1
            assert summary["drifted"] == 1
            assert summary["shortages"] == 1
            assert report.results[0].variance == Decimal("-50")

    def test_unknown_location(self, db_session):
        with pytest.raises(UnknownReference):
            reconciliation_service.reconcile_location(99999)


class TestCorrectDrift:
    def test_resync_to_ledger(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        _tamper(db_session, variation, location_a, "45")

        with atomic(db_session):
            correction = reconciliation_service.correct_drift(
                variation.id, location_a.id, user_id=3, reason="cache patched by hand"
            )

        assert correction.cached_quantity == Decimal("45")
        assert correction.derived_quantity == Decimal("50")
        assert correction.target_quantity == Decimal("50")

        entry = db_session.get(LedgerEntry, correction.ledger_entry_id)
        assert entry.transaction_type == "correction"
        assert entry.quantity_change == Decimal("0")
        assert entry.balance_after == Decimal("50")
        assert entry.reference_type == "stock_correction"
        assert entry.reference_id == correction.id

        assert reconciliation_service.reconcile(variation.id, location_a.id).status == "ok"

    def test_physical_count_target(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")

        with atomic(db_session):
            correction = reconciliation_service.correct_drift(
                variation.id, location_a.id, reason="cycle count", target_quantity="47"
            )

        entry = db_session.get(LedgerEntry, correction.ledger_entry_id)
        assert entry.quantity_change == Decimal("-3")
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("47")
        assert balance_service.reconstruct_balance(variation.id, location_a.id) == Decimal("47")

    def test_nothing_to_correct(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        with pytest.raises(ValidationError):
            reconciliation_service.correct_drift(variation.id, location_a.id, reason="just checking")

    def test_reason_required(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "50")
        _tamper(db_session, variation, location_a, "45")
        with pytest.raises(ValidationError):
            reconciliation_service.correct_drift(variation.id, location_a.id, reason="  ")

    def test_negative_target_refused(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "5")
        with pytest.raises(ValidationError):
            reconciliation_service.correct_drift(
                variation.id, location_a.id, reason="count", target_quantity="-1"
            )
        db_session.rollback()
        assert db_session.query(StockCorrection).count() == 0
