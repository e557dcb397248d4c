# Overview: Pytest coverage for the sale, goods receipt, supplier return and customer return boundaries.

from datetime import date
from decimal import Decimal

import pytest

from stockledger.errors import (
    InsufficientStock,
    InvalidQuantity,
    InvalidStateTransition,
    UnknownReference,
    ValidationError,
)
from stockledger.models import LedgerEntry, Sale
from stockledger.services import balance_service, purchase_service, return_service, sales_service, sequence_service
from stockledger.services.concurrency import atomic
from stockledger.time_utils import utcnow


def _sell(db_session, variation, location, qty, **kwargs):
    with atomic(db_session):
        return sales_service.finalize_sale(
            variation.business_id,
            location.id,
            [{"product_variation_id": variation.id, "quantity": qty, "unit_price_cents": 1999}],
            **kwargs,
        )


def _approved_receipt(db_session, variation, location, qty="10"):
    with atomic(db_session):
        receipt = purchase_service.create_receipt(
            variation.business_id,
            location.id,
            [{"product_variation_id": variation.id, "quantity": qty, "unit_cost_cents": 450}],
            supplier_name="Threads Ltd",
        )
    with atomic(db_session):
        purchase_service.approve_receipt(receipt.id, user_id=7)
    return receipt


class TestSales:
    def test_sale_debits_stock_with_invoice_number(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10")

        sale = _sell(db_session, variation, location_a, "4", user_id=2)

        today = utcnow().date()
        assert sale.invoice_number == f"INV-{location_a.id:03d}-{today:%Y%m%d}-0001"
        assert sale.items[0].quantity == Decimal("4")
        entry = db_session.get(LedgerEntry, sale.items[0].ledger_entry_id)
        assert entry.transaction_type == "sale"
        assert entry.quantity_change == Decimal("-4")
        assert entry.reference_id == sale.id
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("6")

    def test_rejected_sale_leaves_no_trace(self, db_session, variation, variation_b, location_a, stock):
        stock(variation, location_a, "10")
        stock(variation_b, location_a, "1")
        scope_date = utcnow().date()

        with pytest.raises(InsufficientStock):
            with atomic(db_session):
                sales_service.finalize_sale(
                    variation.business_id,
                    location_a.id,
                    [
                        {"product_variation_id": variation.id, "quantity": "2"},
                        {"product_variation_id": variation_b.id, "quantity": "3"},
                    ],
                )

        assert db_session.query(Sale).count() == 0
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("10")
        assert sequence_service.get_current_value(variation.business_id, location_a.id, scope_date) == 0

        # the number that was rolled back is handed out to the next sale
        sale = _sell(db_session, variation, location_a, "1")
        assert sale.invoice_number.endswith("-0001")

    def test_backdated_sale_numbers_on_its_own_day(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10", occurred_at="2025-01-01T08:00:00Z")
        sale = _sell(db_session, variation, location_a, "1", occurred_at="2025-02-03T12:00:00Z")
        assert "-20250203-" in sale.invoice_number

    @pytest.mark.parametrize("item", [
        {"product_variation_id": "1", "quantity": "1"},
        {"product_variation_id": True, "quantity": "1"},
    ])
    def test_item_validation(self, db_session, location_a, item):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(location_a.business_id, location_a.id, [item])

    def test_non_positive_quantity(self, db_session, variation, location_a):
        with pytest.raises(InvalidQuantity):
            sales_service.finalize_sale(
                variation.business_id, location_a.id, [{"product_variation_id": variation.id, "quantity": "0"}]
            )

    def test_empty_sale(self, db_session, location_a):
        with pytest.raises(ValidationError):
            sales_service.finalize_sale(location_a.business_id, location_a.id, [])


class TestPurchases:
    def test_draft_has_no_stock_effect(self, db_session, variation, location_a):
        with atomic(db_session):
            receipt = purchase_service.create_receipt(
                variation.business_id,
                location_a.id,
                [{"product_variation_id": variation.id, "quantity": "12"}],
            )

        assert receipt.status == "draft"
        assert receipt.receipt_number.startswith(f"GRN-{location_a.id:03d}-")
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("0")

    def test_approve_once(self, db_session, variation, location_a):
        receipt = _approved_receipt(db_session, variation, location_a, "12")

        assert receipt.status == "approved"
        assert receipt.approved_by_user_id == 7
        entry = db_session.get(LedgerEntry, receipt.items[0].ledger_entry_id)
        assert entry.transaction_type == "purchase"
        assert entry.unit_cost_cents == 450
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("12")

        with pytest.raises(InvalidStateTransition):
            purchase_service.approve_receipt(receipt.id)
        db_session.rollback()
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("12")

    def test_unknown_receipt(self, db_session):
        with pytest.raises(UnknownReference):
            purchase_service.approve_receipt(4242)

    def test_receipt_for_foreign_location(self, db_session, variation, foreign_location):
        with pytest.raises(UnknownReference):
            purchase_service.create_receipt(
                variation.business_id,
                foreign_location.id,
                [{"product_variation_id": variation.id, "quantity": "1"}],
            )


class TestSupplierReturns:
    def test_return_within_receipt(self, db_session, variation, location_a):
        receipt = _approved_receipt(db_session, variation, location_a, "10")

        with atomic(db_session):
            rows = purchase_service.return_to_supplier(
                receipt.id, [{"product_variation_id": variation.id, "quantity": "4"}], note="damaged"
            )

        assert len(rows) == 1
        assert rows[0].transaction_type == "supplier_return"
        assert rows[0].quantity_change == Decimal("-4")
        assert rows[0].note == "damaged"
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("6")

    def test_cannot_exceed_remaining(self, db_session, variation, location_a):
        receipt = _approved_receipt(db_session, variation, location_a, "10")
        with atomic(db_session):
            purchase_service.return_to_supplier(receipt.id, [{"product_variation_id": variation.id, "quantity": "7"}])

        with pytest.raises(ValidationError):
            purchase_service.return_to_supplier(receipt.id, [{"product_variation_id": variation.id, "quantity": "4"}])

    def test_variation_not_on_receipt(self, db_session, variation, variation_b, location_a):
        receipt = _approved_receipt(db_session, variation, location_a)
        with pytest.raises(ValidationError):
            purchase_service.return_to_supplier(receipt.id, [{"product_variation_id": variation_b.id, "quantity": "1"}])

    def test_draft_cannot_be_returned(self, db_session, variation, location_a):
        with atomic(db_session):
            receipt = purchase_service.create_receipt(
                variation.business_id, location_a.id, [{"product_variation_id": variation.id, "quantity": "3"}]
            )
        with pytest.raises(ValidationError):
            purchase_service.return_to_supplier(receipt.id, [{"product_variation_id": variation.id, "quantity": "1"}])


class TestCustomerReturns:
    def test_return_restocks_sale_location(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10")
        sale = _sell(db_session, variation, location_a, "4")
        sale_item = sale.items[0]

        with atomic(db_session):
            customer_return = return_service.record_customer_return(
                sale.id, [{"sale_item_id": sale_item.id, "quantity": "1.5"}], reason="wrong size", user_id=4
            )

        assert customer_return.return_number.startswith(f"RET-{location_a.id:03d}-")
        entry = db_session.get(LedgerEntry, customer_return.items[0].ledger_entry_id)
        assert entry.transaction_type == "return"
        assert entry.quantity_change == Decimal("1.5")
        assert entry.reference_type == "customer_return"
        assert return_service.returned_quantity(sale_item.id) == Decimal("1.5")
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("7.5")

    def test_cannot_return_more_than_sold(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10")
        sale = _sell(db_session, variation, location_a, "4")
        sale_item_id = sale.items[0].id
        with atomic(db_session):
            return_service.record_customer_return(sale.id, [{"sale_item_id": sale_item_id, "quantity": "3"}])

        with pytest.raises(ValidationError):
            return_service.record_customer_return(
                sale.id,
                [{"sale_item_id": sale_item_id, "quantity": "1"}, {"sale_item_id": sale_item_id, "quantity": "0.5"}],
            )
        db_session.rollback()
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("9")

    def test_unknown_sale_and_item(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10")
        sale = _sell(db_session, variation, location_a, "1")

        with pytest.raises(UnknownReference):
            return_service.record_customer_return(9999, [{"sale_item_id": 1, "quantity": "1"}])
        db_session.rollback()
        with pytest.raises(UnknownReference):
            return_service.record_customer_return(sale.id, [{"sale_item_id": 9999, "quantity": "1"}])

    def test_return_numbers_are_sequential(self, db_session, variation, location_a, stock):
        stock(variation, location_a, "10")
        sale = _sell(db_session, variation, location_a, "4")
        sale_item_id = sale.items[0].id

        numbers = []
        for _ in range(2):
            with atomic(db_session):
                numbers.append(return_service.record_customer_return(
                    sale.id, [{"sale_item_id": sale_item_id, "quantity": "1"}]
                ).return_number)

        assert [n.rsplit("-", 1)[1] for n in numbers] == ["0001", "0002"]
        scope_date = date(int(numbers[0][8:12]), int(numbers[0][12:14]), int(numbers[0][14:16]))
        assert sequence_service.get_current_value(variation.business_id, location_a.id, scope_date, "return") == 2
