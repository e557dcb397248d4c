# Overview: Pytest coverage for the transfer state machine and its ledger effects.

"""
Transfer State Machine Tests

LIFECYCLE under test:
    draft -> sent -> in_transit -> verifying -> verified -> completed
    draft | sent | in_transit -> cancelled

Stock moves only on send (source debit), verify (destination credit) and
cancel-after-send (source reversal).
"""

from decimal import Decimal

import pytest

from stockledger.errors import (
    IncompleteVerification,
    InsufficientStock,
    InvalidQuantity,
    InvalidStateTransition,
    TransferNotEditable,
    UnknownReference,
    ValidationError,
)
from stockledger.models import LedgerEntry
from stockledger.services import balance_service, transfer_service
from stockledger.services.concurrency import atomic
from stockledger.time_utils import utcnow


def _draft(db_session, location_from, location_to, items):
    with atomic(db_session):
        transfer = transfer_service.create_transfer(
            location_from.business_id,
            location_from.id,
            location_to.id,
            user_id=7,
            items=items,
        )
    return transfer


def _to_verifying(db_session, transfer_id):
    with atomic(db_session):
        transfer_service.send_transfer(transfer_id, user_id=7)
    with atomic(db_session):
        transfer_service.dispatch_transfer(transfer_id, user_id=7)
    with atomic(db_session):
        transfer_service.mark_arrived(transfer_id, user_id=8)


def _entries(db_session, transfer, transaction_type):
    return db_session.query(LedgerEntry).filter_by(
        reference_type="transfer",
        reference_id=transfer.id,
        transaction_type=transaction_type,
    ).all()


class TestCreate:
    def test_numbered_from_transfer_sequence(self, db_session, variation, location_a, location_b):
        transfer = _draft(db_session, location_a, location_b, [])

        today = utcnow().date()
        assert transfer.status == "draft"
        assert transfer.transfer_number == f"TR-{location_a.id:03d}-{today:%Y%m%d}-0001"

        second = _draft(db_session, location_a, location_b, [])
        assert second.transfer_number.endswith("-0002")

    def test_same_location_rejected(self, db_session, location_a):
        with pytest.raises(ValidationError):
            _draft(db_session, location_a, location_a, [])

    def test_cross_business_rejected(self, db_session, location_a, foreign_location):
        with pytest.raises(UnknownReference):
            _draft(db_session, location_a, foreign_location, [])

    def test_items_are_validated(self, db_session, variation, location_a, location_b):
        with pytest.raises(InvalidQuantity):
            _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "0"}])

        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "2"}])
        with pytest.raises(ValidationError):
            transfer_service.add_transfer_item(transfer.id, variation.id, "1")

    def test_remove_item_in_draft(self, db_session, variation, variation_b, location_a, location_b):
        transfer = _draft(db_session, location_a, location_b, [
            {"product_variation_id": variation.id, "quantity": "1"},
            {"product_variation_id": variation_b.id, "quantity": "1"},
        ])
        item_id = transfer.items[0].id

        with atomic(db_session):
            transfer_service.remove_transfer_item(transfer.id, item_id)

        assert [i.product_variation_id for i in transfer_service.get_transfer(transfer.id).items] == [variation_b.id]
        with pytest.raises(UnknownReference):
            transfer_service.remove_transfer_item(transfer.id, item_id)


class TestLifecycle:
    def test_full_lifecycle_with_short_receipt(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "50")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "20"}])

        # draft -> sent debits the source
        with atomic(db_session):
            transfer_service.send_transfer(transfer.id, user_id=7)
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("30")
        out = _entries(db_session, transfer, "transfer_out")
        assert [e.quantity_change for e in out] == [Decimal("-20")]
        assert transfer.stock_deducted is True
        assert transfer.sent_by_user_id == 7
        assert transfer.items[0].out_entry_id == out[0].id

        with atomic(db_session):
            transfer_service.dispatch_transfer(transfer.id)
        with atomic(db_session):
            transfer_service.mark_arrived(transfer.id)
        assert transfer.status == "verifying"
        assert transfer.arrived_at is not None

        # 18 of 20 arrived
        item = transfer.items[0]
        with atomic(db_session):
            transfer_service.verify_item(transfer.id, item.id, "18", user_id=8)
        with atomic(db_session):
            transfer_service.verify_transfer(transfer.id, user_id=8)

        assert balance_service.get_balance(variation.id, location_b.id) == Decimal("18")
        incoming = _entries(db_session, transfer, "transfer_in")
        assert [e.quantity_change for e in incoming] == [Decimal("18")]
        assert transfer.status == "verified"

        summary = transfer_service.get_transfer_summary(transfer.id)
        assert summary["discrepancies"] == [{
            "item_id": item.id,
            "product_variation_id": variation.id,
            "requested": "20",
            "received": "18",
            "difference": "-2",
            "missing_serial_numbers": [],
        }]
        assert summary["summary"]["total_requested"] == "20"
        assert summary["summary"]["total_received"] == "18"
        assert summary["summary"]["allowed_transitions"] == ["completed"]

        with atomic(db_session):
            transfer_service.complete_transfer(transfer.id, user_id=8)
        assert transfer.status == "completed"
        assert transfer.completed_at is not None

        # No stock effect on completion; the discrepancy stays visible
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("30")
        assert balance_service.get_balance(variation.id, location_b.id) == Decimal("18")

    def test_verify_after_product_deleted(self, db_session, variation, product, location_a, location_b, stock):
        stock(variation, location_a, "50")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "20"}])
        _to_verifying(db_session, transfer.id)
        product.mark_deleted()
        db_session.commit()

        with atomic(db_session):
            transfer_service.verify_item(transfer.id, transfer.items[0].id, "20")
        with atomic(db_session):
            transfer_service.verify_transfer(transfer.id)

        assert transfer.status == "verified"
        assert balance_service.get_balance(variation.id, location_b.id) == Decimal("20")

        # New stock still cannot be booked against the deleted product
        with pytest.raises(UnknownReference):
            _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "1"}])

    def test_send_is_all_or_nothing(self, db_session, variation, variation_b, location_a, location_b, stock):
        stock(variation, location_a, "5")
        stock(variation_b, location_a, "1")
        transfer = _draft(db_session, location_a, location_b, [
            {"product_variation_id": variation.id, "quantity": "6"},
            {"product_variation_id": variation_b.id, "quantity": "3"},
        ])

        with pytest.raises(InsufficientStock) as exc:
            with atomic(db_session):
                transfer_service.send_transfer(transfer.id)

        assert sorted(s["product_variation_id"] for s in exc.value.shortages) == sorted([variation.id, variation_b.id])
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("5")
        assert balance_service.get_balance(variation_b.id, location_a.id) == Decimal("1")
        assert transfer_service.get_transfer(transfer.id).status == "draft"
        assert _entries(db_session, transfer, "transfer_out") == []

    def test_empty_transfer_cannot_be_sent(self, db_session, location_a, location_b):
        transfer = _draft(db_session, location_a, location_b, [])
        with pytest.raises(ValidationError):
            transfer_service.send_transfer(transfer.id)

    def test_verify_requires_every_item(self, db_session, variation, variation_b, location_a, location_b, stock):
        stock(variation, location_a, "5")
        stock(variation_b, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [
            {"product_variation_id": variation.id, "quantity": "1"},
            {"product_variation_id": variation_b.id, "quantity": "1"},
        ])
        _to_verifying(db_session, transfer.id)

        first, second = transfer.items
        with atomic(db_session):
            transfer_service.verify_item(transfer.id, first.id, "1")

        with pytest.raises(IncompleteVerification) as exc:
            with atomic(db_session):
                transfer_service.verify_transfer(transfer.id)
        assert exc.value.unverified_item_ids == [second.id]
        assert transfer_service.get_transfer(transfer.id).status == "verifying"
        assert balance_service.get_balance(variation.id, location_b.id) == Decimal("0")

    def test_received_zero_writes_no_entry(self, db_session, variation, variation_b, location_a, location_b, stock):
        stock(variation, location_a, "5")
        stock(variation_b, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [
            {"product_variation_id": variation.id, "quantity": "2"},
            {"product_variation_id": variation_b.id, "quantity": "2"},
        ])
        _to_verifying(db_session, transfer.id)

        first, second = transfer.items
        with atomic(db_session):
            transfer_service.verify_item(transfer.id, first.id, "0")
            transfer_service.verify_item(transfer.id, second.id, "2")
        with atomic(db_session):
            transfer_service.verify_transfer(transfer.id)

        incoming = _entries(db_session, transfer, "transfer_in")
        assert [e.product_variation_id for e in incoming] == [variation_b.id]
        assert first.in_entry_id is None
        assert balance_service.get_balance(variation.id, location_b.id) == Decimal("0")

    def test_negative_received_quantity(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "2"}])
        _to_verifying(db_session, transfer.id)

        with pytest.raises(InvalidQuantity):
            transfer_service.verify_item(transfer.id, transfer.items[0].id, "-1")


class TestTransitions:
    def test_can_transition_table(self):
        assert transfer_service.can_transition("draft", "sent")
        assert transfer_service.can_transition("in_transit", "cancelled")
        assert not transfer_service.can_transition("verifying", "cancelled")
        assert not transfer_service.can_transition("completed", "draft")
        assert not transfer_service.can_transition("draft", "verified")

    def test_skipping_states_is_rejected(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "1"}])

        with pytest.raises(InvalidStateTransition) as exc:
            transfer_service.mark_arrived(transfer.id)
        assert exc.value.from_status == "draft"
        assert exc.value.to_status == "verifying"

        with pytest.raises(InvalidStateTransition):
            transfer_service.complete_transfer(transfer.id)

    def test_no_double_send(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "1"}])
        with atomic(db_session):
            transfer_service.send_transfer(transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.send_transfer(transfer.id)
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("4")

    def test_items_frozen_after_draft(self, db_session, variation, variation_b, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "1"}])
        with atomic(db_session):
            transfer_service.send_transfer(transfer.id)

        with pytest.raises(TransferNotEditable):
            transfer_service.add_transfer_item(transfer.id, variation_b.id, "1")
        with pytest.raises(TransferNotEditable):
            transfer_service.remove_transfer_item(transfer.id, transfer.items[0].id)
        with pytest.raises(TransferNotEditable):
            transfer_service.verify_item(transfer.id, transfer.items[0].id, "1")

    def test_cannot_cancel_once_verifying(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "1"}])
        _to_verifying(db_session, transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.cancel_transfer(transfer.id, reason="too late")


class TestCancel:
    def test_cancel_draft_has_no_ledger_effect(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "5")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "2"}])

        with atomic(db_session):
            transfer_service.cancel_transfer(transfer.id, user_id=9, reason="not needed")

        assert transfer.status == "cancelled"
        assert transfer.stock_reversed is False
        assert transfer.cancellation_reason == "not needed"
        assert db_session.query(LedgerEntry).count() == 1

    @pytest.mark.parametrize("dispatched", [False, True])
    def test_cancel_after_send_restores_source(self, db_session, variation, location_a, location_b, stock, dispatched):
        stock(variation, location_a, "50")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "20"}])
        with atomic(db_session):
            transfer_service.send_transfer(transfer.id)
        if dispatched:
            with atomic(db_session):
                transfer_service.dispatch_transfer(transfer.id)

        with atomic(db_session):
            transfer_service.cancel_transfer(transfer.id, user_id=9, reason="truck broke down")

        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("50")
        assert balance_service.reconstruct_balance(variation.id, location_a.id) == Decimal("50")
        reversal = _entries(db_session, transfer, "transfer_out_reversal")
        assert [e.quantity_change for e in reversal] == [Decimal("20")]
        assert transfer.items[0].reversal_entry_id == reversal[0].id
        assert transfer.stock_deducted is True
        assert transfer.stock_reversed is True
        assert transfer.cancelled_by_user_id == 9

        with pytest.raises(InvalidStateTransition):
            transfer_service.cancel_transfer(transfer.id)

    def test_cancel_after_variation_deleted(self, db_session, variation, location_a, location_b, stock):
        stock(variation, location_a, "50")
        transfer = _draft(db_session, location_a, location_b, [{"product_variation_id": variation.id, "quantity": "20"}])
        with atomic(db_session):
            transfer_service.send_transfer(transfer.id)
        variation.mark_deleted()
        db_session.commit()

        with atomic(db_session):
            transfer_service.cancel_transfer(transfer.id, reason="discontinued")

        assert transfer.status == "cancelled"
        assert balance_service.get_balance(variation.id, location_a.id) == Decimal("50")
        assert len(_entries(db_session, transfer, "transfer_out_reversal")) == 1


class TestSerials:
    def test_serial_count_must_match_quantity(self, db_session, serialized_variation, location_a, location_b):
        with pytest.raises(ValidationError):
            _draft(db_session, location_a, location_b, [{
                "product_variation_id": serialized_variation.id,
                "quantity": "2",
                "serial_numbers": ["SN-1"],
            }])

    def test_non_serialized_refuses_serials(self, db_session, variation, location_a, location_b):
        with pytest.raises(ValidationError):
            _draft(db_session, location_a, location_b, [{
                "product_variation_id": variation.id,
                "quantity": "1",
                "serial_numbers": ["SN-1"],
            }])

    def test_received_serials_drawn_from_sent(self, db_session, serialized_variation, location_a, location_b, stock):
        stock(serialized_variation, location_a, "3")
        transfer = _draft(db_session, location_a, location_b, [{
            "product_variation_id": serialized_variation.id,
            "quantity": "3",
            "serial_numbers": ["SN-1", "SN-2", "SN-3"],
        }])
        _to_verifying(db_session, transfer.id)
        item = transfer.items[0]

        with pytest.raises(ValidationError):
            transfer_service.verify_item(transfer.id, item.id, "2", ["SN-1", "SN-9"])
        with pytest.raises(ValidationError):
            transfer_service.verify_item(transfer.id, item.id, "2", ["SN-1"])

        with atomic(db_session):
            transfer_service.verify_item(transfer.id, item.id, "2", ["SN-1", "SN-3"])
        with atomic(db_session):
            transfer_service.verify_transfer(transfer.id)

        summary = transfer_service.get_transfer_summary(transfer.id)
        assert summary["discrepancies"][0]["missing_serial_numbers"] == ["SN-2"]
        assert balance_service.get_balance(serialized_variation.id, location_b.id) == Decimal("2")


class TestListing:
    def test_filters(self, db_session, location_a, location_b, foreign_location):
        first = _draft(db_session, location_a, location_b, [])
        second = _draft(db_session, location_b, location_a, [])
        with atomic(db_session):
            transfer_service.cancel_transfer(second.id)

        assert {t.id for t in transfer_service.list_transfers(business_id=location_a.business_id)} == {first.id, second.id}
        assert [t.id for t in transfer_service.list_transfers(status="cancelled")] == [second.id]
        assert [t.id for t in transfer_service.list_transfers(from_location_id=location_a.id)] == [first.id]
        assert {t.id for t in transfer_service.list_transfers(location_id=location_a.id)} == {first.id, second.id}
        assert transfer_service.list_transfers(business_id=foreign_location.business_id) == []

        with pytest.raises(ValidationError):
            transfer_service.list_transfers(status="lost")

    def test_numbering_is_per_source_location(self, db_session, location_a, location_b):
        first = _draft(db_session, location_a, location_b, [])
        second = _draft(db_session, location_b, location_a, [])
        assert first.transfer_number.startswith("TR-")
        assert first.transfer_number.endswith("-0001")
        assert second.transfer_number.endswith("-0001")
        assert first.transfer_number.split("-")[2] == second.transfer_number.split("-")[2]
