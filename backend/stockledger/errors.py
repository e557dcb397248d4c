# Overview: Error taxonomy for stock ledger operations.

"""
Every failure a caller can act on is a StockLedgerError subclass carrying a
stable ``code`` and the HTTP status the API answers with.

Validation failures abort the whole operation; the transaction wrapper rolls
back so no partial ledger effect survives. Drift between the cached balance
and the ledger is NOT an error: reconciliation returns it as a finding.
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for stock ledger failures."""

    code = "stock_ledger_error"
    http_status = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.details}


class ValidationError(StockLedgerError):
    """400-level input problem."""

    code = "validation_error"


class InvalidQuantity(StockLedgerError):
    """Quantity is zero, has the wrong sign, or is not a valid fixed-point value."""

    code = "invalid_quantity"


class UnknownReference(StockLedgerError):
    """A referenced record does not exist, is deleted, or belongs to another business."""

    code = "unknown_reference"
    http_status = 404


class InsufficientStock(StockLedgerError):
    """
    One or more items would take a balance below zero.

    ``shortages`` lists every failing item, not just the first one, so the
    caller can fix the whole request at once.
    """

    code = "insufficient_stock"
    http_status = 409

    def __init__(self, message: str, shortages: list[dict] | None = None):
        super().__init__(message, shortages=shortages or [])
        self.shortages = shortages or []


class IncompleteVerification(StockLedgerError):
    code = "incomplete_verification"
    http_status = 409

    def __init__(self, message: str, unverified_item_ids: list[int]):
        super().__init__(message, unverified_item_ids=unverified_item_ids)
        self.unverified_item_ids = unverified_item_ids


class InvalidStateTransition(StockLedgerError):
    code = "invalid_state_transition"
    http_status = 409

    def __init__(self, message: str, from_status: str | None = None, to_status: str | None = None):
        super().__init__(message, from_status=from_status, to_status=to_status)
        self.from_status = from_status
        self.to_status = to_status


class TransferNotEditable(StockLedgerError):
    """Item-level change attempted while the transfer is in the wrong status."""

    code = "transfer_not_editable"
    http_status = 409


class SequenceExhausted(StockLedgerError):
    code = "sequence_exhausted"
    http_status = 409


class OpeningStockExists(StockLedgerError):
    code = "opening_stock_exists"
    http_status = 409


class LedgerImmutableError(StockLedgerError):
    """Raised when code tries to update or delete a ledger entry."""

    code = "ledger_immutable"
    http_status = 500
