# Overview: Domain exception hierarchy shared by services and routes.

"""
Error taxonomy for the stock ledger.

Every workflow raises one of these before or during its unit of work and
rolls the unit back; routes translate them into JSON error responses using
`http_status`.
"""

from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for expected, client-visible failures."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(StockLedgerError):
    """Referenced product, document or line item does not exist."""

    http_status = 404


class ValidationError(StockLedgerError):
    """400-level input problem (empty items, bad quantity, bad enum value)."""

    http_status = 400


class InvalidTransitionError(ValidationError):
    """Requested status change is not in the document's transition table."""

    def __init__(self, document: str, current: str, requested: str):
        super().__init__(
            f"Cannot move {document} from '{current}' to '{requested}'",
            details={"current_status": current, "requested_status": requested},
        )


class InsufficientStockError(StockLedgerError):
    """A negative delta would drive current_stock below zero."""

    http_status = 409

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OverReceiptError(StockLedgerError):
    """Purchase-order receipt exceeds the remaining ordered quantity."""

    http_status = 409

    def __init__(self, item_id: int, ordered: int, already_received: int, requested: int):
        super().__init__(
            f"Received quantity too high for item {item_id}: "
            f"{already_received + requested} > {ordered}",
            details={
                "item_id": item_id,
                "ordered": ordered,
                "already_received": already_received,
                "requested": requested,
            },
        )


class SequenceCollisionError(StockLedgerError):
    """Two document creations computed the same number."""

    http_status = 409


class StockLedgerViolation(RuntimeError):
    """current_stock was written outside the stock ledger."""
