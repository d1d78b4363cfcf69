# backend/errors.py
"""Typed failures for the cart/transaction core.

Business conditions (wrong actor, locked cart, illegal transition) are raised as
MarketplaceError subclasses and mapped to JSON envelopes by the API layer. Only
StorageError represents an unexpected failure of the backing store.
"""
from typing import Optional


class MarketplaceError(Exception):
    """Base class for every failure the core reports to its callers."""

    code = "MARKETPLACE_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class NotFoundError(MarketplaceError):
    """Entity absent, or the caller is not a party to it.

    The two cases are deliberately indistinguishable so that callers cannot
    discover other users' transactions.
    """

    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(MarketplaceError):
    """Transition is not legal from the transaction's current status."""

    code = "INVALID_STATE"
    http_status = 409


class TransactionLockedError(MarketplaceError):
    """Mutation blocked because the transaction is pending or accepted."""

    code = "TRANSACTION_LOCKED"
    http_status = 409


class EmptyCartError(MarketplaceError):
    code = "EMPTY_CART"
    http_status = 400


class SelfTradeError(MarketplaceError):
    code = "SELF_TRADE"
    http_status = 400


class ValidationError(MarketplaceError):
    """Malformed input, e.g. a missing or oversized cancellation reason."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_response(self) -> dict:
        body = super().to_response()
        if self.field:
            body["error"]["field"] = self.field
        return body


class CardNotFoundError(MarketplaceError):
    """Import line names a card that is not in the catalog."""

    code = "CARD_NOT_FOUND"
    http_status = 404


class StorageError(MarketplaceError):
    """The backing store failed in a way no business rule accounts for."""

    code = "STORAGE_ERROR"
    http_status = 503

    def __init__(self, operation: str, detail: Optional[str] = None):
        super().__init__(f"Database {operation} failed")
        self.operation = operation
        self.detail = detail
