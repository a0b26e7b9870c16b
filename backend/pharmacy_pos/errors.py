# Overview: Business-rule error taxonomy shared by the inventory, sales and purchase services.

"""
Every core operation either returns a result or raises exactly one of these
after rolling back its database transaction. None of them are retried; they
describe business conditions, not transient faults.

http_status is the status the JSON routes answer with.
"""


class PharmacyError(Exception):
    """Base class for caller-recoverable business-rule violations."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__, "details": self.details}


class ValidationError(PharmacyError, ValueError):
    """Missing or malformed required field (zero quantity, negative price, empty code)."""


class NotFoundError(PharmacyError):
    """A referenced entity (invoice, order, product, user) does not exist."""

    http_status = 404


class DuplicateCodeError(PharmacyError):
    """Invoice or purchase-order code already in use."""

    http_status = 409


class InsufficientStockError(PharmacyError):
    """A sale line exceeds the available quantity of its lot."""

    http_status = 422


class LotNotFoundError(PharmacyError):
    """No inventory lot matches the requested product/unit/batch/expiry."""

    http_status = 422


class OverpaymentError(PharmacyError):
    """Payment amount exceeds the remaining balance of a purchase order."""

    http_status = 422


class OrderLockedError(PharmacyError):
    """Mutation attempted on a fully paid purchase order."""

    http_status = 409
