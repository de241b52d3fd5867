"""Error taxonomy for festival operations.

Every error carries the HTTP status the JSON layer answers with; the message
is safe to show to the caller.
"""
from __future__ import annotations


class MegaOfferError(Exception):
    """Base class for all festival domain errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MegaOfferError):
    """Raised for missing, malformed or out-of-range input."""

    status_code = 400


class AuthenticationError(MegaOfferError):
    """Raised when a user-scoped operation arrives without a session user."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(MegaOfferError):
    """Raised when the caller is not allowed to perform the operation."""

    status_code = 403


class NotFoundError(MegaOfferError):
    """Raised when a festival, tier, participant, entry or order is unknown."""

    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found.")


class ConflictError(MegaOfferError):
    """Raised when a write would duplicate a unique ledger row."""

    status_code = 409


class PaymentVerificationError(MegaOfferError):
    """Raised when a payment proof is missing or its signature does not match."""

    status_code = 400


class PaymentGatewayError(MegaOfferError):
    """Raised when the payment gateway cannot create a payment intent."""

    status_code = 502


class InternalError(MegaOfferError):
    """Raised for unexpected persistence failures."""

    status_code = 500

    def __init__(self, message: str = "Server error"):
        super().__init__(message)


__all__ = [
    "MegaOfferError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "PaymentVerificationError",
    "PaymentGatewayError",
    "InternalError",
]
