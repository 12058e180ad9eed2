"""
Reconciliation error taxonomy.

The webhook route turns any ReconciliationError into a 500 with the error
envelope; the booking poller logs them and moves on to the next change.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for failures owned by the booking reconciliation core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class FetchFailure(ReconciliationError):
    """Listing bookings from Cal.com failed (network, auth or parse)."""


class NotFoundError(ReconciliationError):
    pass


class RelationNotFound(NotFoundError):
    def __init__(self, booking_uid: str):
        super().__init__(f"No payment relation found for booking {booking_uid}")
        self.booking_uid = booking_uid


class UserNotFound(NotFoundError):
    def __init__(self, email: Optional[str]):
        super().__init__(f"No user found with email {email}")
        self.email = email


class InvalidStateError(ReconciliationError):
    pass


class InvalidPaymentIntentId(InvalidStateError):
    def __init__(self, booking_uid: str, stripe_id: str):
        super().__init__(f"Invalid payment intent id '{stripe_id}' stored for booking {booking_uid}")
        self.booking_uid = booking_uid
        self.stripe_id = stripe_id


class GatewayError(ReconciliationError):
    """The payments provider rejected or could not process a refund."""

    def __init__(self, message: str, code: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
