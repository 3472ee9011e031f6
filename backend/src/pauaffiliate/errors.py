"""Exception hierarchy for the marketplace.

Every error raised by a service derives from MarketplaceError so the API
layer can translate it to an HTTP response in one place.
"""

from decimal import Decimal


class MarketplaceError(Exception):
    """Base class for all marketplace errors."""


# ==================== ATTRIBUTION ====================


class AttributionError(MarketplaceError):
    """Referral binding is invalid or does not match the purchase."""


class MissingAttributionError(AttributionError):
    """No usable referral binding was presented."""

    def __init__(self, message: str = "No referral link found. Please use a valid referral link."):
        super().__init__(message)


class UnverifiedBusinessError(MarketplaceError):
    """Product belongs to a business that has not been verified."""


# ==================== LOOKUPS ====================


class NotFoundError(MarketplaceError):
    """Requested record does not exist."""


class ReferralCodeNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class SaleNotFoundError(NotFoundError):
    pass


class WithdrawalNotFoundError(NotFoundError):
    pass


class WalletNotFoundError(NotFoundError):
    pass


# ==================== PAYMENTS ====================


class PaymentError(MarketplaceError):
    """Base class for payment processor errors."""


class PaymentCancelledError(PaymentError):
    def __init__(self, message: str = "Payment cancelled by user"):
        super().__init__(message)


class PaymentFailedError(PaymentError):
    def __init__(self, status: str, message: str | None = None):
        self.status = status
        super().__init__(message or f"Payment failed with status: {status}")


class CheckoutUnavailableError(PaymentError):
    """Hosted checkout could not be opened."""


class VerificationError(PaymentError):
    """Processor did not corroborate a successful charge.

    ``definitive`` is True when the processor positively reported a failed
    charge, as opposed to an unreachable processor or a malformed reply.
    """

    def __init__(self, message: str, definitive: bool = False, processor_status: str | None = None):
        self.definitive = definitive
        self.processor_status = processor_status
        super().__init__(message)


# ==================== SETTLEMENT & WALLETS ====================


class AlreadySettledError(MarketplaceError):
    """Sale was already completed; callers treat this as a successful no-op."""

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} is already settled")


class InsufficientBalanceError(MarketplaceError):
    """Raised when a wallet cannot cover a debit."""

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance: required {required}, available {available}")


class ValidationError(MarketplaceError):
    """Input failed a business rule."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidStateTransitionError(MarketplaceError):
    pass


class PermissionDeniedError(MarketplaceError):
    pass
