"""
Typed failures raised by the cart, coupon, inventory and order services.

Services never raise HTTP exceptions. Each error class carries a stable
machine-readable ``code`` and a ``retryable`` flag; the translation to a
transport status lives in ``app.core.error_handlers``.
"""


class CommerceError(Exception):
    """Base class for every domain failure."""

    code: str = "commerce_error"
    retryable: bool = False

    def __init__(self, message: str | None = None):
        self.message = message or self.code.replace("_", " ").capitalize()
        super().__init__(self.message)


class NotFound(CommerceError):
    code = "not_found"


class Forbidden(CommerceError):
    code = "forbidden"


class InvalidState(CommerceError):
    code = "invalid_state"


class InvalidTransition(InvalidState):
    code = "invalid_transition"


class OutOfStock(CommerceError):
    code = "out_of_stock"


class LimitExceeded(CommerceError):
    code = "limit_exceeded"


class DuplicateCode(CommerceError):
    code = "duplicate_code"


class NotEligible(CommerceError):
    code = "not_eligible"


class Expired(CommerceError):
    code = "expired"


class UsageLimitReached(CommerceError):
    code = "usage_limit_reached"


class EmptyCart(CommerceError):
    code = "empty_cart"


class InvalidItem(CommerceError):
    code = "invalid_item"


class ValidationFailed(CommerceError):
    code = "validation_failed"


class Conflict(CommerceError):
    """Concurrent access could not be serialized in time. Safe to retry."""

    code = "conflict"
    retryable = True
