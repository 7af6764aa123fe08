"""
Custom exceptions for storefront pricing logic.

These exceptions provide more specific error handling than generic Exception,
allowing for better error messages and appropriate HTTP status codes.
"""


class StorefrontError(Exception):
    """Base exception for all storefront business logic errors."""

    def __init__(self, message: str, code: str = "STOREFRONT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(StorefrontError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class NotFoundError(StorefrontError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class UserNotFoundError(NotFoundError):
    """User not found."""

    def __init__(self, identifier=None):
        super().__init__("User", identifier)


class CouponNotFoundError(NotFoundError):
    """No coupon matches the submitted code."""

    def __init__(self, code: str):
        super().__init__("Coupon")
        self.message = f"Invalid coupon code '{code}'"
        self.args = (self.message,)


class RewardNotFoundError(NotFoundError):
    """Reward missing from the catalog, or a redemption not owned by the user."""

    def __init__(self, identifier=None):
        super().__init__("Reward", identifier)


class RedemptionNotFoundError(NotFoundError):
    """Redemption request not found."""

    def __init__(self, identifier=None):
        super().__init__("Redemption", identifier)


class IneligibleError(StorefrontError):
    """A discount exists but cannot be applied to this order."""

    def __init__(self, reason: str, code: str = "NOT_ELIGIBLE"):
        self.reason = reason
        super().__init__(reason, code)


class CouponIneligibleError(IneligibleError):
    """Coupon exists but fails an eligibility rule."""

    def __init__(self, code: str, reason: str):
        self.coupon_code = code
        super().__init__(reason, "COUPON_NOT_ELIGIBLE")


class InsufficientPointsError(StorefrontError):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_POINTS")


class InvalidStatusTransitionError(StorefrontError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class ConcurrencyConflictError(StorefrontError):
    """Another checkout consumed a limited resource first."""

    def __init__(self, message: str, code: str = "CONCURRENCY_CONFLICT"):
        super().__init__(message, code)


class UsageLimitConflictError(ConcurrencyConflictError):
    """Guarded usage increment matched no row."""

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} {identifier} reached its usage limit during checkout"
        super().__init__(message, "USAGE_LIMIT_CONFLICT")


class AdjustmentChangedError(ConcurrencyConflictError):
    """Payable amount at commit differs from the previewed amount."""

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        message = f"Order total changed since preview. Expected: {expected}, Actual: {actual}"
        super().__init__(message, "ADJUSTMENT_CHANGED")


class DuplicateError(StorefrontError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class AuthorizationError(StorefrontError):
    """User not authorized for this operation."""

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, "AUTHORIZATION_ERROR")


class StorageError(StorefrontError):
    """Database failure. The original error is logged, never shown to the caller."""

    def __init__(self, message: str = "Storage operation failed", original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "DATABASE_ERROR")
