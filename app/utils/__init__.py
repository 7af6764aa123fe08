"""
Utility modules for the storefront.
"""
from .logging_config import setup_logging, get_logger
from .errors import (
    ErrorCode,
    error_response,
    exception_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    StorefrontError,
    ValidationError,
    NotFoundError,
    UserNotFoundError,
    CouponNotFoundError,
    RewardNotFoundError,
    RedemptionNotFoundError,
    IneligibleError,
    CouponIneligibleError,
    InsufficientPointsError,
    InvalidStatusTransitionError,
    ConcurrencyConflictError,
    UsageLimitConflictError,
    AdjustmentChangedError,
    DuplicateError,
    AuthorizationError,
    StorageError
)
