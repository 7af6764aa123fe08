"""
Business logic services for the storefront pricing engine.
"""
from .eligibility import EligibilityContext, is_eligible, ineligibility_reason
from .discount_calculator import Contribution, compute
from .usage_ledger import UsageLedger
from .loyalty_service import LoyaltyService
from .stacking_service import (
    AdjustmentService,
    AppliedEntity,
    CheckoutContext,
    EntityKind,
    StackResult,
    STACKING_ORDER,
)
from .checkout_service import CheckoutService

__all__ = [
    'EligibilityContext',
    'is_eligible',
    'ineligibility_reason',
    'Contribution',
    'compute',
    'UsageLedger',
    'LoyaltyService',
    'AdjustmentService',
    'AppliedEntity',
    'CheckoutContext',
    'EntityKind',
    'StackResult',
    'STACKING_ORDER',
    'CheckoutService',
]
