"""
Eligibility rules for coupons, campaigns and redeemed rewards.

Everything here is read-only: the same checks run for checkout previews and
again when an order is committed.

Coupon and campaign rules, in the order they are reported:
1. active flag
2. validity window (now >= starts_at, now <= ends_at; a missing bound is open)
3. global usage limit (usage_count < usage_limit)
4. minimum purchase against the pre-discount order total
5. coupons only: prior uses by this user < usage_limit_per_user

Redeemed rewards are eligible only while APPROVED.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from ..models.coupon import Coupon
from ..models.campaign import Campaign
from ..models.loyalty import RedeemedReward, RedemptionStatus


@dataclass(frozen=True)
class EligibilityContext:
    """Order facts an entity is judged against."""
    order_total: Decimal
    user_id: int
    now: datetime = field(default_factory=datetime.utcnow)
    # Confirmed uses of the coupon under evaluation by this user
    prior_coupon_uses: int = 0


Evaluated = Union[Coupon, Campaign, RedeemedReward]


def is_eligible(entity: Evaluated, context: EligibilityContext) -> bool:
    """True when the entity may be applied to the order described by context."""
    return ineligibility_reason(entity, context) is None


def ineligibility_reason(entity: Evaluated, context: EligibilityContext) -> Optional[str]:
    """
    Explain why an entity cannot be applied.

    Returns:
        A customer-facing reason, or None when the entity is eligible
    """
    if isinstance(entity, Coupon):
        return _coupon_reason(entity, context)
    if isinstance(entity, Campaign):
        return _promotion_reason(entity, 'campaign', context)
    if isinstance(entity, RedeemedReward):
        return _reward_reason(entity)
    raise TypeError(f'Cannot evaluate eligibility of {type(entity).__name__}')


def _coupon_reason(coupon: Coupon, context: EligibilityContext) -> Optional[str]:
    reason = _promotion_reason(coupon, 'coupon', context)
    if reason:
        return reason

    limit = coupon.usage_limit_per_user
    if limit is not None and context.prior_coupon_uses >= limit:
        return f'You have already used this coupon the maximum number of times ({limit})'
    return None


def _promotion_reason(entity, label: str, context: EligibilityContext) -> Optional[str]:
    """Rules shared by coupons and campaigns."""
    if not entity.is_active:
        return f'This {label} is no longer active'

    if entity.starts_at is not None and context.now < entity.starts_at:
        return f'This {label} is not yet valid'
    if entity.ends_at is not None and context.now > entity.ends_at:
        return f'This {label} has expired'

    if entity.usage_limit is not None and (entity.usage_count or 0) >= entity.usage_limit:
        return f'This {label} has reached its usage limit'

    if entity.min_purchase is not None and context.order_total < Decimal(entity.min_purchase):
        return f'Minimum purchase of ${Decimal(entity.min_purchase):.2f} required'

    return None


def _reward_reason(redemption: RedeemedReward) -> Optional[str]:
    if redemption.status != RedemptionStatus.APPROVED.value:
        return f'Reward is {redemption.status}; only approved rewards can be applied'
    return None
