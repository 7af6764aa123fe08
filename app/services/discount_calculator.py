"""
Discount Calculator.

Turns one eligible coupon, campaign or redeemed reward plus a base amount
into a Contribution: money off, a free-shipping flag and a points multiplier.

Each entity family dispatches on a closed enum through a rule table. The
tables are checked against their enums at import time, so adding a variant
without a rule fails loudly instead of silently discounting nothing.
Stored type strings that do not parse into the enum contribute nothing.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Callable, Dict, Optional

from flask import current_app, has_app_context

from ..models.coupon import Coupon, DiscountKind
from ..models.campaign import Campaign, CampaignType
from ..models.loyalty import RedeemedReward, RewardType
from ..utils.exceptions import ValidationError

ZERO = Decimal('0')
ONE = Decimal('1')
HUNDRED = Decimal('100')
DEFAULT_MONEY_QUANTUM = Decimal('0.01')

# Buy-one-get-one is approximated as half off the base amount. It ignores line
# items entirely, so it is only exact for a cart of identical pairs.
BOGO_DISCOUNT_PERCENT = Decimal('50')


@dataclass(frozen=True)
class Contribution:
    """What a single entity adds to the stacked adjustment."""
    discount_amount: Decimal = ZERO
    free_shipping: bool = False
    points_multiplier: Decimal = ONE

    @property
    def is_empty(self) -> bool:
        return self.discount_amount <= ZERO and not self.free_shipping and self.points_multiplier <= ONE


NO_CONTRIBUTION = Contribution()


# ==================== Money helpers ====================

def money_quantum() -> Decimal:
    if has_app_context():
        return current_app.config.get('MONEY_QUANTUM', DEFAULT_MONEY_QUANTUM)
    return DEFAULT_MONEY_QUANTUM


def quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(money_quantum(), rounding=ROUND_HALF_UP)


def to_money(value, field: str = 'amount') -> Decimal:
    """
    Parse a caller-supplied amount.

    Raises:
        ValidationError: If the value is missing, not numeric or negative
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number', field)
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a number', field)
    if amount < ZERO:
        raise ValidationError(f'{field} cannot be negative', field)
    return quantize(amount)


def percentage_off(base: Decimal, percent, cap=None) -> Decimal:
    """base * percent / 100, clamped to cap when one is configured."""
    amount = quantize(base * Decimal(percent or 0) / HUNDRED)
    if cap is not None:
        amount = min(amount, quantize(Decimal(cap)))
    return max(amount, ZERO)


def fixed_off(base: Decimal, value) -> Decimal:
    """A flat amount, never more than the base."""
    return max(min(quantize(Decimal(value or 0)), base), ZERO)


# ==================== Rule tables ====================

def _kind_percentage(base, value, cap):
    return Contribution(discount_amount=percentage_off(base, value, cap))


def _kind_fixed(base, value, cap):
    return Contribution(discount_amount=fixed_off(base, value))


def _kind_free_shipping(base, value, cap):
    return Contribution(free_shipping=True)


DISCOUNT_KIND_RULES: Dict[DiscountKind, Callable[[Decimal, Decimal, Optional[Decimal]], Contribution]] = {
    DiscountKind.PERCENTAGE: _kind_percentage,
    DiscountKind.FIXED: _kind_fixed,
    DiscountKind.FREE_SHIPPING: _kind_free_shipping,
}


def _campaign_discount(campaign: Campaign, base: Decimal) -> Contribution:
    try:
        kind = DiscountKind(campaign.discount_kind)
    except ValueError:
        return NO_CONTRIBUTION
    return DISCOUNT_KIND_RULES[kind](base, campaign.discount_value, None)


def _campaign_free_shipping(campaign: Campaign, base: Decimal) -> Contribution:
    return Contribution(free_shipping=True)


def _campaign_points_multiplier(campaign: Campaign, base: Decimal) -> Contribution:
    return Contribution(points_multiplier=Decimal(campaign.points_multiplier or ONE))


def _campaign_bogo(campaign: Campaign, base: Decimal) -> Contribution:
    return Contribution(discount_amount=percentage_off(base, BOGO_DISCOUNT_PERCENT))


CAMPAIGN_RULES: Dict[CampaignType, Callable[[Campaign, Decimal], Contribution]] = {
    CampaignType.DISCOUNT: _campaign_discount,
    CampaignType.FREE_SHIPPING: _campaign_free_shipping,
    CampaignType.POINTS_MULTIPLIER: _campaign_points_multiplier,
    CampaignType.BOGO: _campaign_bogo,
}


def _reward_discount(redemption: RedeemedReward, base: Decimal) -> Contribution:
    return Contribution(discount_amount=fixed_off(base, redemption.reward.value))


def _reward_free_delivery(redemption: RedeemedReward, base: Decimal) -> Contribution:
    return Contribution(free_shipping=True)


def _reward_post_order(redemption: RedeemedReward, base: Decimal) -> Contribution:
    # Cashback and free products are settled after the order, not at checkout
    return NO_CONTRIBUTION


REWARD_RULES: Dict[RewardType, Callable[[RedeemedReward, Decimal], Contribution]] = {
    RewardType.DISCOUNT: _reward_discount,
    RewardType.FREE_DELIVERY: _reward_free_delivery,
    RewardType.FREE_PRODUCT: _reward_post_order,
    RewardType.CASHBACK: _reward_post_order,
}


def _require_exhaustive(enum_cls, rules: Dict) -> None:
    missing = set(enum_cls) - set(rules)
    if missing:
        names = ', '.join(sorted(m.name for m in missing))
        raise RuntimeError(f'No discount rule for {enum_cls.__name__}: {names}')


_require_exhaustive(DiscountKind, DISCOUNT_KIND_RULES)
_require_exhaustive(CampaignType, CAMPAIGN_RULES)
_require_exhaustive(RewardType, REWARD_RULES)


# ==================== Entry point ====================

def compute(entity, base_amount) -> Contribution:
    """
    Compute the contribution of one eligible entity.

    Args:
        entity: Coupon, Campaign or RedeemedReward (eligibility already checked)
        base_amount: Amount the discount is taken from. Coupons and rewards
            receive the raw order total, campaigns the total after personal
            discounts.

    Returns:
        Contribution for this entity
    """
    base = max(quantize(Decimal(base_amount)), ZERO)

    if isinstance(entity, Coupon):
        kind = entity.kind
        if kind is None:
            return NO_CONTRIBUTION
        return DISCOUNT_KIND_RULES[kind](base, entity.discount_value, entity.max_discount)

    if isinstance(entity, Campaign):
        kind = entity.kind
        if kind is None:
            return NO_CONTRIBUTION
        return CAMPAIGN_RULES[kind](entity, base)

    if isinstance(entity, RedeemedReward):
        kind = entity.reward.kind if entity.reward else None
        if kind is None:
            return NO_CONTRIBUTION
        return REWARD_RULES[kind](entity, base)

    raise TypeError(f'Cannot compute a discount for {type(entity).__name__}')
