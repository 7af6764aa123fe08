"""
Database models for the storefront pricing engine.
Coupons, campaigns, loyalty rewards and the orders they adjust.
"""
from .user import User, LoyaltyTier
from .coupon import Coupon, CouponUsage, DiscountKind, normalize_coupon_code
from .campaign import Campaign, CampaignUsage, CampaignType
from .loyalty import (
    # Enums
    RewardType,
    RedemptionStatus,
    TransactionType,
    REDEMPTION_TRANSITIONS,
    # Models
    Reward,
    RedeemedReward,
    PointsTransaction,
)
from .order import Order, OrderAdjustment

__all__ = [
    'User',
    'LoyaltyTier',
    # Coupons
    'Coupon',
    'CouponUsage',
    'DiscountKind',
    'normalize_coupon_code',
    # Campaigns
    'Campaign',
    'CampaignUsage',
    'CampaignType',
    # Loyalty
    'RewardType',
    'RedemptionStatus',
    'TransactionType',
    'REDEMPTION_TRANSITIONS',
    'Reward',
    'RedeemedReward',
    'PointsTransaction',
    # Orders
    'Order',
    'OrderAdjustment',
]
