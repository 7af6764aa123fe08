"""
Loyalty rewards catalog, reward redemptions and the points transaction log.

Redemption lifecycle:

    PENDING --approve--> APPROVED --order confirmed--> USED
       |
       +----reject-----> REJECTED

Points are only deducted when a redemption is approved. An approved
redemption is a reserved discount that the next checkout may consume.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional
from ..extensions import db
from ..utils.exceptions import InvalidStatusTransitionError


# ==================== Enums ====================

class RewardType(str, Enum):
    """Types of redeemable rewards."""
    DISCOUNT = 'discount'             # value is money off the next order
    FREE_DELIVERY = 'free_delivery'   # shipping waived on the next order
    FREE_PRODUCT = 'free_product'     # fulfilled manually after the order
    CASHBACK = 'cashback'             # value credited as points after the order


class RedemptionStatus(str, Enum):
    """Status of a reward redemption."""
    PENDING = 'pending'
    APPROVED = 'approved'
    USED = 'used'
    REJECTED = 'rejected'

    def can_transition_to(self, target: 'RedemptionStatus') -> bool:
        return target in REDEMPTION_TRANSITIONS[self]


REDEMPTION_TRANSITIONS = {
    RedemptionStatus.PENDING: frozenset({RedemptionStatus.APPROVED, RedemptionStatus.REJECTED}),
    RedemptionStatus.APPROVED: frozenset({RedemptionStatus.USED}),
    RedemptionStatus.USED: frozenset(),
    RedemptionStatus.REJECTED: frozenset(),
}


class TransactionType(str, Enum):
    """Reasons recorded on points transactions."""
    PURCHASE = 'purchase'                 # Order completed (positive)
    REDEMPTION = 'redemption'             # Reward approved (negative)
    PROMOTION_BONUS = 'promotion_bonus'   # Tier upgrade bonus
    REFERRAL_BONUS = 'referral_bonus'     # Referred user signed up
    REWARD_CREDIT = 'reward_credit'       # Cashback reward credited


# ==================== Models ====================

class Reward(db.Model):
    """Catalog entry a user can spend points on."""
    __tablename__ = 'rewards'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(1000))

    reward_type = db.Column(db.String(30), nullable=False)
    points_cost = db.Column(db.Integer, nullable=False)
    value = db.Column(db.Numeric(10, 2), default=Decimal('0'), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    redemptions = db.relationship('RedeemedReward', backref='reward', lazy='dynamic')

    def __repr__(self):
        return f'<Reward {self.name}: {self.points_cost} pts>'

    @property
    def kind(self) -> Optional[RewardType]:
        try:
            return RewardType(self.reward_type)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'reward_type': self.reward_type,
            'points_cost': self.points_cost,
            'value': float(self.value or 0),
            'is_active': self.is_active,
        }


class RedeemedReward(db.Model):
    """
    A user's claim on a catalog reward.

    Status changes go through guarded UPDATEs in LoyaltyService and the usage
    ledger; assert_transition only validates the state machine.
    """
    __tablename__ = 'redeemed_rewards'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    reward_id = db.Column(db.Integer, db.ForeignKey('rewards.id'), nullable=False)

    status = db.Column(db.String(20), default=RedemptionStatus.PENDING.value, nullable=False)

    redeemed_at = db.Column(db.DateTime, default=datetime.utcnow)
    approved_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    used_at = db.Column(db.DateTime)
    used_order_reference = db.Column(db.String(100))

    user = db.relationship('User', backref=db.backref('redeemed_rewards', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_redeemed_rewards_user_status', 'user_id', 'status'),
    )

    def __repr__(self):
        return f'<RedeemedReward {self.id}: {self.status}>'

    @property
    def current_status(self) -> RedemptionStatus:
        return RedemptionStatus(self.status)

    def assert_transition(self, target: RedemptionStatus) -> None:
        """Raise InvalidStatusTransitionError unless target is reachable from the current status."""
        if not self.current_status.can_transition_to(target):
            raise InvalidStatusTransitionError('redemption', self.status, target.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'reward_id': self.reward_id,
            'status': self.status,
            'reward': self.reward.to_dict() if self.reward else None,
            'redeemed_at': self.redeemed_at.isoformat() if self.redeemed_at else None,
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'used_at': self.used_at.isoformat() if self.used_at else None,
            'used_order_reference': self.used_order_reference,
        }


class PointsTransaction(db.Model):
    """
    Append-only points log.

    amount is positive for earnings and negative for deductions;
    balance_after snapshots the user's balance once the row applied.
    """
    __tablename__ = 'points_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    transaction_type = db.Column(db.String(30), nullable=False)
    description = db.Column(db.String(500))
    reference_id = db.Column(db.String(100))  # Order reference, redemption ID, referred user
    balance_after = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship('User', backref=db.backref('points_transactions', lazy='dynamic'))

    def __repr__(self):
        return f'<PointsTransaction {self.id}: {self.amount} pts for user {self.user_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'amount': self.amount,
            'transaction_type': self.transaction_type,
            'description': self.description,
            'reference_id': self.reference_id,
            'balance_after': self.balance_after,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
