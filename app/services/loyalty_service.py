"""
Loyalty Service for the storefront.

Handles:
- Points accrual: every balance change goes through award(), which appends
  a PointsTransaction row and updates the user's running balance and
  cumulative spend in one UPDATE, then re-evaluates the tier
- Order points (spend x campaign multiplier, first-purchase bonus)
- Tier thresholds and one-time upgrade bonuses
- Reward redemption requests and admin approval / rejection
- Referral bonuses

Points are reserved, not charged, when a redemption is requested. They are
deducted when an administrator approves it.
"""
import math
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any

from flask import current_app
from sqlalchemy import update, func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.user import User, LoyaltyTier
from ..models.order import Order
from ..models.loyalty import (
    Reward,
    RedeemedReward,
    PointsTransaction,
    RedemptionStatus,
    RewardType,
    TransactionType,
)
from ..utils.exceptions import (
    StorefrontError,
    ValidationError,
    UserNotFoundError,
    RewardNotFoundError,
    RedemptionNotFoundError,
    InsufficientPointsError,
    ConcurrencyConflictError,
    StorageError,
)


# ==================== Configuration ====================

DEFAULT_POINTS_PER_DOLLAR = 10
DEFAULT_MIN_PURCHASE_FOR_POINTS = Decimal('5')
DEFAULT_FIRST_PURCHASE_BONUS = 100
DEFAULT_REFERRAL_BONUS_POINTS = 200

# Cumulative spend needed for each tier, highest first
TIER_THRESHOLDS = (
    (LoyaltyTier.PLATINUM, Decimal('1000')),
    (LoyaltyTier.GOLD, Decimal('500')),
    (LoyaltyTier.SILVER, Decimal('100')),
    (LoyaltyTier.BRONZE, Decimal('0')),
)

TIER_RANK = {
    LoyaltyTier.BRONZE: 0,
    LoyaltyTier.SILVER: 1,
    LoyaltyTier.GOLD: 2,
    LoyaltyTier.PLATINUM: 3,
}

# One-time bonus when a user reaches a tier
TIER_UPGRADE_BONUS = {
    LoyaltyTier.SILVER: 50,
    LoyaltyTier.GOLD: 100,
    LoyaltyTier.PLATINUM: 200,
}


def _config(key: str, default):
    return current_app.config.get(key, default)


# ==================== Pure helpers ====================

def get_tier_for_spend(total_spent) -> LoyaltyTier:
    """Tier earned by a cumulative spend."""
    spent = Decimal(total_spent or 0)
    for tier, threshold in TIER_THRESHOLDS:
        if spent >= threshold:
            return tier
    return LoyaltyTier.BRONZE


def get_next_tier_info(tier: LoyaltyTier, total_spent) -> Dict[str, Any]:
    """
    Progress towards the next tier.

    Returns:
        Dict with next_tier (None at the top), amount_to_next and a 0-100 progress
    """
    spent = Decimal(total_spent or 0)
    ascending = list(reversed(TIER_THRESHOLDS))
    index = [t for t, _ in ascending].index(LoyaltyTier(tier))

    if index == len(ascending) - 1:
        return {'next_tier': None, 'amount_to_next': 0.0, 'progress': 100}

    current_threshold = ascending[index][1]
    next_tier, next_threshold = ascending[index + 1]
    span = next_threshold - current_threshold
    progress = min(Decimal('100'), (spent - current_threshold) / span * 100)

    return {
        'next_tier': next_tier.value,
        'amount_to_next': float(max(Decimal('0'), next_threshold - spent)),
        'progress': int(round(max(progress, Decimal('0')))),
    }


def calculate_points_earned(
    amount,
    is_first_purchase: bool = False,
    points_per_dollar: int = DEFAULT_POINTS_PER_DOLLAR,
    minimum_purchase: Decimal = DEFAULT_MIN_PURCHASE_FOR_POINTS,
    first_purchase_bonus: int = DEFAULT_FIRST_PURCHASE_BONUS
) -> int:
    """Base points for an order amount, before any campaign multiplier."""
    amount = Decimal(amount or 0)
    if amount < minimum_purchase:
        return 0

    points = int(math.floor(amount * points_per_dollar))
    if is_first_purchase:
        points += first_purchase_bonus
    return points


class LoyaltyService:
    """
    Central service for points accrual and reward redemptions.

    Usage:
        service = LoyaltyService()

        # Accrue points for a confirmed order
        points = service.process_order_points(order, Decimal('2'))

        # Redemption lifecycle
        redemption = service.request_redemption(user_id, reward_id)
        service.approve_redemption(redemption.id)
    """

    # ==================== Accrual ====================

    def award(
        self,
        user_id: int,
        points_delta: int,
        reason: TransactionType,
        reference_id: str = None,
        description: str = None,
        spend_delta=Decimal('0'),
        commit: bool = True
    ) -> int:
        """
        Apply a points change and record it.

        Args:
            user_id: User whose balance changes
            points_delta: Positive to earn, negative to deduct
            reason: TransactionType stored on the log row
            reference_id: Order reference, redemption ID, referred user ID
            description: Human-readable description
            spend_delta: Amount added to cumulative spend (orders only)
            commit: Commit the transaction (False when the caller owns it)

        Returns:
            The user's new points balance

        Raises:
            UserNotFoundError: Unknown user
            InsufficientPointsError: A deduction would make the balance negative
        """
        points_delta = int(points_delta)
        spend_delta = Decimal(spend_delta or 0)

        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        if points_delta == 0 and spend_delta == 0:
            return user.loyalty_points or 0

        try:
            conditions = [User.id == user_id]
            if points_delta < 0:
                conditions.append(User.loyalty_points + points_delta >= 0)

            result = db.session.execute(
                update(User)
                .where(*conditions)
                .values(
                    loyalty_points=User.loyalty_points + points_delta,
                    total_spent=User.total_spent + spend_delta
                )
                .execution_options(synchronize_session=False)
            )
            db.session.refresh(user)

            if result.rowcount != 1:
                raise InsufficientPointsError(user.loyalty_points or 0, -points_delta)

            if points_delta != 0:
                db.session.add(PointsTransaction(
                    user_id=user_id,
                    amount=points_delta,
                    transaction_type=TransactionType(reason).value,
                    description=description or f'{TransactionType(reason).value}: {points_delta:+d} points',
                    reference_id=reference_id,
                    balance_after=user.loyalty_points
                ))

            self._update_tier(user)
            db.session.flush()

            if commit:
                db.session.commit()

        except StorefrontError:
            if commit:
                db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Points award failed for user {user_id}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(
            f"Points {TransactionType(reason).value}: user {user_id} {points_delta:+d} pts "
            f"(spend +{spend_delta}). Balance: {user.loyalty_points}"
        )
        return user.loyalty_points

    def process_order_points(self, order: Order, points_multiplier=Decimal('1'), commit: bool = True) -> int:
        """
        Accrue points for a confirmed order.

        Base points come from the payable total (first order earns a bonus),
        then the campaign multiplier is applied and floored. Cumulative spend
        grows by the payable total even when no points are earned.

        Returns:
            Points awarded
        """
        previous_orders = Order.query.filter(
            Order.user_id == order.user_id,
            Order.id != order.id
        ).count()

        base_points = calculate_points_earned(
            order.total_amount,
            is_first_purchase=previous_orders == 0,
            points_per_dollar=_config('POINTS_PER_DOLLAR', DEFAULT_POINTS_PER_DOLLAR),
            minimum_purchase=_config('MIN_PURCHASE_FOR_POINTS', DEFAULT_MIN_PURCHASE_FOR_POINTS),
            first_purchase_bonus=_config('FIRST_PURCHASE_BONUS', DEFAULT_FIRST_PURCHASE_BONUS)
        )
        multiplier = Decimal(points_multiplier or 1)
        points = int(math.floor(base_points * multiplier))

        description = f'Points earned from order #{order.order_number}'
        if multiplier > 1:
            description += f' ({multiplier.normalize()}x campaign multiplier)'

        self.award(
            order.user_id,
            points,
            TransactionType.PURCHASE,
            reference_id=order.order_number,
            description=description,
            spend_delta=order.total_amount,
            commit=commit
        )
        return points

    def process_referral_bonus(self, referrer_id: int, referred_user_id: int) -> bool:
        """
        Award the referral bonus once per referred user.

        Returns:
            True if points were awarded, False if the bonus was already paid
        """
        if referrer_id == referred_user_id:
            raise ValidationError('Users cannot refer themselves', 'referred_user_id')

        already_paid = PointsTransaction.query.filter_by(
            user_id=referrer_id,
            transaction_type=TransactionType.REFERRAL_BONUS.value,
            reference_id=str(referred_user_id)
        ).first()
        if already_paid:
            return False

        self.award(
            referrer_id,
            _config('REFERRAL_BONUS_POINTS', DEFAULT_REFERRAL_BONUS_POINTS),
            TransactionType.REFERRAL_BONUS,
            reference_id=str(referred_user_id),
            description=f'Referral bonus for user {referred_user_id}'
        )
        return True

    def sync_tiers(self, dry_run: bool = False) -> List[Dict[str, Any]]:
        """
        Re-derive every user's tier from cumulative spend.

        Returns:
            One entry per user whose tier differs from the derived one
        """
        changes = []
        for user in User.query.order_by(User.id.asc()).all():
            earned = get_tier_for_spend(user.total_spent)
            if earned.value == user.loyalty_tier:
                continue
            changes.append({'user_id': user.id, 'from_tier': user.loyalty_tier, 'to_tier': earned.value})
            if not dry_run:
                self._update_tier(user)

        if not dry_run and changes:
            try:
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                current_app.logger.error(f"Tier sync failed: {e}")
                raise StorageError(original_error=e)

        return changes

    def _update_tier(self, user: User) -> None:
        current = LoyaltyTier(user.loyalty_tier)
        earned = get_tier_for_spend(user.total_spent)
        if earned == current:
            return

        user.loyalty_tier = earned.value
        db.session.flush()
        current_app.logger.info(f"Tier change: user {user.id} {current.value} -> {earned.value}")

        if TIER_RANK[earned] > TIER_RANK[current]:
            bonus = TIER_UPGRADE_BONUS.get(earned)
            if bonus:
                self.award(
                    user.id,
                    bonus,
                    TransactionType.PROMOTION_BONUS,
                    description=f'{earned.value.title()} tier upgrade bonus',
                    commit=False
                )

    # ==================== Redemptions ====================

    def request_redemption(self, user_id: int, reward_id: int) -> RedeemedReward:
        """
        Ask to redeem a catalog reward. Creates a PENDING redemption; no points move.

        Raises:
            UserNotFoundError, RewardNotFoundError, InsufficientPointsError
        """
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        reward = db.session.get(Reward, reward_id)
        if not reward or not reward.is_active:
            raise RewardNotFoundError(reward_id)

        if (user.loyalty_points or 0) < reward.points_cost:
            raise InsufficientPointsError(user.loyalty_points or 0, reward.points_cost)

        redemption = RedeemedReward(
            user_id=user_id,
            reward_id=reward.id,
            status=RedemptionStatus.PENDING.value,
            redeemed_at=datetime.utcnow()
        )
        db.session.add(redemption)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Redemption request failed for user {user_id}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(
            f"Redemption requested: user {user_id} reward {reward.name} ({reward.points_cost} pts), pending approval"
        )
        return redemption

    def approve_redemption(self, redemption_id: int) -> RedeemedReward:
        """
        Approve a pending redemption and deduct its points cost.

        Raises:
            RedemptionNotFoundError, InvalidStatusTransitionError,
            InsufficientPointsError (balance spent since the request)
        """
        redemption = self._get_redemption(redemption_id)
        redemption.assert_transition(RedemptionStatus.APPROVED)
        reward = redemption.reward

        try:
            self._transition(redemption, RedemptionStatus.APPROVED, approved_at=datetime.utcnow())
            self.award(
                redemption.user_id,
                -reward.points_cost,
                TransactionType.REDEMPTION,
                reference_id=str(redemption.id),
                description=f'Approved redemption: {reward.name}',
                commit=False
            )
            db.session.commit()
        except StorefrontError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Redemption approval failed for {redemption_id}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(f"Redemption {redemption_id} approved: -{reward.points_cost} pts")
        return db.session.get(RedeemedReward, redemption_id)

    def reject_redemption(self, redemption_id: int) -> RedeemedReward:
        """Reject a pending redemption. Terminal; no points move."""
        redemption = self._get_redemption(redemption_id)
        redemption.assert_transition(RedemptionStatus.REJECTED)

        try:
            self._transition(redemption, RedemptionStatus.REJECTED, rejected_at=datetime.utcnow())
            db.session.commit()
        except StorefrontError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Redemption rejection failed for {redemption_id}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(f"Redemption {redemption_id} rejected")
        return db.session.get(RedeemedReward, redemption_id)

    def _transition(self, redemption: RedeemedReward, target: RedemptionStatus, **values) -> None:
        """Compare-and-swap the status; fails if another request moved it first."""
        source = redemption.status
        result = db.session.execute(
            update(RedeemedReward)
            .where(RedeemedReward.id == redemption.id, RedeemedReward.status == source)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(redemption)
            raise ConcurrencyConflictError(
                f'Redemption {redemption.id} changed to {redemption.status} concurrently',
                'STATE_CONFLICT'
            )
        db.session.refresh(redemption)

    def _get_redemption(self, redemption_id: int) -> RedeemedReward:
        redemption = db.session.get(RedeemedReward, redemption_id)
        if not redemption:
            raise RedemptionNotFoundError(redemption_id)
        return redemption

    # ==================== Queries ====================

    def get_applicable_rewards(self, user_id: int) -> Dict[str, List[Dict[str, Any]]]:
        """Approved, unused redemptions grouped by reward type, oldest first."""
        redemptions = RedeemedReward.query.filter_by(
            user_id=user_id,
            status=RedemptionStatus.APPROVED.value
        ).order_by(RedeemedReward.redeemed_at.asc(), RedeemedReward.id.asc()).all()

        grouped = {t.value: [] for t in RewardType}
        for redemption in redemptions:
            if redemption.reward and redemption.reward.reward_type in grouped:
                grouped[redemption.reward.reward_type].append(redemption.to_dict())
        return grouped

    def get_summary(self, user_id: int, history_limit: int = 20) -> Dict[str, Any]:
        """Balance, tier progress and recent transactions for a user."""
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        transactions = PointsTransaction.query.filter_by(user_id=user_id).order_by(
            PointsTransaction.created_at.desc(), PointsTransaction.id.desc()
        ).limit(history_limit).all()

        lifetime_earned = db.session.query(func.coalesce(func.sum(PointsTransaction.amount), 0)).filter(
            PointsTransaction.user_id == user_id,
            PointsTransaction.amount > 0
        ).scalar()

        return {
            'user_id': user.id,
            'points_balance': user.loyalty_points or 0,
            'lifetime_earned': int(lifetime_earned or 0),
            'total_spent': float(user.total_spent or 0),
            'tier': user.loyalty_tier,
            **get_next_tier_info(LoyaltyTier(user.loyalty_tier), user.total_spent),
            'transactions': [t.to_dict() for t in transactions],
        }
