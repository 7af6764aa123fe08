"""
Usage Ledger.

The only writer of coupon/campaign usage counters and of the
APPROVED -> USED reward transition. Every write is a conditional UPDATE
whose WHERE clause re-checks the limit, expiry or status, so two checkouts racing
for the last use of a coupon cannot both succeed: the loser's UPDATE
matches zero rows and raises a conflict.

The ledger never commits. It runs inside the caller's transaction so that
a failure anywhere in order finalization rolls back every counter it moved.
"""
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import update, or_, func

from ..extensions import db
from ..models.coupon import Coupon, CouponUsage
from ..models.campaign import Campaign, CampaignUsage
from ..models.loyalty import RedeemedReward, RedemptionStatus
from ..utils.exceptions import (
    UsageLimitConflictError,
    ConcurrencyConflictError,
    InvalidStatusTransitionError,
    RewardNotFoundError,
)


class UsageLedger:
    """
    Records consumption of limited-use discounts for a confirmed order.

    Usage:
        ledger = UsageLedger()
        ledger.commit(result.applied_entities, 'ORD-20260101-AB12CD34', user_id)
        db.session.commit()
    """

    # ==================== Reads ====================

    def count_user_uses(self, coupon_id: int, user_id: int) -> int:
        """Confirmed uses of a coupon by one user."""
        return db.session.query(func.count(CouponUsage.id)).filter(
            CouponUsage.coupon_id == coupon_id,
            CouponUsage.user_id == user_id
        ).scalar() or 0

    # ==================== Commit ====================

    def commit(
        self,
        applied_entities: Iterable,
        order_reference: str,
        user_id: int,
        now: Optional[datetime] = None
    ) -> None:
        """
        Consume every applied coupon, campaign and reward for one order.

        Args:
            applied_entities: AppliedEntity items from a StackResult
            order_reference: Order the consumption is recorded against
            user_id: Customer placing the order
            now: Timestamp for usage rows (defaults to utcnow)

        Raises:
            UsageLimitConflictError: A coupon or campaign ran out of uses
            ConcurrencyConflictError: A reward was consumed by another order
        """
        # Deferred to avoid a circular import with the stacking service
        from .stacking_service import EntityKind

        now = now or datetime.utcnow()
        handlers = {
            EntityKind.COUPON: self._consume_coupon,
            EntityKind.CAMPAIGN: self._consume_campaign,
            EntityKind.REWARD: self._consume_reward,
        }

        for entity in applied_entities:
            handlers[entity.kind](entity, order_reference, user_id, now)

        # Counters were moved with bulk UPDATEs; reload anything cached in the session
        db.session.flush()
        db.session.expire_all()

    def _consume_coupon(self, entity, order_reference: str, user_id: int, now: datetime) -> None:
        already = CouponUsage.query.filter_by(
            coupon_id=entity.entity_id,
            order_reference=order_reference
        ).first()
        if already:
            current_app.logger.info(
                f"Coupon {entity.label} already recorded for order {order_reference}, skipping"
            )
            return

        result = db.session.execute(
            update(Coupon)
            .where(
                Coupon.id == entity.entity_id,
                Coupon.is_active.is_(True),
                or_(Coupon.ends_at.is_(None), Coupon.ends_at >= now),
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit)
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current_app.logger.warning(
                f"Coupon {entity.label} exhausted or expired while committing order {order_reference}"
            )
            raise UsageLimitConflictError('Coupon', entity.label)

        coupon = db.session.get(Coupon, entity.entity_id)
        limit = coupon.usage_limit_per_user if coupon else None
        if limit is not None and self.count_user_uses(entity.entity_id, user_id) >= limit:
            raise UsageLimitConflictError('Coupon', entity.label)

        db.session.add(CouponUsage(
            coupon_id=entity.entity_id,
            user_id=user_id,
            order_reference=order_reference,
            discount_amount=entity.discount_amount,
            used_at=now
        ))
        db.session.flush()

    def _consume_campaign(self, entity, order_reference: str, user_id: int, now: datetime) -> None:
        already = CampaignUsage.query.filter_by(
            campaign_id=entity.entity_id,
            order_reference=order_reference
        ).first()
        if already:
            current_app.logger.info(
                f"Campaign {entity.entity_id} already recorded for order {order_reference}, skipping"
            )
            return

        result = db.session.execute(
            update(Campaign)
            .where(
                Campaign.id == entity.entity_id,
                Campaign.is_active.is_(True),
                or_(Campaign.ends_at.is_(None), Campaign.ends_at >= now),
                or_(Campaign.usage_limit.is_(None), Campaign.usage_count < Campaign.usage_limit)
            )
            .values(usage_count=Campaign.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current_app.logger.warning(
                f"Campaign {entity.entity_id} exhausted or expired while committing order {order_reference}"
            )
            raise UsageLimitConflictError('Campaign', entity.entity_id)

        db.session.add(CampaignUsage(
            campaign_id=entity.entity_id,
            user_id=user_id,
            order_reference=order_reference,
            discount_amount=entity.discount_amount,
            used_at=now
        ))
        db.session.flush()

    def _consume_reward(self, entity, order_reference: str, user_id: int, now: datetime) -> None:
        result = db.session.execute(
            update(RedeemedReward)
            .where(
                RedeemedReward.id == entity.entity_id,
                RedeemedReward.user_id == user_id,
                RedeemedReward.status == RedemptionStatus.APPROVED.value
            )
            .values(
                status=RedemptionStatus.USED.value,
                used_at=now,
                used_order_reference=order_reference
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        redemption = db.session.get(RedeemedReward, entity.entity_id)
        if redemption is None or redemption.user_id != user_id:
            raise RewardNotFoundError(entity.entity_id)
        db.session.refresh(redemption)
        if (
            redemption.status == RedemptionStatus.USED.value
            and redemption.used_order_reference == order_reference
        ):
            return  # Retried commit for the same order

        if redemption.status == RedemptionStatus.USED.value:
            current_app.logger.warning(
                f"Reward redemption {redemption.id} already used by order "
                f"{redemption.used_order_reference}, rejecting {order_reference}"
            )
            raise ConcurrencyConflictError(
                f'Reward {redemption.id} was already applied to another order',
                'REWARD_ALREADY_USED'
            )
        raise InvalidStatusTransitionError('redemption', redemption.status, RedemptionStatus.USED.value)
