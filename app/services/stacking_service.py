"""
Stacking Orchestrator for checkout price adjustments.

Combines redeemed rewards, a single coupon and every eligible campaign into
one StackResult. Preview and commit share apply_all, so the amount shown to
the customer is the amount the order is created with.

Layer precedence is fixed by STACKING_ORDER:

1. REWARD   - the best approved discount reward (highest value, oldest on a
              tie), a free-delivery reward when shipping would be charged,
              and every cashback / free-product reward (settled after the
              order, no money off at checkout).
2. COUPON   - at most one, the code submitted with the checkout. Computed on
              the raw order total.
3. CAMPAIGN - every eligible campaign, computed on the order total minus the
              reward and coupon discounts. Discounts add up, free shipping
              is OR-ed, points multipliers combine with max().

The payable amount is max(0, order_total - total_discount).
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models.coupon import Coupon
from ..models.campaign import Campaign
from ..models.loyalty import RedeemedReward, RedemptionStatus, RewardType, TransactionType
from ..models.order import OrderAdjustment
from ..utils.exceptions import (
    StorefrontError,
    ValidationError,
    CouponNotFoundError,
    CouponIneligibleError,
    RewardNotFoundError,
    IneligibleError,
    AdjustmentChangedError,
    DuplicateError,
    StorageError,
)
from . import discount_calculator
from .discount_calculator import ZERO, ONE, quantize, to_money
from .eligibility import EligibilityContext, ineligibility_reason
from .loyalty_service import LoyaltyService
from .usage_ledger import UsageLedger

DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal('50')


class EntityKind(str, Enum):
    """Discount sources the orchestrator stacks."""
    REWARD = 'reward'
    COUPON = 'coupon'
    CAMPAIGN = 'campaign'


# Reordering this tuple silently changes every computed price.
STACKING_ORDER = (EntityKind.REWARD, EntityKind.COUPON, EntityKind.CAMPAIGN)

# Layers whose discounts reduce the base that later layers are computed on
PERSONAL_LAYERS = frozenset({EntityKind.REWARD, EntityKind.COUPON})


# ==================== Result types ====================

@dataclass
class AppliedEntity:
    """One coupon, campaign or reward that takes part in the adjustment."""
    kind: EntityKind
    entity_id: int
    label: str
    variant: str
    discount_amount: Decimal = ZERO
    free_shipping: bool = False
    points_multiplier: Decimal = ONE
    value: Decimal = ZERO
    fulfillment: Optional[str] = None  # 'points_credit' or 'manual' for post-order rewards

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'entity_id': self.entity_id,
            'label': self.label,
            'variant': self.variant,
            'discount_amount': float(self.discount_amount),
            'free_shipping': self.free_shipping,
            'points_multiplier': float(self.points_multiplier),
            'value': float(self.value),
            'fulfillment': self.fulfillment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppliedEntity':
        return cls(
            kind=EntityKind(data['kind']),
            entity_id=data['entity_id'],
            label=data['label'],
            variant=data['variant'],
            discount_amount=quantize(Decimal(str(data['discount_amount']))),
            free_shipping=data['free_shipping'],
            points_multiplier=Decimal(str(data['points_multiplier'])),
            value=quantize(Decimal(str(data.get('value', 0)))),
            fulfillment=data.get('fulfillment'),
        )


@dataclass
class StackResult:
    """Consolidated adjustment for one order total."""
    order_total: Decimal
    total_discount: Decimal
    payable_amount: Decimal
    free_shipping: bool
    points_multiplier: Decimal
    applied_entities: List[AppliedEntity] = field(default_factory=list)

    def of_kind(self, kind: EntityKind) -> List[AppliedEntity]:
        return [e for e in self.applied_entities if e.kind == kind]

    def discount_for(self, kind: EntityKind) -> Decimal:
        return sum((e.discount_amount for e in self.of_kind(kind)), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order_total': float(self.order_total),
            'total_discount': float(self.total_discount),
            'payable_amount': float(self.payable_amount),
            'free_shipping': self.free_shipping,
            'points_multiplier': float(self.points_multiplier),
            'reward_discount': float(self.discount_for(EntityKind.REWARD)),
            'coupon_discount': float(self.discount_for(EntityKind.COUPON)),
            'campaign_discount': float(self.discount_for(EntityKind.CAMPAIGN)),
            'applied_entities': [e.to_dict() for e in self.applied_entities],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StackResult':
        return cls(
            order_total=quantize(Decimal(str(data['order_total']))),
            total_discount=quantize(Decimal(str(data['total_discount']))),
            payable_amount=quantize(Decimal(str(data['payable_amount']))),
            free_shipping=data['free_shipping'],
            points_multiplier=Decimal(str(data['points_multiplier'])),
            applied_entities=[AppliedEntity.from_dict(e) for e in data.get('applied_entities', [])],
        )


@dataclass(frozen=True)
class CheckoutContext:
    """
    Who is checking out and what they submitted.

    reward_ids restricts the rewards considered to those redemptions; None
    means every approved redemption the user holds.
    """
    user_id: int
    coupon_code: Optional[str] = None
    reward_ids: Optional[Sequence[int]] = None
    now: Optional[datetime] = None


@dataclass
class _Stack:
    """Running totals while layers are applied."""
    order_total: Decimal
    personal_discount: Decimal = ZERO
    campaign_discount: Decimal = ZERO
    free_shipping: bool = False
    points_multiplier: Decimal = ONE
    applied: List[AppliedEntity] = field(default_factory=list)

    @property
    def campaign_base(self) -> Decimal:
        return max(self.order_total - self.personal_discount, ZERO)

    def add(self, entity: AppliedEntity) -> None:
        self.applied.append(entity)
        if entity.kind in PERSONAL_LAYERS:
            self.personal_discount += entity.discount_amount
        else:
            self.campaign_discount += entity.discount_amount
        self.free_shipping = self.free_shipping or entity.free_shipping
        self.points_multiplier = max(self.points_multiplier, entity.points_multiplier)

    def result(self) -> StackResult:
        total_discount = min(self.personal_discount + self.campaign_discount, self.order_total)
        return StackResult(
            order_total=self.order_total,
            total_discount=total_discount,
            payable_amount=max(self.order_total - total_discount, ZERO),
            free_shipping=self.free_shipping,
            points_multiplier=self.points_multiplier,
            applied_entities=list(self.applied),
        )


# ==================== Service ====================

class AdjustmentService:
    """
    Preview and commit stacked order adjustments.

    Usage:
        service = AdjustmentService()
        context = CheckoutContext(user_id=user.id, coupon_code='SAVE10')

        preview = service.preview_adjustment(Decimal('120.00'), context)
        result = service.commit_adjustment(
            Decimal('120.00'), context, 'ORD-20260101-AB12CD34',
            expected_payable=preview.payable_amount
        )
    """

    def __init__(self, ledger: UsageLedger = None, loyalty_service: LoyaltyService = None):
        self.ledger = ledger or UsageLedger()
        self.loyalty_service = loyalty_service or LoyaltyService()
        self._layers = {
            EntityKind.REWARD: self._apply_rewards,
            EntityKind.COUPON: self._apply_coupon,
            EntityKind.CAMPAIGN: self._apply_campaigns,
        }

    # ==================== Exposed operations ====================

    def preview_adjustment(self, order_total, context: CheckoutContext) -> StackResult:
        """Side-effect-free adjustment for display at checkout."""
        return self.apply_all(order_total, context)

    def apply_all(self, order_total, context: CheckoutContext) -> StackResult:
        """
        Stack every applicable discount for an order total.

        Raises:
            ValidationError: Negative or missing total, empty reward_ids
            CouponNotFoundError: Submitted code matches no coupon
            CouponIneligibleError: Submitted coupon fails an eligibility rule
            RewardNotFoundError: A requested redemption is not the user's
            IneligibleError: A requested redemption is not approved
        """
        total = to_money(order_total, 'order_total')
        if context.user_id is None:
            raise ValidationError('user_id is required', 'user_id')
        if context.reward_ids is not None and len(context.reward_ids) == 0:
            raise ValidationError('reward_ids cannot be empty', 'reward_ids')

        now = context.now or datetime.utcnow()
        stack = _Stack(order_total=total)
        for kind in STACKING_ORDER:
            self._layers[kind](stack, context, now)
        return stack.result()

    def preview_coupon(self, code: str, order_total, user_id: int, now: datetime = None) -> Dict[str, Any]:
        """
        Validate a single coupon code against an order total.

        Raises:
            CouponNotFoundError / CouponIneligibleError with the specific reason
        """
        total = to_money(order_total, 'order_total')
        if not code or not code.strip():
            raise ValidationError('Coupon code is required', 'code')

        coupon, entity = self._evaluate_coupon(code, total, user_id, now or datetime.utcnow())
        return {
            'id': coupon.id,
            'code': coupon.code,
            'description': coupon.description,
            'discount_kind': coupon.discount_kind,
            'discount_amount': float(entity.discount_amount),
            'free_shipping': entity.free_shipping,
        }

    def commit_adjustment(
        self,
        order_total,
        context: CheckoutContext,
        order_reference: str,
        expected_payable=None,
        commit: bool = True
    ) -> StackResult:
        """
        Recompute and consume the adjustment for a confirmed order.

        Exactly-once per order_reference: a repeated call returns the stored
        snapshot without touching any counter.

        Args:
            order_total: Pre-discount order total
            context: Checkout context (same as the preview)
            order_reference: Unique order reference
            expected_payable: Payable amount shown at preview; a mismatch aborts
            commit: Commit the transaction (False when the caller owns it)

        Raises:
            AdjustmentChangedError: Recomputed payable differs from expected_payable
            UsageLimitConflictError: A limit was reached by a racing checkout
            DuplicateError: Another commit for this order won a race
            StorageError: Database failure
        """
        if not order_reference:
            raise ValidationError('order_reference is required', 'order_reference')

        existing = OrderAdjustment.query.filter_by(order_reference=order_reference).first()
        if existing:
            if existing.user_id != context.user_id:
                raise DuplicateError('Order adjustment', order_reference)
            current_app.logger.info(f"Adjustment for order {order_reference} already committed, returning snapshot")
            return StackResult.from_dict(existing.snapshot)

        now = context.now or datetime.utcnow()
        result = self.apply_all(order_total, context)

        if expected_payable is not None:
            expected = to_money(expected_payable, 'expected_payable')
            if expected != result.payable_amount:
                current_app.logger.warning(
                    f"Adjustment drift on order {order_reference}: "
                    f"previewed {expected}, recomputed {result.payable_amount}"
                )
                raise AdjustmentChangedError(expected, result.payable_amount)

        try:
            self.ledger.commit(result.applied_entities, order_reference, context.user_id, now)
            self._credit_cashback(result, context.user_id)

            db.session.add(OrderAdjustment(
                order_reference=order_reference,
                user_id=context.user_id,
                order_total=result.order_total,
                total_discount=result.total_discount,
                payable_amount=result.payable_amount,
                free_shipping=result.free_shipping,
                points_multiplier=result.points_multiplier,
                snapshot=result.to_dict(),
                created_at=now
            ))
            db.session.flush()

            if commit:
                db.session.commit()

        except StorefrontError:
            db.session.rollback()
            raise
        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.warning(f"Duplicate adjustment commit for order {order_reference}: {e}")
            raise DuplicateError('Order adjustment', order_reference)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Adjustment commit failed for order {order_reference}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(
            f"Adjustment committed: order {order_reference} user {context.user_id} "
            f"total {result.order_total} -{result.total_discount} = {result.payable_amount} "
            f"({len(result.applied_entities)} applied, {result.points_multiplier}x points)"
        )
        return result

    # ==================== Layers ====================

    def _apply_rewards(self, stack: _Stack, context: CheckoutContext, now: datetime) -> None:
        rewards = self._load_rewards(context)

        by_type: Dict[RewardType, List[RedeemedReward]] = {t: [] for t in RewardType}
        for redemption in rewards:
            kind = redemption.reward.kind
            if kind is not None:
                by_type[kind].append(redemption)

        selected: List[RedeemedReward] = []

        # One discount reward per order: highest value, max() keeps the oldest on ties
        if by_type[RewardType.DISCOUNT]:
            selected.append(max(by_type[RewardType.DISCOUNT], key=lambda r: Decimal(r.reward.value or 0)))

        # Free delivery only when the order would otherwise pay shipping
        if by_type[RewardType.FREE_DELIVERY] and stack.order_total < self._free_shipping_threshold():
            selected.append(by_type[RewardType.FREE_DELIVERY][0])

        selected.extend(by_type[RewardType.CASHBACK])
        selected.extend(by_type[RewardType.FREE_PRODUCT])

        for redemption in selected:
            contribution = discount_calculator.compute(redemption, stack.order_total)
            kind = redemption.reward.kind
            stack.add(AppliedEntity(
                kind=EntityKind.REWARD,
                entity_id=redemption.id,
                label=redemption.reward.name,
                variant=kind.value,
                discount_amount=contribution.discount_amount,
                free_shipping=contribution.free_shipping,
                points_multiplier=contribution.points_multiplier,
                value=quantize(Decimal(redemption.reward.value or 0)),
                fulfillment=_REWARD_FULFILLMENT.get(kind),
            ))

    def _apply_coupon(self, stack: _Stack, context: CheckoutContext, now: datetime) -> None:
        if not context.coupon_code or not context.coupon_code.strip():
            return
        _, entity = self._evaluate_coupon(context.coupon_code, stack.order_total, context.user_id, now)
        stack.add(entity)

    def _apply_campaigns(self, stack: _Stack, context: CheckoutContext, now: datetime) -> None:
        eligibility = EligibilityContext(order_total=stack.order_total, user_id=context.user_id, now=now)
        base = stack.campaign_base

        for campaign in Campaign.active():
            if ineligibility_reason(campaign, eligibility) is not None:
                continue

            contribution = discount_calculator.compute(campaign, base)
            if contribution.is_empty:
                continue

            stack.add(AppliedEntity(
                kind=EntityKind.CAMPAIGN,
                entity_id=campaign.id,
                label=campaign.title,
                variant=campaign.campaign_type,
                discount_amount=contribution.discount_amount,
                free_shipping=contribution.free_shipping,
                points_multiplier=contribution.points_multiplier,
            ))

    # ==================== Helpers ====================

    def _evaluate_coupon(self, code: str, order_total: Decimal, user_id: int, now: datetime):
        coupon = Coupon.find_by_code(code)
        if not coupon:
            raise CouponNotFoundError(code.strip().upper())

        eligibility = EligibilityContext(
            order_total=order_total,
            user_id=user_id,
            now=now,
            prior_coupon_uses=self.ledger.count_user_uses(coupon.id, user_id)
        )
        reason = ineligibility_reason(coupon, eligibility)
        if reason:
            raise CouponIneligibleError(coupon.code, reason)

        # Coupons always discount the raw order total
        contribution = discount_calculator.compute(coupon, order_total)
        entity = AppliedEntity(
            kind=EntityKind.COUPON,
            entity_id=coupon.id,
            label=coupon.code,
            variant=coupon.discount_kind,
            discount_amount=contribution.discount_amount,
            free_shipping=contribution.free_shipping,
            points_multiplier=contribution.points_multiplier,
        )
        return coupon, entity

    def _load_rewards(self, context: CheckoutContext) -> List[RedeemedReward]:
        query = RedeemedReward.query.filter(RedeemedReward.user_id == context.user_id)

        if context.reward_ids is None:
            return query.filter(
                RedeemedReward.status == RedemptionStatus.APPROVED.value
            ).order_by(RedeemedReward.redeemed_at.asc(), RedeemedReward.id.asc()).all()

        requested = list(dict.fromkeys(context.reward_ids))
        rewards = query.filter(RedeemedReward.id.in_(requested)).order_by(
            RedeemedReward.redeemed_at.asc(), RedeemedReward.id.asc()
        ).all()

        found = {r.id for r in rewards}
        for reward_id in requested:
            if reward_id not in found:
                raise RewardNotFoundError(reward_id)

        for redemption in rewards:
            reason = ineligibility_reason(redemption, None)
            if reason:
                raise IneligibleError(reason, 'REWARD_NOT_ELIGIBLE')
        return rewards

    def _credit_cashback(self, result: StackResult, user_id: int) -> None:
        for entity in result.of_kind(EntityKind.REWARD):
            if entity.variant != RewardType.CASHBACK.value:
                continue
            points = int(entity.value)
            if points <= 0:
                continue
            self.loyalty_service.award(
                user_id,
                points,
                TransactionType.REWARD_CREDIT,
                reference_id=str(entity.entity_id),
                description=f'Cashback reward: {entity.label}',
                commit=False
            )

    def _free_shipping_threshold(self) -> Decimal:
        return Decimal(current_app.config.get('FREE_SHIPPING_THRESHOLD', DEFAULT_FREE_SHIPPING_THRESHOLD))


_REWARD_FULFILLMENT = {
    RewardType.CASHBACK: 'points_credit',
    RewardType.FREE_PRODUCT: 'manual',
}
