"""
Tests for the Stacking Orchestrator (AdjustmentService).

Covers:
- Layer order: rewards, then coupon, then campaigns on the reduced base
- Free shipping and points multiplier combination
- Preview is side-effect free and repeatable
- Commit is exactly-once per order reference
- Usage limit races and price drift between preview and commit
"""
import pytest
from decimal import Decimal

from app.extensions import db
from app.models import (
    Coupon,
    CouponUsage,
    Campaign,
    CampaignType,
    DiscountKind,
    OrderAdjustment,
    PointsTransaction,
    RedeemedReward,
    RedemptionStatus,
    RewardType,
    TransactionType,
    User,
)
from app.services.stacking_service import (
    AdjustmentService,
    CheckoutContext,
    EntityKind,
    StackResult,
    STACKING_ORDER,
)
from app.utils.exceptions import (
    ValidationError,
    CouponNotFoundError,
    CouponIneligibleError,
    RewardNotFoundError,
    IneligibleError,
    UsageLimitConflictError,
    AdjustmentChangedError,
    DuplicateError,
)


@pytest.fixture
def service(app):
    return AdjustmentService()


class TestStackingOrder:
    """Fixed precedence of the discount layers."""

    def test_order_constant(self):
        """Rewards come first, then the coupon, then campaigns."""
        assert STACKING_ORDER == (EntityKind.REWARD, EntityKind.COUPON, EntityKind.CAMPAIGN)

    def test_full_stack(self, service, sample_user, make_coupon, make_campaign, make_redemption):
        """Campaigns discount what is left after the reward and the coupon."""
        make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='5')
        make_coupon('SAVE10', DiscountKind.PERCENTAGE, '10')
        make_campaign('Spring', discount_kind=DiscountKind.PERCENTAGE.value, discount_value=Decimal('10'))

        result = service.preview_adjustment(
            Decimal('100'), CheckoutContext(user_id=sample_user.id, coupon_code='save10')
        )

        assert result.discount_for(EntityKind.REWARD) == Decimal('5.00')
        assert result.discount_for(EntityKind.COUPON) == Decimal('10.00')
        # 10% of (100 - 5 - 10)
        assert result.discount_for(EntityKind.CAMPAIGN) == Decimal('8.50')
        assert result.total_discount == Decimal('23.50')
        assert result.payable_amount == Decimal('76.50')
        assert [e.kind for e in result.applied_entities] == [
            EntityKind.REWARD, EntityKind.COUPON, EntityKind.CAMPAIGN
        ]

    def test_coupon_uses_raw_total(self, service, sample_user, make_coupon, make_redemption):
        """A reward discount does not shrink the coupon's base."""
        make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='20')
        make_coupon('TENPCT', DiscountKind.PERCENTAGE, '10')

        result = service.preview_adjustment(
            Decimal('100'), CheckoutContext(user_id=sample_user.id, coupon_code='TENPCT')
        )
        assert result.discount_for(EntityKind.COUPON) == Decimal('10.00')

    def test_no_discounts(self, service, sample_user):
        """With nothing applicable the order pays full price."""
        result = service.preview_adjustment('42.50', CheckoutContext(user_id=sample_user.id))
        assert result.total_discount == Decimal('0')
        assert result.payable_amount == Decimal('42.50')
        assert result.free_shipping is False
        assert result.points_multiplier == Decimal('1')
        assert result.applied_entities == []


class TestStackingScenarios:

    def test_coupon_clamped_to_max_discount(self, service, sample_user, make_coupon):
        """orderTotal=100 with a 10% coupon capped at 5 discounts 5."""
        make_coupon('CAPPED', DiscountKind.PERCENTAGE, '10', max_discount=Decimal('5'))
        result = service.preview_adjustment(
            Decimal('100'), CheckoutContext(user_id=sample_user.id, coupon_code='CAPPED')
        )
        assert result.total_discount == Decimal('5.00')

    def test_campaign_below_minimum_contributes_nothing(self, service, sample_user, make_campaign):
        """orderTotal=40 against a campaign requiring 50 is skipped."""
        make_campaign('Big spenders', min_purchase=Decimal('50'))
        result = service.preview_adjustment(Decimal('40'), CheckoutContext(user_id=sample_user.id))
        assert result.total_discount == Decimal('0')
        assert result.of_kind(EntityKind.CAMPAIGN) == []

    def test_free_delivery_reward_below_threshold(self, service, sample_user, make_redemption):
        """orderTotal=30 with an approved free-delivery reward ships free."""
        redemption = make_redemption(sample_user, reward_type=RewardType.FREE_DELIVERY, value='0')
        result = service.preview_adjustment(Decimal('30'), CheckoutContext(user_id=sample_user.id))
        assert result.free_shipping is True
        assert result.total_discount == Decimal('0')
        assert [e.entity_id for e in result.of_kind(EntityKind.REWARD)] == [redemption.id]

    def test_free_delivery_reward_kept_above_threshold(self, service, sample_user, make_redemption):
        """Orders that already ship free do not consume the reward."""
        make_redemption(sample_user, reward_type=RewardType.FREE_DELIVERY, value='0')
        result = service.preview_adjustment(Decimal('60'), CheckoutContext(user_id=sample_user.id))
        assert result.free_shipping is False
        assert result.of_kind(EntityKind.REWARD) == []

    def test_multipliers_take_the_maximum(self, service, sample_user, make_campaign):
        """Two eligible multiplier campaigns of 2 and 3 give 3, not 5 or 6."""
        make_campaign('Double', CampaignType.POINTS_MULTIPLIER, points_multiplier=Decimal('2'))
        make_campaign('Triple', CampaignType.POINTS_MULTIPLIER, points_multiplier=Decimal('3'))
        result = service.preview_adjustment(Decimal('100'), CheckoutContext(user_id=sample_user.id))
        assert result.points_multiplier == Decimal('3')
        assert len(result.of_kind(EntityKind.CAMPAIGN)) == 2

    def test_free_shipping_combines_with_discounts(self, service, sample_user, make_coupon, make_campaign):
        """Free shipping is OR-ed alongside money-off discounts."""
        make_coupon('SAVE10', DiscountKind.PERCENTAGE, '10')
        make_campaign('Ship free', CampaignType.FREE_SHIPPING)
        result = service.preview_adjustment(
            Decimal('100'), CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')
        )
        assert result.free_shipping is True
        assert result.payable_amount == Decimal('90.00')

    def test_payable_never_negative(self, service, sample_user, make_coupon, make_redemption):
        """Discounts exceeding the order total zero the order."""
        make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='50')
        make_coupon('BIG', DiscountKind.FIXED, '80')
        result = service.preview_adjustment(
            Decimal('100'), CheckoutContext(user_id=sample_user.id, coupon_code='BIG')
        )
        assert result.total_discount == Decimal('100.00')
        assert result.payable_amount == Decimal('0')

    def test_best_discount_reward_wins(self, service, sample_user, make_redemption):
        """Only one discount reward applies per order: the highest value."""
        make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='5', name='$5 Off')
        best = make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='10', name='$10 Off')

        result = service.preview_adjustment(Decimal('100'), CheckoutContext(user_id=sample_user.id))
        rewards = result.of_kind(EntityKind.REWARD)
        assert [r.entity_id for r in rewards] == [best.id]
        assert result.total_discount == Decimal('10.00')

    def test_ineligible_campaigns_are_skipped(self, service, sample_user, make_campaign):
        """Exhausted and inactive campaigns do not apply and do not raise."""
        make_campaign('Gone', usage_limit=1, usage_count=1)
        make_campaign('Off', is_active=False)
        result = service.preview_adjustment(Decimal('100'), CheckoutContext(user_id=sample_user.id))
        assert result.applied_entities == []

    def test_pending_rewards_are_ignored_by_default(self, service, sample_user, make_redemption):
        """Without explicit reward_ids only approved rewards are considered."""
        make_redemption(sample_user, status=RedemptionStatus.PENDING, reward_type=RewardType.DISCOUNT, value='5')
        result = service.preview_adjustment(Decimal('100'), CheckoutContext(user_id=sample_user.id))
        assert result.total_discount == Decimal('0')


class TestStackingErrors:

    def test_negative_total(self, service, sample_user):
        with pytest.raises(ValidationError):
            service.preview_adjustment(Decimal('-1'), CheckoutContext(user_id=sample_user.id))

    def test_empty_reward_ids(self, service, sample_user):
        """An explicitly empty reward list is malformed input."""
        with pytest.raises(ValidationError):
            service.preview_adjustment(Decimal('10'), CheckoutContext(user_id=sample_user.id, reward_ids=[]))

    def test_unknown_coupon(self, service, sample_user):
        with pytest.raises(CouponNotFoundError):
            service.preview_adjustment(Decimal('10'), CheckoutContext(user_id=sample_user.id, coupon_code='NOPE'))

    def test_ineligible_coupon_reports_reason(self, service, sample_user, make_coupon):
        """An ineligible coupon is never silently dropped."""
        make_coupon('MIN50', min_purchase=Decimal('50'))
        with pytest.raises(CouponIneligibleError) as exc_info:
            service.preview_adjustment(Decimal('20'), CheckoutContext(user_id=sample_user.id, coupon_code='MIN50'))
        assert exc_info.value.reason == 'Minimum purchase of $50.00 required'

    def test_reward_owned_by_another_user(self, service, sample_user, other_user, make_redemption):
        """A reward id the user does not own is not found."""
        theirs = make_redemption(other_user)
        with pytest.raises(RewardNotFoundError):
            service.preview_adjustment(
                Decimal('100'), CheckoutContext(user_id=sample_user.id, reward_ids=[theirs.id])
            )

    def test_explicit_pending_reward(self, service, sample_user, make_redemption):
        """Requesting a reward that is not approved is an eligibility error."""
        pending = make_redemption(sample_user, status=RedemptionStatus.PENDING)
        with pytest.raises(IneligibleError):
            service.preview_adjustment(
                Decimal('100'), CheckoutContext(user_id=sample_user.id, reward_ids=[pending.id])
            )


class TestPreview:

    def test_preview_is_repeatable_and_side_effect_free(
        self, service, sample_user, make_coupon, make_campaign, make_redemption
    ):
        """Two previews match and consume nothing."""
        redemption = make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='5')
        coupon = make_coupon('ONCE', usage_limit=1)
        campaign = make_campaign('Limited', usage_limit=1)
        context = CheckoutContext(user_id=sample_user.id, coupon_code='ONCE')

        first = service.preview_adjustment(Decimal('80'), context)
        second = service.preview_adjustment(Decimal('80'), context)

        assert first == second
        assert db.session.get(Coupon, coupon.id).usage_count == 0
        assert db.session.get(Campaign, campaign.id).usage_count == 0
        assert db.session.get(RedeemedReward, redemption.id).status == RedemptionStatus.APPROVED.value

    def test_preview_coupon(self, service, sample_user, make_coupon):
        """Single-code check returns the discount it would give."""
        make_coupon('FIVER', DiscountKind.FIXED, '5', description='Five off')
        preview = service.preview_coupon(' fiver ', '30', sample_user.id)
        assert preview['code'] == 'FIVER'
        assert preview['discount_amount'] == 5.0

    def test_result_round_trips_through_dict(self, service, sample_user, make_coupon):
        make_coupon('SAVE10')
        result = service.preview_adjustment(
            Decimal('99.99'), CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')
        )
        assert StackResult.from_dict(result.to_dict()) == result


class TestCommit:

    def test_commit_consumes_everything_once(
        self, service, sample_user, make_coupon, make_campaign, make_redemption
    ):
        """Coupon and campaign counters move and the reward is used."""
        redemption = make_redemption(sample_user, reward_type=RewardType.DISCOUNT, value='5')
        coupon = make_coupon('SAVE10')
        campaign = make_campaign('Spring')
        context = CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')

        result = service.commit_adjustment(Decimal('100'), context, 'ORD-1')

        assert db.session.get(Coupon, coupon.id).usage_count == 1
        assert db.session.get(Campaign, campaign.id).usage_count == 1
        used = db.session.get(RedeemedReward, redemption.id)
        assert used.status == RedemptionStatus.USED.value
        assert used.used_order_reference == 'ORD-1'
        assert CouponUsage.query.filter_by(coupon_id=coupon.id).count() == 1

        stored = OrderAdjustment.query.filter_by(order_reference='ORD-1').one()
        assert stored.payable_amount == result.payable_amount

    def test_commit_matches_preview(self, service, sample_user, make_coupon, make_campaign):
        """The committed amount equals the previewed amount."""
        make_coupon('SAVE10')
        make_campaign('Spring')
        context = CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')

        preview = service.preview_adjustment(Decimal('120'), context)
        committed = service.commit_adjustment(
            Decimal('120'), context, 'ORD-1', expected_payable=preview.payable_amount
        )
        assert committed == preview

    def test_commit_is_idempotent(self, service, sample_user, make_coupon):
        """A second commit for the same order returns the snapshot and consumes nothing."""
        coupon = make_coupon('SAVE10', usage_limit=5)
        context = CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')

        first = service.commit_adjustment(Decimal('100'), context, 'ORD-1')
        second = service.commit_adjustment(Decimal('100'), context, 'ORD-1')

        assert second == first
        assert db.session.get(Coupon, coupon.id).usage_count == 1
        assert CouponUsage.query.filter_by(coupon_id=coupon.id).count() == 1

    def test_order_reference_of_another_user(self, service, sample_user, other_user):
        service.commit_adjustment(Decimal('10'), CheckoutContext(user_id=sample_user.id), 'ORD-1')
        with pytest.raises(DuplicateError):
            service.commit_adjustment(Decimal('10'), CheckoutContext(user_id=other_user.id), 'ORD-1')

    def test_last_use_goes_to_one_order(self, service, sample_user, other_user, make_coupon):
        """With one use left, the second commit fails and the count stays at the limit."""
        coupon = make_coupon('LAST', usage_limit=1)
        context_a = CheckoutContext(user_id=sample_user.id, coupon_code='LAST')
        context_b = CheckoutContext(user_id=other_user.id, coupon_code='LAST')

        # Both customers saw the coupon as eligible
        service.preview_adjustment(Decimal('50'), context_a)
        service.preview_adjustment(Decimal('50'), context_b)

        service.commit_adjustment(Decimal('50'), context_a, 'ORD-A')
        with pytest.raises(CouponIneligibleError):
            service.commit_adjustment(Decimal('50'), context_b, 'ORD-B')

        assert db.session.get(Coupon, coupon.id).usage_count == 1
        assert OrderAdjustment.query.filter_by(order_reference='ORD-B').first() is None

    def test_guarded_increment_rejects_racing_commit(self, service, sample_user, other_user, make_coupon):
        """A commit whose evaluation predates the winning commit hits the storage guard."""
        coupon = make_coupon('LAST', usage_limit=1)
        stale = service.preview_adjustment(Decimal('50'), CheckoutContext(user_id=other_user.id, coupon_code='LAST'))

        service.commit_adjustment(Decimal('50'), CheckoutContext(user_id=sample_user.id, coupon_code='LAST'), 'ORD-A')

        with pytest.raises(UsageLimitConflictError):
            service.ledger.commit(stale.applied_entities, 'ORD-B', other_user.id)
        db.session.rollback()

        assert db.session.get(Coupon, coupon.id).usage_count == 1

    def test_price_drift_aborts_commit(self, service, sample_user, make_coupon, make_campaign):
        """A campaign running out between preview and commit fails the whole commit."""
        coupon = make_coupon('SAVE10')
        campaign = make_campaign('Flash', usage_limit=1)
        context = CheckoutContext(user_id=sample_user.id, coupon_code='SAVE10')

        preview = service.preview_adjustment(Decimal('100'), context)

        # Someone else takes the last campaign use
        db.session.get(Campaign, campaign.id).usage_count = 1
        db.session.commit()

        with pytest.raises(AdjustmentChangedError):
            service.commit_adjustment(Decimal('100'), context, 'ORD-1', expected_payable=preview.payable_amount)

        assert db.session.get(Coupon, coupon.id).usage_count == 0
        assert OrderAdjustment.query.count() == 0

    def test_cashback_reward_credits_points(self, service, sample_user, make_redemption):
        """Cashback value is credited as points when the order is committed."""
        redemption = make_redemption(sample_user, reward_type=RewardType.CASHBACK, value='25', name='Cashback 25')

        result = service.commit_adjustment(Decimal('100'), CheckoutContext(user_id=sample_user.id), 'ORD-1')

        assert result.total_discount == Decimal('0')
        entity = result.of_kind(EntityKind.REWARD)[0]
        assert entity.fulfillment == 'points_credit'
        assert db.session.get(User, sample_user.id).loyalty_points == 25
        credit = PointsTransaction.query.filter_by(user_id=sample_user.id).one()
        assert credit.transaction_type == TransactionType.REWARD_CREDIT.value
        assert credit.reference_id == str(redemption.id)
        assert db.session.get(RedeemedReward, redemption.id).status == RedemptionStatus.USED.value

    def test_free_product_flagged_for_manual_fulfilment(self, service, sample_user, make_redemption):
        redemption = make_redemption(sample_user, reward_type=RewardType.FREE_PRODUCT, value='0', name='Tote bag')
        result = service.commit_adjustment(Decimal('20'), CheckoutContext(user_id=sample_user.id), 'ORD-1')
        assert result.of_kind(EntityKind.REWARD)[0].fulfillment == 'manual'
        assert db.session.get(RedeemedReward, redemption.id).status == RedemptionStatus.USED.value
