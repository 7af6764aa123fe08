"""
Tests for the Checkout Service.

Order placement commits the adjustment, creates the order and accrues
points in one transaction.
"""
import pytest
from decimal import Decimal

from app.extensions import db
from app.models import (
    Coupon,
    CampaignType,
    DiscountKind,
    Order,
    OrderAdjustment,
    PointsTransaction,
    TransactionType,
    User,
)
from app.services.checkout_service import CheckoutService
from app.utils.exceptions import (
    UserNotFoundError,
    CouponIneligibleError,
    AdjustmentChangedError,
    DuplicateError,
)


@pytest.fixture
def service(app):
    return CheckoutService()


class TestPlaceOrder:

    def test_order_amounts_come_from_adjustment(self, service, sample_user, make_coupon):
        make_coupon('SAVE10')
        order = service.place_order(sample_user.id, Decimal('80'), coupon_code='SAVE10')

        assert order.order_number.startswith('ORD-')
        assert order.subtotal == Decimal('80.00')
        assert order.discount_amount == Decimal('8.00')
        assert order.total_amount == Decimal('72.00')
        assert order.adjustment.order_reference == order.order_number
        assert order.to_dict()['applied'][0]['label'] == 'SAVE10'

    def test_first_order_earns_bonus(self, service, sample_user):
        """10 points per dollar plus the first-purchase bonus."""
        order = service.place_order(sample_user.id, Decimal('20'))

        assert order.points_earned == 300
        user = db.session.get(User, sample_user.id)
        assert user.loyalty_points == 300
        assert user.total_spent == Decimal('20.00')

    def test_second_order_has_no_bonus(self, service, sample_user):
        service.place_order(sample_user.id, Decimal('20'))
        second = service.place_order(sample_user.id, Decimal('20'))
        assert second.points_earned == 200

    def test_points_use_payable_amount_and_multiplier(self, service, sample_user, make_coupon, make_campaign):
        """Points are earned on what was paid, then multiplied and floored."""
        service.place_order(sample_user.id, Decimal('10'))  # use up the first-purchase bonus
        make_coupon('FIVE', DiscountKind.FIXED, '5')
        make_campaign('Double', CampaignType.POINTS_MULTIPLIER, points_multiplier=Decimal('1.5'))

        order = service.place_order(sample_user.id, Decimal('30.05'), coupon_code='FIVE')

        # floor(25.05 * 10) = 250, then 250 * 1.5
        assert order.points_earned == 375
        assert order.points_multiplier == Decimal('1.5')
        purchase = PointsTransaction.query.filter_by(reference_id=order.order_number).one()
        assert purchase.transaction_type == TransactionType.PURCHASE.value

    def test_small_order_still_counts_toward_tier(self, service, sample_user):
        order = service.place_order(sample_user.id, Decimal('4'))
        assert order.points_earned == 0
        assert db.session.get(User, sample_user.id).total_spent == Decimal('4.00')

    def test_retry_with_same_order_number(self, service, sample_user, make_coupon):
        """A retried placement returns the first order without consuming again."""
        coupon = make_coupon('SAVE10', usage_limit=10)
        first = service.place_order(sample_user.id, Decimal('50'), coupon_code='SAVE10', order_number='ORD-X')
        second = service.place_order(sample_user.id, Decimal('50'), coupon_code='SAVE10', order_number='ORD-X')

        assert second.id == first.id
        assert Order.query.count() == 1
        assert db.session.get(Coupon, coupon.id).usage_count == 1
        assert db.session.get(User, sample_user.id).loyalty_points == first.points_earned

    def test_order_number_of_another_user(self, service, sample_user, other_user):
        service.place_order(sample_user.id, Decimal('10'), order_number='ORD-X')
        with pytest.raises(DuplicateError):
            service.place_order(other_user.id, Decimal('10'), order_number='ORD-X')

    def test_failure_leaves_nothing_behind(self, service, sample_user, make_coupon):
        """A stale preview amount aborts the order with no usage recorded."""
        coupon = make_coupon('SAVE10')
        with pytest.raises(AdjustmentChangedError):
            service.place_order(sample_user.id, Decimal('50'), coupon_code='SAVE10', expected_payable='50')

        assert Order.query.count() == 0
        assert OrderAdjustment.query.count() == 0
        assert db.session.get(Coupon, coupon.id).usage_count == 0
        assert db.session.get(User, sample_user.id).loyalty_points == 0

    def test_ineligible_coupon(self, service, sample_user, make_coupon):
        make_coupon('MIN50', min_purchase=Decimal('50'))
        with pytest.raises(CouponIneligibleError):
            service.place_order(sample_user.id, Decimal('20'), coupon_code='MIN50')

    def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            service.place_order(9999, Decimal('10'))
