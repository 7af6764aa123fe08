"""
Shared pytest fixtures.

Every test gets a fresh in-memory database. The app fixture keeps its
application context pushed for the whole test, so fixtures, services and
requests made through the test client share one session.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from app import create_app
from app.extensions import db
from app.models import (
    User,
    Coupon,
    Campaign,
    CampaignType,
    DiscountKind,
    Reward,
    RewardType,
    RedeemedReward,
    RedemptionStatus,
)


@pytest.fixture
def app():
    """Create test application."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def sample_user(app):
    """A customer with an empty points balance."""
    user = User(email='customer@example.com', name='Test Customer')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def other_user(app):
    """A second customer."""
    user = User(email='other@example.com', name='Other Customer')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    """An administrator."""
    user = User(email='admin@example.com', name='Admin', role='admin')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_headers(sample_user):
    """Headers identifying sample_user."""
    return {'X-User-Id': str(sample_user.id), 'Content-Type': 'application/json'}


@pytest.fixture
def admin_headers(admin_user):
    """Headers identifying admin_user."""
    return {'X-User-Id': str(admin_user.id), 'Content-Type': 'application/json'}


@pytest.fixture
def now():
    return datetime(2026, 6, 1, 12, 0, 0)


@pytest.fixture
def make_coupon(app):
    """Factory for coupons. Defaults to an active, unlimited 10% coupon."""
    def _make(code='SAVE10', discount_kind=DiscountKind.PERCENTAGE, discount_value='10', **kwargs):
        coupon = Coupon(
            code=code,
            discount_kind=DiscountKind(discount_kind).value,
            discount_value=Decimal(str(discount_value)),
            **kwargs
        )
        db.session.add(coupon)
        db.session.commit()
        return coupon
    return _make


@pytest.fixture
def make_campaign(app):
    """Factory for campaigns. Defaults to an active 5% discount campaign."""
    def _make(title='Summer Sale', campaign_type=CampaignType.DISCOUNT, **kwargs):
        campaign_type = CampaignType(campaign_type)
        if campaign_type == CampaignType.DISCOUNT:
            kwargs.setdefault('discount_kind', DiscountKind.PERCENTAGE.value)
            kwargs.setdefault('discount_value', Decimal('5'))
        campaign = Campaign(title=title, campaign_type=campaign_type.value, **kwargs)
        db.session.add(campaign)
        db.session.commit()
        return campaign
    return _make


@pytest.fixture
def make_reward(app):
    """Factory for catalog rewards."""
    def _make(name='$5 Off', reward_type=RewardType.DISCOUNT, points_cost=500, value='5', **kwargs):
        reward = Reward(
            name=name,
            reward_type=RewardType(reward_type).value,
            points_cost=points_cost,
            value=Decimal(str(value)),
            **kwargs
        )
        db.session.add(reward)
        db.session.commit()
        return reward
    return _make


@pytest.fixture
def make_redemption(app, make_reward):
    """Factory for redemptions of a (new) reward, APPROVED by default."""
    def _make(user, reward=None, status=RedemptionStatus.APPROVED, redeemed_at=None, **reward_kwargs):
        reward = reward or make_reward(**reward_kwargs)
        redemption = RedeemedReward(
            user_id=user.id,
            reward_id=reward.id,
            status=RedemptionStatus(status).value,
            redeemed_at=redeemed_at or datetime.utcnow() - timedelta(days=1)
        )
        db.session.add(redemption)
        db.session.commit()
        return redemption
    return _make
