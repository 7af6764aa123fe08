"""
Tests for the maintenance CLI commands.
"""
from datetime import datetime, timedelta
from decimal import Decimal

from app.extensions import db
from app.models import Coupon, Campaign, User, RedemptionStatus


class TestPromotionCommands:

    def test_deactivate_expired(self, app, make_coupon, make_campaign):
        yesterday = datetime.utcnow() - timedelta(days=1)
        expired_coupon = make_coupon('OLD', ends_at=yesterday)
        live_coupon = make_coupon('NEW', ends_at=datetime.utcnow() + timedelta(days=1))
        expired_campaign = make_campaign('Old sale', ends_at=yesterday)

        result = app.test_cli_runner().invoke(args=['promotions', 'deactivate-expired'])

        assert result.exit_code == 0
        assert 'TOTAL: 2 promotion(s) deactivated' in result.output
        assert db.session.get(Coupon, expired_coupon.id).is_active is False
        assert db.session.get(Coupon, live_coupon.id).is_active is True
        assert db.session.get(Campaign, expired_campaign.id).is_active is False

    def test_dry_run_changes_nothing(self, app, make_coupon):
        coupon = make_coupon('OLD', ends_at=datetime.utcnow() - timedelta(days=1))

        result = app.test_cli_runner().invoke(args=['promotions', 'deactivate-expired', '--dry-run'])

        assert '[DRY RUN]' in result.output
        assert db.session.get(Coupon, coupon.id).is_active is True


class TestLoyaltyCommands:

    def test_pending_redemptions(self, app, sample_user, make_redemption):
        make_redemption(sample_user, status=RedemptionStatus.PENDING, name='Tote bag')

        result = app.test_cli_runner().invoke(args=['loyalty', 'pending-redemptions'])

        assert result.exit_code == 0
        assert 'Tote bag' in result.output

    def test_sync_tiers(self, app, sample_user):
        sample_user.total_spent = Decimal('150')
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['loyalty', 'sync-tiers'])

        assert 'BRONZE -> SILVER' in result.output
        assert db.session.get(User, sample_user.id).loyalty_tier == 'SILVER'
