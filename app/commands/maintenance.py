"""
Maintenance commands.

These commands can be run manually or via cron jobs:

# Deactivate expired promotions (run daily at midnight)
0 0 * * * cd /app && flask promotions deactivate-expired

# Re-derive loyalty tiers after a bulk spend import
flask loyalty sync-tiers --dry-run
"""
from datetime import datetime

import click
from flask.cli import with_appcontext
from ..extensions import db
from ..models import Coupon, Campaign, RedeemedReward, RedemptionStatus
from ..services.loyalty_service import LoyaltyService


@click.group('loyalty')
def loyalty_cli():
    """Loyalty program commands."""
    pass


@click.group('promotions')
def promotions_cli():
    """Coupon and campaign commands."""
    pass


@loyalty_cli.command('pending-redemptions')
@click.option('--limit', type=int, default=50, help='Maximum rows to show (default: 50)')
@with_appcontext
def pending_redemptions(limit):
    """List reward redemptions waiting for an administrator."""
    redemptions = RedeemedReward.query.filter_by(
        status=RedemptionStatus.PENDING.value
    ).order_by(RedeemedReward.redeemed_at.asc()).limit(limit).all()

    if not redemptions:
        click.echo("No pending redemptions")
        return

    click.echo(f"\n{len(redemptions)} pending redemption(s):")
    for r in redemptions:
        click.echo(
            f"  #{r.id} user {r.user_id}: {r.reward.name} "
            f"({r.reward.points_cost} pts) requested {r.redeemed_at:%Y-%m-%d %H:%M}"
        )


@loyalty_cli.command('sync-tiers')
@click.option('--dry-run', is_flag=True, help='Preview without changing tiers')
@with_appcontext
def sync_tiers(dry_run):
    """
    Re-derive every user's tier from cumulative spend.

    Upgrades award the one-time tier bonus.
    """
    changes = LoyaltyService().sync_tiers(dry_run=dry_run)

    for change in changes:
        click.echo(f"  User {change['user_id']}: {change['from_tier']} -> {change['to_tier']}")

    click.echo(f"\n{'[DRY RUN] ' if dry_run else ''}TOTAL: {len(changes)} tier change(s)")


@promotions_cli.command('deactivate-expired')
@click.option('--dry-run', is_flag=True, help='Preview without deactivating')
@with_appcontext
def deactivate_expired(dry_run):
    """
    Switch off coupons and campaigns whose end date has passed.

    Run this daily.
    """
    now = datetime.utcnow()
    total = 0

    for model, label, name_attr in ((Coupon, 'coupon', 'code'), (Campaign, 'campaign', 'title')):
        expired = model.query.filter(
            model.is_active.is_(True),
            model.ends_at.isnot(None),
            model.ends_at < now
        ).all()

        for entity in expired:
            click.echo(f"  {label} {getattr(entity, name_attr)} ended {entity.ends_at:%Y-%m-%d}")
            if not dry_run:
                entity.is_active = False
        total += len(expired)

    if not dry_run:
        db.session.commit()

    click.echo(f"\n{'[DRY RUN] ' if dry_run else ''}TOTAL: {total} promotion(s) deactivated")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(loyalty_cli)
    app.cli.add_command(promotions_cli)
