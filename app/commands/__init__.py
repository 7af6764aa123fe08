"""
CLI Commands for the storefront pricing engine.

Usage:
    flask loyalty pending-redemptions             # List redemptions awaiting approval
    flask loyalty sync-tiers --dry-run            # Re-derive tiers from cumulative spend
    flask promotions deactivate-expired --dry-run # Switch off coupons/campaigns past their end date
"""
from .maintenance import init_app as init_maintenance_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_maintenance_commands(app)
