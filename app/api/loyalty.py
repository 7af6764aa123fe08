"""
Loyalty API endpoints for storefront customers.

Handles:
- Points balance, tier progress and history
- Approved rewards usable at checkout
- Reward redemption requests
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_user
from ..models import Reward
from ..services.loyalty_service import LoyaltyService

loyalty_bp = Blueprint('loyalty', __name__)


@loyalty_bp.route('', methods=['GET'])
@require_user
def get_loyalty_summary():
    """
    Get the current user's loyalty summary.

    Query params:
        limit: Number of recent transactions (default 20, max 100)
    """
    limit = min(request.args.get('limit', 20, type=int), 100)
    return jsonify(LoyaltyService().get_summary(g.user_id, history_limit=limit))


@loyalty_bp.route('/rewards', methods=['GET'])
@require_user
def list_rewards():
    """List the active rewards catalog, cheapest first."""
    rewards = Reward.query.filter_by(is_active=True).order_by(Reward.points_cost.asc()).all()
    return jsonify({
        'rewards': [r.to_dict() for r in rewards],
        'count': len(rewards)
    })


@loyalty_bp.route('/applicable-rewards', methods=['GET'])
@require_user
def applicable_rewards():
    """Approved, unused rewards grouped by type."""
    return jsonify({'rewards': LoyaltyService().get_applicable_rewards(g.user_id)})


@loyalty_bp.route('/rewards/<int:reward_id>/redeem', methods=['POST'])
@require_user
def redeem_reward(reward_id):
    """
    Request a reward redemption.

    Points are deducted when an administrator approves the request.
    """
    redemption = LoyaltyService().request_redemption(g.user_id, reward_id)
    return jsonify({
        'success': True,
        'redemption': redemption.to_dict(),
        'message': 'Redemption requested, pending approval'
    }), 201
