"""
Admin API routes for the storefront pricing engine.

Authentication:
- X-User-Id header of a user with the admin role
"""
from flask import Blueprint, request, jsonify

from ..middleware.auth import require_user, require_admin
from ..models import RedeemedReward, RedemptionStatus
from ..services.loyalty_service import LoyaltyService
from ..utils.errors import bad_request, ErrorCode

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/redemptions', methods=['GET'])
@require_user
@require_admin
def list_redemptions():
    """
    List reward redemptions.

    Query params:
        status: Filter by status (default: pending)
    """
    status = request.args.get('status', RedemptionStatus.PENDING.value)
    if status not in {s.value for s in RedemptionStatus}:
        return bad_request(f'Unknown status: {status}', ErrorCode.VALIDATION_ERROR)

    redemptions = RedeemedReward.query.filter_by(status=status).order_by(
        RedeemedReward.redeemed_at.asc()
    ).all()
    return jsonify({
        'redemptions': [r.to_dict() for r in redemptions],
        'count': len(redemptions)
    })


@admin_bp.route('/redemptions/<int:redemption_id>', methods=['PUT'])
@require_user
@require_admin
def review_redemption(redemption_id):
    """
    Approve or reject a pending redemption.

    JSON body:
        action: 'approve' or 'reject'
    """
    data = request.get_json(silent=True) or {}
    action = data.get('action')

    service = LoyaltyService()
    if action == 'approve':
        redemption = service.approve_redemption(redemption_id)
    elif action == 'reject':
        redemption = service.reject_redemption(redemption_id)
    else:
        return bad_request("action must be 'approve' or 'reject'", ErrorCode.VALIDATION_ERROR)

    return jsonify({'success': True, 'redemption': redemption.to_dict()})


@admin_bp.route('/referrals', methods=['POST'])
@require_user
@require_admin
def award_referral():
    """
    Credit a referral bonus once the referred user has signed up.

    JSON body:
        referrer_id: User who made the referral (required)
        referred_user_id: New user (required)
    """
    data = request.get_json(silent=True) or {}
    for field in ('referrer_id', 'referred_user_id'):
        if not isinstance(data.get(field), int):
            return bad_request(f'{field} must be an integer', ErrorCode.MISSING_FIELD)

    awarded = LoyaltyService().process_referral_bonus(data['referrer_id'], data['referred_user_id'])
    return jsonify({
        'success': True,
        'awarded': awarded,
        'message': 'Referral bonus awarded' if awarded else 'Referral bonus already awarded'
    })
