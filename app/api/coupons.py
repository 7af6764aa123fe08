"""
Coupon API endpoints.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_user
from ..services.stacking_service import AdjustmentService
from ..utils.errors import bad_request, ErrorCode

coupons_bp = Blueprint('coupons', __name__)


@coupons_bp.route('/apply', methods=['POST'])
@require_user
def apply_coupon():
    """
    Check a coupon code against a cart total without consuming it.

    JSON body:
        code: Coupon code (required)
        order_total: Cart total before discounts (required)
    """
    data = request.get_json(silent=True) or {}
    for field in ('code', 'order_total'):
        if field not in data:
            return bad_request(f'{field} is required', ErrorCode.MISSING_FIELD)

    coupon = AdjustmentService().preview_coupon(str(data['code']), data['order_total'], g.user_id)
    return jsonify({'valid': True, 'coupon': coupon})
