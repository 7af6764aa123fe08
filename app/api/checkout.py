"""
Checkout API endpoints.

Handles:
- Adjustment preview for the current cart total
- Order placement against the previewed adjustment
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_user
from ..services.checkout_service import CheckoutService
from ..services.stacking_service import AdjustmentService, CheckoutContext
from ..utils.errors import bad_request, ErrorCode

checkout_bp = Blueprint('checkout', __name__)


def _parse_checkout_body(data):
    """Extract (order_total, coupon_code, reward_ids) or an error response."""
    if 'order_total' not in data:
        return None, bad_request('order_total is required', ErrorCode.MISSING_FIELD)

    coupon_code = data.get('coupon_code')
    if coupon_code is not None and not isinstance(coupon_code, str):
        return None, bad_request('coupon_code must be a string', ErrorCode.VALIDATION_ERROR)

    reward_ids = data.get('reward_ids')
    if reward_ids is not None:
        # bool is an int subclass; true/false are not redemption ids
        if not isinstance(reward_ids, list) or not all(
            isinstance(r, int) and not isinstance(r, bool) for r in reward_ids
        ):
            return None, bad_request('reward_ids must be a list of integers', ErrorCode.VALIDATION_ERROR)

    return (data['order_total'], coupon_code or None, reward_ids), None


@checkout_bp.route('/preview', methods=['POST'])
@require_user
def preview():
    """
    Preview the stacked adjustment for a cart.

    JSON body:
        order_total: Cart total before discounts (required)
        coupon_code: Coupon to apply
        reward_ids: Approved redemptions to use (default: all)

    Returns:
        StackResult as JSON
    """
    data = request.get_json(silent=True) or {}
    parsed, error = _parse_checkout_body(data)
    if error:
        return error
    order_total, coupon_code, reward_ids = parsed

    context = CheckoutContext(user_id=g.user_id, coupon_code=coupon_code, reward_ids=reward_ids)
    result = AdjustmentService().preview_adjustment(order_total, context)
    return jsonify(result.to_dict())


@checkout_bp.route('/orders', methods=['POST'])
@require_user
def place_order():
    """
    Place an order.

    JSON body:
        order_total: Cart total before discounts (required)
        coupon_code: Coupon to apply
        reward_ids: Approved redemptions to use (default: all)
        expected_payable: Payable amount shown in the preview (required)
        order_number: Idempotency key; retries return the same order
    """
    data = request.get_json(silent=True) or {}
    parsed, error = _parse_checkout_body(data)
    if error:
        return error
    order_total, coupon_code, reward_ids = parsed
    if data.get('expected_payable') is None:
        return bad_request('expected_payable is required', ErrorCode.MISSING_FIELD)

    order = CheckoutService().place_order(
        g.user_id,
        order_total,
        coupon_code=coupon_code,
        reward_ids=reward_ids,
        expected_payable=data.get('expected_payable'),
        order_number=data.get('order_number')
    )
    return jsonify({'success': True, 'order': order.to_dict()}), 201
