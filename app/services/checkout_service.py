"""
Checkout Service - turns a previewed cart into a confirmed order.

One database transaction covers the whole placement:
adjustment commit (coupon/campaign/reward usage) -> Order row -> points accrual.
Any failure rolls everything back, so an order never exists without its
usage having been recorded, and usage is never recorded without an order.
"""
from typing import Optional, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models.order import Order, OrderAdjustment
from ..models.user import User
from ..utils.exceptions import (
    StorefrontError,
    UserNotFoundError,
    DuplicateError,
    StorageError,
)
from .loyalty_service import LoyaltyService
from .stacking_service import AdjustmentService, CheckoutContext


class CheckoutService:
    """Place orders against the stacked price adjustment."""

    def __init__(self, adjustment_service: AdjustmentService = None, loyalty_service: LoyaltyService = None):
        self.loyalty_service = loyalty_service or LoyaltyService()
        self.adjustment_service = adjustment_service or AdjustmentService(loyalty_service=self.loyalty_service)

    def place_order(
        self,
        user_id: int,
        order_total,
        coupon_code: Optional[str] = None,
        reward_ids: Optional[Sequence[int]] = None,
        expected_payable=None,
        order_number: Optional[str] = None
    ) -> Order:
        """
        Confirm an order.

        Args:
            user_id: Customer placing the order
            order_total: Cart total before discounts
            coupon_code: Optional coupon submitted at checkout
            reward_ids: Optional subset of approved redemptions to use
            expected_payable: Payable amount the customer saw in the preview
            order_number: Client-supplied reference; retries with the same
                number return the existing order

        Returns:
            The confirmed Order
        """
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        if order_number:
            existing = Order.query.filter_by(order_number=order_number).first()
            if existing:
                if existing.user_id != user_id:
                    raise DuplicateError('Order', order_number)
                current_app.logger.info(f"Order {order_number} already placed, returning existing order")
                return existing
        else:
            order_number = Order.generate_order_number()

        context = CheckoutContext(
            user_id=user_id,
            coupon_code=coupon_code,
            reward_ids=list(reward_ids) if reward_ids is not None else None
        )

        try:
            adjustment = self.adjustment_service.commit_adjustment(
                order_total,
                context,
                order_number,
                expected_payable=expected_payable,
                commit=False
            )
            adjustment_row = OrderAdjustment.query.filter_by(order_reference=order_number).one()

            order = Order(
                order_number=order_number,
                user_id=user_id,
                adjustment_id=adjustment_row.id,
                subtotal=adjustment.order_total,
                discount_amount=adjustment.total_discount,
                total_amount=adjustment.payable_amount,
                free_shipping=adjustment.free_shipping,
                points_multiplier=adjustment.points_multiplier,
                points_earned=0
            )
            db.session.add(order)
            db.session.flush()

            order.points_earned = self.loyalty_service.process_order_points(
                order, adjustment.points_multiplier, commit=False
            )
            db.session.commit()

        except StorefrontError:
            db.session.rollback()
            raise
        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.warning(f"Duplicate order placement {order_number}: {e}")
            raise DuplicateError('Order', order_number)
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Order placement failed for user {user_id}: {e}")
            raise StorageError(original_error=e)

        current_app.logger.info(
            f"Order placed: {order.order_number} user {user_id} "
            f"{order.subtotal} -{order.discount_amount} = {order.total_amount}, "
            f"+{order.points_earned} pts"
        )
        return order

    def get_order(self, user_id: int, order_number: str) -> Optional[Order]:
        return Order.query.filter_by(user_id=user_id, order_number=order_number).first()
