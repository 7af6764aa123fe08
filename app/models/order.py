"""
Orders and the committed price adjustment behind each one.
"""
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any
from ..extensions import db


class OrderAdjustment(db.Model):
    """
    Snapshot of the stacked discounts committed for one order.

    order_reference is unique: a second commit for the same order finds this
    row and returns it instead of consuming coupons or rewards again.
    """
    __tablename__ = 'order_adjustments'

    id = db.Column(db.Integer, primary_key=True)
    order_reference = db.Column(db.String(100), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    order_total = db.Column(db.Numeric(12, 2), nullable=False)
    total_discount = db.Column(db.Numeric(12, 2), nullable=False)
    payable_amount = db.Column(db.Numeric(12, 2), nullable=False)
    free_shipping = db.Column(db.Boolean, default=False, nullable=False)
    points_multiplier = db.Column(db.Numeric(4, 2), default=Decimal('1'), nullable=False)

    # StackResult.to_dict() at commit time
    snapshot = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<OrderAdjustment {self.order_reference}: -{self.total_discount}>'


class Order(db.Model):
    """
    Confirmed order. Never updated after insert: every amount on it comes
    from an adjustment computed before the row was created.
    """
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(100), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    adjustment_id = db.Column(db.Integer, db.ForeignKey('order_adjustments.id'), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    free_shipping = db.Column(db.Boolean, default=False, nullable=False)
    points_multiplier = db.Column(db.Numeric(4, 2), default=Decimal('1'), nullable=False)
    points_earned = db.Column(db.Integer, default=0, nullable=False)

    status = db.Column(db.String(20), default='confirmed', nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    adjustment = db.relationship('OrderAdjustment')

    def __repr__(self):
        return f'<Order {self.order_number}: {self.total_amount}>'

    @staticmethod
    def generate_order_number() -> str:
        """Generate unique order reference (ORD-YYYYMMDD-XXXXXXXX)."""
        today = datetime.utcnow().strftime('%Y%m%d')
        return f'ORD-{today}-{secrets.token_hex(4).upper()}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'order_number': self.order_number,
            'user_id': self.user_id,
            'subtotal': float(self.subtotal),
            'discount_amount': float(self.discount_amount),
            'total_amount': float(self.total_amount),
            'free_shipping': self.free_shipping,
            'points_multiplier': float(self.points_multiplier),
            'points_earned': self.points_earned,
            'status': self.status,
            'applied': self.adjustment.snapshot.get('applied_entities', []) if self.adjustment else [],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
