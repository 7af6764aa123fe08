"""
Coupons and the per-order coupon usage log.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy.orm import validates
from ..extensions import db


class DiscountKind(str, Enum):
    """How a coupon (or discount campaign) reduces the order."""
    PERCENTAGE = 'percentage'        # value is a percent of the base
    FIXED = 'fixed'                  # value is a currency amount
    FREE_SHIPPING = 'free_shipping'  # no money off, shipping waived


class Coupon(db.Model):
    """
    Code-identified, store-wide discount.

    Codes are case-insensitive and stored upper-cased. usage_count is only
    ever incremented by the usage ledger at order confirmation.
    """
    __tablename__ = 'coupons'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.String(500))

    # Discount
    discount_kind = db.Column(db.String(20), nullable=False, default=DiscountKind.PERCENTAGE.value)
    discount_value = db.Column(db.Numeric(10, 2), default=Decimal('0'))
    max_discount = db.Column(db.Numeric(10, 2))   # Cap for percentage coupons
    min_purchase = db.Column(db.Numeric(10, 2))   # Compared with the pre-discount total

    # Validity window (either side may be open)
    starts_at = db.Column(db.DateTime)
    ends_at = db.Column(db.DateTime)

    # Limits
    usage_limit = db.Column(db.Integer)            # null = unlimited
    usage_count = db.Column(db.Integer, default=0, nullable=False)
    usage_limit_per_user = db.Column(db.Integer)   # null = unlimited

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    usages = db.relationship('CouponUsage', backref='coupon', lazy='dynamic')

    def __repr__(self):
        return f'<Coupon {self.code}>'

    @validates('code')
    def normalize_code(self, key, value):
        return normalize_coupon_code(value)

    @property
    def kind(self) -> Optional[DiscountKind]:
        try:
            return DiscountKind(self.discount_kind)
        except ValueError:
            return None

    @classmethod
    def find_by_code(cls, code: str) -> Optional['Coupon']:
        return cls.query.filter_by(code=normalize_coupon_code(code)).first()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize coupon to dictionary."""
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_kind': self.discount_kind,
            'discount_value': float(self.discount_value or 0),
            'max_discount': float(self.max_discount) if self.max_discount is not None else None,
            'min_purchase': float(self.min_purchase) if self.min_purchase is not None else None,
            'starts_at': self.starts_at.isoformat() if self.starts_at else None,
            'ends_at': self.ends_at.isoformat() if self.ends_at else None,
            'usage_limit': self.usage_limit,
            'usage_count': self.usage_count,
            'usage_limit_per_user': self.usage_limit_per_user,
            'is_active': self.is_active,
        }


class CouponUsage(db.Model):
    """
    One row per coupon consumed by a confirmed order.

    Per-user limits are counted from this table. The (coupon, order) unique
    constraint makes a retried commit unable to record a second use.
    """
    __tablename__ = 'coupon_usages'

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    order_reference = db.Column(db.String(100), nullable=False)

    discount_amount = db.Column(db.Numeric(10, 2), default=Decimal('0'))
    used_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('coupon_id', 'order_reference', name='uq_coupon_usage_order'),
        db.Index('ix_coupon_usages_coupon_user', 'coupon_id', 'user_id'),
    )

    def __repr__(self):
        return f'<CouponUsage coupon={self.coupon_id} order={self.order_reference}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'coupon_id': self.coupon_id,
            'user_id': self.user_id,
            'order_reference': self.order_reference,
            'discount_amount': float(self.discount_amount or 0),
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }


def normalize_coupon_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    return code.strip().upper()
