"""
Storefront user and loyalty tier.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from ..extensions import db


class LoyaltyTier(str, Enum):
    """Loyalty ranks, derived from cumulative spend."""
    BRONZE = 'BRONZE'
    SILVER = 'SILVER'
    GOLD = 'GOLD'
    PLATINUM = 'PLATINUM'


class User(db.Model):
    """
    Storefront customer (or administrator).

    Only the columns the pricing engine reads or writes live here; profile,
    address book and authentication data belong to the account service.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255))
    role = db.Column(db.String(20), default='customer', nullable=False)  # customer, admin

    # Loyalty running totals (written only by LoyaltyService.award)
    loyalty_points = db.Column(db.Integer, default=0, nullable=False)
    total_spent = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    loyalty_tier = db.Column(db.String(20), default=LoyaltyTier.BRONZE.value, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<User {self.email}>'

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'loyalty_points': self.loyalty_points or 0,
            'total_spent': float(self.total_spent or 0),
            'loyalty_tier': self.loyalty_tier,
        }
