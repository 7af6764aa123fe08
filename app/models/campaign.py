"""
Code-free promotional campaigns.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any
from ..extensions import db


class CampaignType(str, Enum):
    """Which single mechanism a campaign applies."""
    DISCOUNT = 'discount'                    # money off, see discount_kind
    FREE_SHIPPING = 'free_shipping'
    POINTS_MULTIPLIER = 'points_multiplier'  # loyalty accrual multiplier
    BOGO = 'bogo'                            # approximated as 50% off the base


class Campaign(db.Model):
    """
    Merchant-wide promotion applied automatically at checkout.

    Every eligible campaign applies: discounts add up, free shipping is OR-ed
    and the points multiplier is the maximum across campaigns.
    """
    __tablename__ = 'campaigns'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))

    campaign_type = db.Column(db.String(30), nullable=False)
    discount_kind = db.Column(db.String(20))          # DISCOUNT campaigns only
    discount_value = db.Column(db.Numeric(10, 2))
    min_purchase = db.Column(db.Numeric(10, 2))
    points_multiplier = db.Column(db.Numeric(4, 2), default=Decimal('1'), nullable=False)

    starts_at = db.Column(db.DateTime)
    ends_at = db.Column(db.DateTime)

    usage_limit = db.Column(db.Integer)
    usage_count = db.Column(db.Integer, default=0, nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Campaign {self.title} ({self.campaign_type})>'

    @property
    def kind(self) -> Optional[CampaignType]:
        """Parsed campaign type, None when the stored type is unrecognized."""
        try:
            return CampaignType(self.campaign_type)
        except ValueError:
            return None

    @classmethod
    def active(cls) -> List['Campaign']:
        """Active-flagged campaigns, oldest first. Date and usage checks are the evaluator's job."""
        return cls.query.filter(cls.is_active.is_(True)).order_by(cls.id.asc()).all()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'campaign_type': self.campaign_type,
            'discount_kind': self.discount_kind,
            'discount_value': float(self.discount_value) if self.discount_value is not None else None,
            'min_purchase': float(self.min_purchase) if self.min_purchase is not None else None,
            'points_multiplier': float(self.points_multiplier or 1),
            'starts_at': self.starts_at.isoformat() if self.starts_at else None,
            'ends_at': self.ends_at.isoformat() if self.ends_at else None,
            'usage_limit': self.usage_limit,
            'usage_count': self.usage_count,
            'is_active': self.is_active,
        }


class CampaignUsage(db.Model):
    """
    One row per campaign applied to a confirmed order.

    The (campaign, order) unique constraint keeps a retried commit from
    counting the same order against usage_limit twice.
    """
    __tablename__ = 'campaign_usages'

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.Integer, db.ForeignKey('campaigns.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    order_reference = db.Column(db.String(100), nullable=False)

    discount_amount = db.Column(db.Numeric(10, 2), default=Decimal('0'))
    used_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('campaign_id', 'order_reference', name='uq_campaign_usage_order'),
    )

    def __repr__(self):
        return f'<CampaignUsage campaign={self.campaign_id} order={self.order_reference}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'campaign_id': self.campaign_id,
            'user_id': self.user_id,
            'order_reference': self.order_reference,
            'discount_amount': float(self.discount_amount or 0),
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }
