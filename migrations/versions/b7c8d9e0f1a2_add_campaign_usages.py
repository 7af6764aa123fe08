"""Add per-order campaign usage log.

Revision ID: b7c8d9e0f1a2
Revises: a1b2c3d4e5f6
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c8d9e0f1a2'
down_revision = 'a1b2c3d4e5f6'
branch_labels = None
depends_on = None


def upgrade():
    """Create campaign_usages, unique per (campaign, order)."""
    op.create_table(
        'campaign_usages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('order_reference', sa.String(100), nullable=False),
        sa.Column('discount_amount', sa.Numeric(10, 2), server_default='0'),
        sa.Column('used_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.UniqueConstraint('campaign_id', 'order_reference', name='uq_campaign_usage_order'),
    )
    op.create_index('ix_campaign_usages_campaign_id', 'campaign_usages', ['campaign_id'])
    op.create_index('ix_campaign_usages_user_id', 'campaign_usages', ['user_id'])


def downgrade():
    """Drop campaign_usages."""
    op.drop_index('ix_campaign_usages_user_id', table_name='campaign_usages')
    op.drop_index('ix_campaign_usages_campaign_id', table_name='campaign_usages')
    op.drop_table('campaign_usages')
