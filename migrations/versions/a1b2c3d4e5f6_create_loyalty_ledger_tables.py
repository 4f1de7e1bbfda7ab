"""Create loyalty ledger tables.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create merchants, offers, ledger, summary, audit and outbox tables."""
    op.create_table(
        'merchants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('commerce_domain', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_merchants'),
        sa.UniqueConstraint('slug', name='uq_merchants_slug'),
    )

    op.create_table(
        'loyalty_offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('offer_name', sa.String(255), nullable=False),
        sa.Column('brand_name', sa.String(255), nullable=False),
        sa.Column('size_group', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('required_quantity', sa.Integer(), nullable=False),
        sa.Column('window_months', sa.Integer(), nullable=False, server_default='12'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_offers'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_offers_merchant_id_merchants'),
        sa.UniqueConstraint('merchant_id', 'brand_name', 'size_group', name='uq_loyalty_offers_brand_size'),
        sa.CheckConstraint('required_quantity > 0', name='ck_loyalty_offers_required_quantity_positive'),
        sa.CheckConstraint('window_months > 0', name='ck_loyalty_offers_window_months_positive'),
    )
    op.create_index('ix_loyalty_offers_merchant_active', 'loyalty_offers', ['merchant_id', 'is_active'])

    op.create_table(
        'loyalty_qualifying_variations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('variation_id', sa.String(100), nullable=False),
        sa.Column('item_id', sa.String(100), nullable=True),
        sa.Column('item_name', sa.String(255), nullable=True),
        sa.Column('variation_name', sa.String(255), nullable=True),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_qualifying_variations'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_qualifying_variations_merchant_id_merchants'),
        sa.ForeignKeyConstraint(['offer_id'], ['loyalty_offers.id'], ondelete='CASCADE',
                                name='fk_loyalty_qualifying_variations_offer_id_loyalty_offers'),
        sa.UniqueConstraint('merchant_id', 'offer_id', 'variation_id', name='uq_loyalty_variations_offer_variation'),
    )
    op.create_index('ix_loyalty_variations_lookup', 'loyalty_qualifying_variations',
                    ['merchant_id', 'variation_id', 'is_active'])

    op.create_table(
        'loyalty_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='in_progress'),
        sa.Column('current_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_quantity', sa.Integer(), nullable=False),
        sa.Column('window_start_date', sa.Date(), nullable=True),
        sa.Column('window_end_date', sa.Date(), nullable=True),
        sa.Column('earned_at', sa.DateTime(), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(), nullable=True),
        sa.Column('redemption_order_id', sa.String(100), nullable=True),
        sa.Column('redemption_type', sa.String(30), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revocation_reason', sa.String(255), nullable=True),
        sa.Column('discount_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_rewards'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_rewards_merchant_id_merchants'),
        sa.ForeignKeyConstraint(['offer_id'], ['loyalty_offers.id'],
                                name='fk_loyalty_rewards_offer_id_loyalty_offers'),
    )
    op.create_index(
        'uq_loyalty_rewards_one_in_progress', 'loyalty_rewards',
        ['merchant_id', 'offer_id', 'customer_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )
    op.create_index('ix_loyalty_rewards_customer_status', 'loyalty_rewards', ['merchant_id', 'customer_id', 'status'])
    op.create_index('ix_loyalty_rewards_discount', 'loyalty_rewards', ['merchant_id', 'discount_id'])

    op.create_table(
        'loyalty_purchase_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.String(100), nullable=False),
        sa.Column('order_id', sa.String(100), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=True),
        sa.Column('variation_id', sa.String(100), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('purchased_at', sa.DateTime(), nullable=False),
        sa.Column('window_start_date', sa.Date(), nullable=False),
        sa.Column('window_end_date', sa.Date(), nullable=False),
        sa.Column('reward_id', sa.Integer(), nullable=True),
        sa.Column('is_refund', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('original_event_id', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('source', sa.String(20), server_default='webhook'),
        sa.Column('customer_source', sa.String(50), nullable=True),
        sa.Column('receipt_url', sa.Text(), nullable=True),
        sa.Column('payment_type', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_purchase_events'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_purchase_events_merchant_id_merchants'),
        sa.ForeignKeyConstraint(['offer_id'], ['loyalty_offers.id'],
                                name='fk_loyalty_purchase_events_offer_id_loyalty_offers'),
        sa.ForeignKeyConstraint(['reward_id'], ['loyalty_rewards.id'], ondelete='SET NULL',
                                name='fk_loyalty_purchase_events_reward_id_loyalty_rewards'),
        sa.ForeignKeyConstraint(['original_event_id'], ['loyalty_purchase_events.id'],
                                name='fk_loyalty_purchase_events_original_event_id_loyalty_purchase_events'),
        sa.UniqueConstraint('merchant_id', 'idempotency_key', name='uq_loyalty_purchase_events_idempotency'),
        sa.CheckConstraint('quantity != 0', name='ck_loyalty_purchase_events_quantity_nonzero'),
    )
    op.create_index('ix_loyalty_purchase_events_progress', 'loyalty_purchase_events',
                    ['merchant_id', 'offer_id', 'customer_id', 'reward_id'])
    op.create_index('ix_loyalty_purchase_events_order', 'loyalty_purchase_events', ['merchant_id', 'order_id'])
    op.create_index('ix_loyalty_purchase_events_window', 'loyalty_purchase_events', ['merchant_id', 'window_end_date'])
    op.create_index('ix_loyalty_purchase_events_original', 'loyalty_purchase_events', ['original_event_id'])

    op.create_table(
        'loyalty_processed_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(100), nullable=False),
        sa.Column('customer_id', sa.String(100), nullable=True),
        sa.Column('result_type', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('qualifying_items', sa.Integer(), server_default='0'),
        sa.Column('total_line_items', sa.Integer(), server_default='0'),
        sa.Column('source', sa.String(20), server_default='webhook'),
        sa.Column('processed_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_processed_orders'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_processed_orders_merchant_id_merchants'),
        sa.UniqueConstraint('merchant_id', 'order_id', name='uq_loyalty_processed_orders_order'),
    )

    op.create_table(
        'loyalty_customer_summaries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.String(100), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('current_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('required_quantity', sa.Integer(), nullable=False),
        sa.Column('window_start_date', sa.Date(), nullable=True),
        sa.Column('window_end_date', sa.Date(), nullable=True),
        sa.Column('has_earned_reward', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('earned_reward_id', sa.Integer(), nullable=True),
        sa.Column('total_lifetime_purchases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_rewards_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_rewards_redeemed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_purchase_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_customer_summaries'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_customer_summaries_merchant_id_merchants'),
        sa.ForeignKeyConstraint(['offer_id'], ['loyalty_offers.id'],
                                name='fk_loyalty_customer_summaries_offer_id_loyalty_offers'),
        sa.ForeignKeyConstraint(['earned_reward_id'], ['loyalty_rewards.id'], ondelete='SET NULL',
                                name='fk_loyalty_customer_summaries_earned_reward_id_loyalty_rewards'),
        sa.UniqueConstraint('merchant_id', 'customer_id', 'offer_id', name='uq_loyalty_customer_summaries_key'),
    )

    op.create_table(
        'loyalty_audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=True),
        sa.Column('reward_id', sa.Integer(), nullable=True),
        sa.Column('purchase_event_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.String(100), nullable=True),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.Column('old_state', sa.String(30), nullable=True),
        sa.Column('new_state', sa.String(30), nullable=True),
        sa.Column('old_quantity', sa.Integer(), nullable=True),
        sa.Column('new_quantity', sa.Integer(), nullable=True),
        sa.Column('triggered_by', sa.String(30), nullable=False, server_default='SYSTEM'),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_audit_events'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_audit_events_merchant_id_merchants'),
    )
    op.create_index('ix_loyalty_audit_events_merchant_created', 'loyalty_audit_events', ['merchant_id', 'created_at'])
    op.create_index('ix_loyalty_audit_events_customer', 'loyalty_audit_events', ['merchant_id', 'customer_id'])

    op.create_table(
        'loyalty_discount_outbox',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.Integer(), nullable=False),
        sa.Column('reward_id', sa.Integer(), nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.String(100), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('discount_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_discount_outbox'),
        sa.ForeignKeyConstraint(['merchant_id'], ['merchants.id'], ondelete='CASCADE',
                                name='fk_loyalty_discount_outbox_merchant_id_merchants'),
        sa.ForeignKeyConstraint(['reward_id'], ['loyalty_rewards.id'], ondelete='CASCADE',
                                name='fk_loyalty_discount_outbox_reward_id_loyalty_rewards'),
        sa.ForeignKeyConstraint(['offer_id'], ['loyalty_offers.id'],
                                name='fk_loyalty_discount_outbox_offer_id_loyalty_offers'),
    )
    op.create_index('ix_loyalty_discount_outbox_due', 'loyalty_discount_outbox', ['status', 'next_attempt_at'])
    op.create_index('ix_loyalty_discount_outbox_reward', 'loyalty_discount_outbox', ['reward_id'])


def downgrade():
    """Drop all loyalty ledger tables."""
    op.drop_table('loyalty_discount_outbox')
    op.drop_table('loyalty_audit_events')
    op.drop_table('loyalty_customer_summaries')
    op.drop_table('loyalty_processed_orders')
    op.drop_table('loyalty_purchase_events')
    op.drop_table('loyalty_rewards')
    op.drop_table('loyalty_qualifying_variations')
    op.drop_table('loyalty_offers')
    op.drop_table('merchants')
