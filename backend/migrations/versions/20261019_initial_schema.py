"""Initial schema: businesses, catalog, promotions, orders, status ledger, settlement

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. Businesses and their API tokens
2. Catalog items (unique code per business)
3. Promotions and per-item promotion details
4. Orders, order line items and the append-only status event ledger
5. Order costs (optimistic version column) and settlement leases
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. BUSINESSES
    # ==========================================================================
    op.create_table('businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_businesses')),
        sqlite_autoincrement=True
    )

    op.create_table('business_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], name=op.f('fk_business_tokens_business_id_businesses')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_business_tokens')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('business_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_business_tokens_business_id'), ['business_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_business_tokens_token_hash'), ['token_hash'], unique=True)

    # ==========================================================================
    # 2. CATALOG
    # ==========================================================================
    op.create_table('items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=3), nullable=False),
        sa.Column('visible', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], name=op.f('fk_items_business_id_businesses')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_items')),
        sa.UniqueConstraint('business_id', 'code', name='uq_items_business_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_items_business_id'), ['business_id'], unique=False)
        batch_op.create_index('ix_items_business_visible', ['business_id', 'visible'], unique=False)

    # ==========================================================================
    # 3. PROMOTIONS
    # ==========================================================================
    op.create_table('promotions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('public_name', sa.String(length=255), nullable=True),
        sa.Column('cover', sa.String(length=512), nullable=True),
        sa.Column('visible', sa.Boolean(), nullable=False),
        sa.Column('start_promotion_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_promotion_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], name=op.f('fk_promotions_business_id_businesses')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_promotions')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promotions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotions_business_id'), ['business_id'], unique=False)
        batch_op.create_index(
            'ix_promotions_business_window',
            ['business_id', 'start_promotion_date', 'end_promotion_date'],
            unique=False,
        )

    op.create_table('promotion_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('promotion_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('discount', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('base_amount', sa.Integer(), nullable=True),
        sa.Column('add_amount', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], name=op.f('fk_promotion_details_item_id_items')),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id'], name=op.f('fk_promotion_details_promotion_id_promotions')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_promotion_details')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('promotion_details', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotion_details_promotion_id'), ['promotion_id'], unique=False)
        batch_op.create_index('ix_promotion_details_item', ['item_id'], unique=False)

    # ==========================================================================
    # 4. ORDERS AND STATUS LEDGER
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('address_id', sa.Integer(), nullable=True),
        sa.Column('delivery_type', sa.String(length=16), nullable=False),
        sa.Column('delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('bonus', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('payment_id', sa.String(length=128), nullable=True),
        sa.Column('extra', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], name=op.f('fk_orders_business_id_businesses')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_orders')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_business_id'), ['business_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_user_id'), ['user_id'], unique=False)
        batch_op.create_index('ix_orders_business_created', ['business_id', 'created_at'], unique=False)

    op.create_table('order_status_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('is_canceled', sa.Boolean(), nullable=False),
        sa.Column('log_timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name=op.f('fk_order_status_events_order_id_orders')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_order_status_events')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_status_events', schema=None) as batch_op:
        batch_op.create_index('ix_order_status_events_order_ts', ['order_id', 'log_timestamp', 'id'], unique=False)

    op.create_table('order_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], name=op.f('fk_order_line_items_item_id_items')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name=op.f('fk_order_line_items_order_id_orders')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_order_line_items')),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_line_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_line_items_order_id'), ['order_id'], unique=False)

    # ==========================================================================
    # 5. COSTS AND SETTLEMENT LEASES
    # ==========================================================================
    op.create_table('order_costs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('service_fee', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name=op.f('fk_order_costs_order_id_orders')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_order_costs')),
        sa.UniqueConstraint('order_id', name='uq_order_costs_order'),
        sqlite_autoincrement=True
    )

    op.create_table('settlement_leases',
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('holder', sa.String(length=64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name=op.f('fk_settlement_leases_order_id_orders')),
        sa.PrimaryKeyConstraint('order_id', name=op.f('pk_settlement_leases'))
    )


def downgrade():
    op.drop_table('settlement_leases')
    op.drop_table('order_costs')
    with op.batch_alter_table('order_line_items', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_order_line_items_order_id'))
    op.drop_table('order_line_items')
    with op.batch_alter_table('order_status_events', schema=None) as batch_op:
        batch_op.drop_index('ix_order_status_events_order_ts')
    op.drop_table('order_status_events')
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index('ix_orders_business_created')
        batch_op.drop_index(batch_op.f('ix_orders_user_id'))
        batch_op.drop_index(batch_op.f('ix_orders_business_id'))
    op.drop_table('orders')
    with op.batch_alter_table('promotion_details', schema=None) as batch_op:
        batch_op.drop_index('ix_promotion_details_item')
        batch_op.drop_index(batch_op.f('ix_promotion_details_promotion_id'))
    op.drop_table('promotion_details')
    with op.batch_alter_table('promotions', schema=None) as batch_op:
        batch_op.drop_index('ix_promotions_business_window')
        batch_op.drop_index(batch_op.f('ix_promotions_business_id'))
    op.drop_table('promotions')
    with op.batch_alter_table('items', schema=None) as batch_op:
        batch_op.drop_index('ix_items_business_visible')
        batch_op.drop_index(batch_op.f('ix_items_business_id'))
    op.drop_table('items')
    with op.batch_alter_table('business_tokens', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_business_tokens_token_hash'))
        batch_op.drop_index(batch_op.f('ix_business_tokens_business_id'))
    op.drop_table('business_tokens')
    op.drop_table('businesses')
