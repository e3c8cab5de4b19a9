"""initial schema: products, stores, orders, inventory_transactions, activity_log

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('supplier', sa.String(length=200), nullable=True),
        sa.Column('unit', sa.String(length=50), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False),
        sa.Column('current_stock', sa.Integer(), nullable=False),
        sa.Column('delivery_threshold', sa.Numeric(12, 2), nullable=True),
        sa.Column('frequent_order_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rare_order_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_current_stock_non_negative'),
    )
    op.create_index('ix_products_supplier', 'products', ['supplier'])
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('uuid', sa.String(length=36), nullable=False, unique=True),
        sa.Column('order_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=True),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('approved_quantity', sa.Integer(), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_cost', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('urgency', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=200), nullable=True),
        sa.Column('supplier', sa.String(length=200), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=100), nullable=False),
        sa.Column('approved_by', sa.String(length=100), nullable=True),
        sa.Column('requested_date', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('approved_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_batch_number', 'orders', ['batch_number'])
    op.create_index('ix_orders_product_id', 'orders', ['product_id'])
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_requested_date', 'orders', ['requested_date'])

    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('uuid', sa.String(length=36), nullable=False, unique=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('transaction_type', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=200), nullable=True),
        sa.Column('reference_no', sa.String(length=64), nullable=True),
        sa.Column('performed_by', sa.String(length=100), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_inventory_transactions_product_id', 'inventory_transactions', ['product_id'])
    op.create_index('ix_inventory_transactions_reference_no', 'inventory_transactions', ['reference_no'])

    op.create_table(
        'activity_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('actor', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_activity_log_action', 'activity_log', ['action'])
    op.create_index('ix_activity_log_entity_type', 'activity_log', ['entity_type'])
    op.create_index('ix_activity_log_entity_id', 'activity_log', ['entity_id'])
    op.create_index('ix_activity_log_created_at', 'activity_log', ['created_at'])


def downgrade() -> None:
    op.drop_table('activity_log')
    op.drop_table('inventory_transactions')
    op.drop_table('orders')
    op.drop_table('stores')
    op.drop_table('products')
