"""Stock ledger schema: products, stock history, sale lines

Revision ID: 0001_stock_ledger
Revises:
Create Date: 2026-10-19

This migration adds:
1. products (current stock level plus write-time derived values)
2. stock_history (append-only, one row per committed stock change)
3. sale_lines (one row per sale line, grouped by sale_ref)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_stock_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. PRODUCTS TABLE
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('product_type', sa.String(length=64), nullable=False, server_default='UNSPECIFIED'),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='unit'),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_stock', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('inventory_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_trend', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('min_stock >= 0', name='ck_products_min_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_status'), ['status'], unique=False)
        batch_op.create_index('ix_products_status_name', ['status', 'name'], unique=False)

    # ==========================================================================
    # 2. STOCK HISTORY TABLE
    # ==========================================================================
    op.create_table('stock_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('previous_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('sale_ref', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('new_quantity = previous_quantity + delta', name='ck_stock_history_delta_consistent'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_history', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_history_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_history_sale_ref'), ['sale_ref'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_history_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_stock_history_product_occurred', ['product_id', 'occurred_at'], unique=False)

    # ==========================================================================
    # 3. SALE LINES TABLE
    # ==========================================================================
    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_ref', sa.String(length=64), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_type', sa.String(length=64), nullable=False, server_default='UNSPECIFIED'),
        sa.Column('customer', sa.String(length=255), nullable=False),
        sa.Column('salesperson', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_lines_quantity_positive'),
        sa.CheckConstraint('total_cents = unit_price_cents * quantity', name='ck_sale_lines_total'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_ref', 'line_number', name='uq_sale_lines_ref_line'),
        sa.UniqueConstraint('idempotency_key', 'line_number', name='uq_sale_lines_idempotency_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_lines_sale_ref'), ['sale_ref'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_lines_idempotency_key'), ['idempotency_key'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_lines_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_sale_lines_product_occurred', ['product_id', 'occurred_at'], unique=False)


def downgrade():
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.drop_index('ix_sale_lines_product_occurred')
        batch_op.drop_index(batch_op.f('ix_sale_lines_occurred_at'))
        batch_op.drop_index(batch_op.f('ix_sale_lines_idempotency_key'))
        batch_op.drop_index(batch_op.f('ix_sale_lines_sale_ref'))
    op.drop_table('sale_lines')

    with op.batch_alter_table('stock_history', schema=None) as batch_op:
        batch_op.drop_index('ix_stock_history_product_occurred')
        batch_op.drop_index(batch_op.f('ix_stock_history_occurred_at'))
        batch_op.drop_index(batch_op.f('ix_stock_history_sale_ref'))
        batch_op.drop_index(batch_op.f('ix_stock_history_product_id'))
    op.drop_table('stock_history')

    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.drop_index('ix_products_status_name')
        batch_op.drop_index(batch_op.f('ix_products_status'))
    op.drop_table('products')
