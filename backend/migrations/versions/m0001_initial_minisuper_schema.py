"""initial minisuper schema

Revision ID: m0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete minisuper POS schema:
- users / session_tokens: staff accounts and hashed bearer tokens
- categories / providers / products: catalog
- inventory_batches: per-lot stock with expiry (FEFO allocation)
- cash_registers / cash_sessions: register shifts, one OPEN per user and per register
- sales / sale_lines / payment_splits: completed and cancelled sales
- exchange_rates: one BCV rate per calendar day
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'm0001'
down_revision = None
branch_labels = None
depends_on = None


def _created_at(name='created_at'):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _created_at(),
        _created_at('last_used_at'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=100), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])

    # ============================================================================
    # catalog
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('contact', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=30), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=50), nullable=False),
        sa.Column('internal_code', sa.String(length=20), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('sale_price_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('cost_price_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_of_measure', sa.String(length=16), nullable=False, server_default='unidad'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _created_at(),
        _created_at('updated_at'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('internal_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_barcode', 'products', ['barcode'], unique=True)
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_provider_id', 'products', ['provider_id'])
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    # ============================================================================
    # inventory_batches: current_quantity never negative
    # ============================================================================
    op.create_table(
        'inventory_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('lot_number', sa.String(length=50), nullable=True),
        sa.Column('initial_quantity', sa.Integer(), nullable=False),
        sa.Column('current_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('intake_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        _created_at('received_at'),
        sa.Column('received_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('current_quantity >= 0', name='ck_batches_current_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.ForeignKeyConstraint(['received_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_batches_product_id', 'inventory_batches', ['product_id'])
    op.create_index('ix_inventory_batches_provider_id', 'inventory_batches', ['provider_id'])
    op.create_index('ix_inventory_batches_received_at', 'inventory_batches', ['received_at'])
    op.create_index('ix_batches_product_expiry_received', 'inventory_batches',
                    ['product_id', 'expiry_date', 'received_at'])

    # ============================================================================
    # cash_registers / cash_sessions
    # ============================================================================
    op.create_table(
        'cash_registers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_number', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('register_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_registers_is_active', 'cash_registers', ['is_active'])

    op.create_table(
        'cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        _created_at('opened_at'),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('opening_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('opening_ves', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('closing_usd', sa.Numeric(12, 2), nullable=True),
        sa.Column('closing_ves', sa.Numeric(14, 2), nullable=True),
        sa.Column('total_sales_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('transaction_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('closing_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_sessions_register_id', 'cash_sessions', ['register_id'])
    op.create_index('ix_cash_sessions_user_id', 'cash_sessions', ['user_id'])
    op.create_index('ix_cash_sessions_status', 'cash_sessions', ['status'])
    op.create_index('ix_cash_sessions_opened_at', 'cash_sessions', ['opened_at'])
    # At most one OPEN session per user and per register
    op.create_index(
        'uq_cash_sessions_open_user', 'cash_sessions', ['user_id'], unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )
    op.create_index(
        'uq_cash_sessions_open_register', 'cash_sessions', ['register_id'], unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # ============================================================================
    # sales / sale_lines / payment_splits
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=16), nullable=False),
        sa.Column('register_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('subtotal_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('subtotal_ves', sa.Numeric(14, 2), nullable=False),
        sa.Column('discount_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_ves', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('tax_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_ves', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_ves', sa.Numeric(14, 2), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('received_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('received_ves', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('change_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('change_ves', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        _created_at(),
        sa.Column('cancel_reason', sa.String(length=500), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_number', name='uq_sales_sale_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_register_id', 'sales', ['register_id'])
    op.create_index('ix_sales_user_id', 'sales', ['user_id'])
    op.create_index('ix_sales_cash_session_id', 'sales', ['cash_session_id'])
    op.create_index('ix_sales_payment_method', 'sales', ['payment_method'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])
    op.create_index('ix_sales_status_created', 'sales', ['status', 'created_at'])

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit_price_ves', sa.Numeric(14, 2), nullable=False),
        sa.Column('subtotal_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('subtotal_ves', sa.Numeric(14, 2), nullable=False),
        sa.Column('restored_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])
    op.create_index('ix_sale_lines_product_id', 'sale_lines', ['product_id'])
    op.create_index('ix_sale_lines_batch_id', 'sale_lines', ['batch_id'])

    op.create_table(
        'payment_splits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('amount_usd', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount_ves', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_splits_sale_id', 'payment_splits', ['sale_id'])

    # ============================================================================
    # exchange_rates: one row per calendar day
    # ============================================================================
    op.create_table(
        'exchange_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rate_date', sa.Date(), nullable=False),
        sa.Column('bcv_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('parallel_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='manual'),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_exchange_rates_rate_date', 'exchange_rates', ['rate_date'], unique=True)


def downgrade():
    op.drop_table('exchange_rates')
    op.drop_table('payment_splits')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_index('uq_cash_sessions_open_register', table_name='cash_sessions')
    op.drop_index('uq_cash_sessions_open_user', table_name='cash_sessions')
    op.drop_table('cash_sessions')
    op.drop_table('cash_registers')
    op.drop_table('inventory_batches')
    op.drop_table('products')
    op.drop_table('providers')
    op.drop_table('categories')
    op.drop_table('session_tokens')
    op.drop_table('users')
