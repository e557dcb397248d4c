"""Initial stock ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Tenancy and catalog (businesses, locations, products, variations) with soft-delete state
2. Stock ledger entries and cached variation/location balances
3. Transfers and transfer items
4. Sequence counters
5. Source documents (sales, purchase receipts, customer returns, stock corrections)
6. Idempotency keys

Quantities are stored as BIGINT ten-thousandths of a unit.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _lifecycle_columns():
    return [
        sa.Column('record_state', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    # ==========================================================================
    # 1. TENANCY AND CATALOG
    # ==========================================================================
    op.create_table('businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('businesses', schema=None) as batch_op:
        batch_op.create_index('ix_businesses_code', ['code'], unique=True)
        batch_op.create_index('ix_businesses_record_state', ['record_state'], unique=False)

    op.create_table('business_locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'code', name='uq_locations_business_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('business_locations', schema=None) as batch_op:
        batch_op.create_index('ix_business_locations_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_business_locations_record_state', ['record_state'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_serialized', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('alert_quantity', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_products_record_state', ['record_state'], unique=False)
        batch_op.create_index('ix_products_business_state', ['business_id', 'record_state'], unique=False)

    op.create_table('product_variations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'sku', name='uq_variations_business_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_variations', schema=None) as batch_op:
        batch_op.create_index('ix_product_variations_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_product_variations_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_product_variations_record_state', ['record_state'], unique=False)

    # ==========================================================================
    # 2. LEDGER AND BALANCES
    # ==========================================================================
    op.create_table('stock_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_change', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_ledger_entries', schema=None) as batch_op:
        batch_op.create_index('ix_stock_ledger_entries_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_stock_ledger_entries_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_stock_ledger_entries_product_variation_id', ['product_variation_id'], unique=False)
        batch_op.create_index('ix_stock_ledger_entries_transaction_type', ['transaction_type'], unique=False)
        batch_op.create_index('ix_stock_ledger_entries_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_ledger_key_occurred', ['product_variation_id', 'location_id', 'occurred_at', 'id'], unique=False)
        batch_op.create_index('ix_ledger_business_created', ['business_id', 'created_at'], unique=False)
        batch_op.create_index('ix_ledger_reference', ['reference_type', 'reference_id'], unique=False)

    op.create_table('variation_location_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('qty_available', sa.BigInteger(), nullable=False),
        sa.Column('last_entry_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.ForeignKeyConstraint(['last_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_variation_id', 'location_id', name='uq_balances_variation_location'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('variation_location_balances', schema=None) as batch_op:
        batch_op.create_index('ix_variation_location_balances_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_variation_location_balances_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_balances_location_qty', ['location_id', 'qty_available'], unique=False)

    # ==========================================================================
    # 3. TRANSFERS
    # ==========================================================================
    op.create_table('stock_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('from_location_id', sa.Integer(), nullable=False),
        sa.Column('to_location_id', sa.Integer(), nullable=False),
        sa.Column('transfer_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('stock_deducted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('stock_reversed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('in_transit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('arrived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('sent_by_user_id', sa.Integer(), nullable=True),
        sa.Column('verified_by_user_id', sa.Integer(), nullable=True),
        sa.Column('completed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['from_location_id'], ['business_locations.id'], ),
        sa.ForeignKeyConstraint(['to_location_id'], ['business_locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'transfer_number', name='uq_transfers_business_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_transfers', schema=None) as batch_op:
        batch_op.create_index('ix_stock_transfers_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_stock_transfers_from_location_id', ['from_location_id'], unique=False)
        batch_op.create_index('ix_stock_transfers_to_location_id', ['to_location_id'], unique=False)
        batch_op.create_index('ix_stock_transfers_status', ['status'], unique=False)
        batch_op.create_index('ix_stock_transfers_created_at', ['created_at'], unique=False)
        batch_op.create_index('ix_transfers_business_status_created', ['business_id', 'status', 'created_at'], unique=False)

    op.create_table('stock_transfer_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.BigInteger(), nullable=False),
        sa.Column('received_quantity', sa.BigInteger(), nullable=True),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('serial_numbers', sa.JSON(), nullable=True),
        sa.Column('received_serial_numbers', sa.JSON(), nullable=True),
        sa.Column('out_entry_id', sa.Integer(), nullable=True),
        sa.Column('in_entry_id', sa.Integer(), nullable=True),
        sa.Column('reversal_entry_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['out_entry_id'], ['stock_ledger_entries.id'], ),
        sa.ForeignKeyConstraint(['in_entry_id'], ['stock_ledger_entries.id'], ),
        sa.ForeignKeyConstraint(['reversal_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id', 'product_variation_id', name='uq_transfer_items_variation'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_transfer_items', schema=None) as batch_op:
        batch_op.create_index('ix_stock_transfer_items_transfer_id', ['transfer_id'], unique=False)
        batch_op.create_index('ix_stock_transfer_items_product_variation_id', ['product_variation_id'], unique=False)

    # ==========================================================================
    # 4. SEQUENCE COUNTERS
    # ==========================================================================
    op.create_table('sequence_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('scope_date', sa.Date(), nullable=False),
        sa.Column('sequence_type', sa.String(length=32), nullable=False, server_default='invoice'),
        sa.Column('current_value', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'location_id', 'scope_date', 'sequence_type', name='uq_sequence_counters_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sequence_counters', schema=None) as batch_op:
        batch_op.create_index('ix_sequence_counters_business_id', ['business_id'], unique=False)

    # ==========================================================================
    # 5. SOURCE DOCUMENTS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='final'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'invoice_number', name='uq_sales_business_invoice'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_sales_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_sales_created_at', ['created_at'], unique=False)

    op.create_table('sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.BigInteger(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_items', schema=None) as batch_op:
        batch_op.create_index('ix_sale_items_sale_id', ['sale_id'], unique=False)

    op.create_table('purchase_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'receipt_number', name='uq_receipts_business_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('purchase_receipts', schema=None) as batch_op:
        batch_op.create_index('ix_purchase_receipts_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_purchase_receipts_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_purchase_receipts_status', ['status'], unique=False)

    op.create_table('purchase_receipt_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.BigInteger(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['receipt_id'], ['purchase_receipts.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('purchase_receipt_items', schema=None) as batch_op:
        batch_op.create_index('ix_purchase_receipt_items_receipt_id', ['receipt_id'], unique=False)

    op.create_table('customer_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('return_number', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'return_number', name='uq_returns_business_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_returns', schema=None) as batch_op:
        batch_op.create_index('ix_customer_returns_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_customer_returns_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_customer_returns_sale_id', ['sale_id'], unique=False)

    op.create_table('customer_return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('sale_item_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.BigInteger(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['return_id'], ['customer_returns.id'], ),
        sa.ForeignKeyConstraint(['sale_item_id'], ['sale_items.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('customer_return_items', schema=None) as batch_op:
        batch_op.create_index('ix_customer_return_items_return_id', ['return_id'], unique=False)
        batch_op.create_index('ix_customer_return_items_sale_item_id', ['sale_item_id'], unique=False)

    op.create_table('stock_corrections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('product_variation_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('cached_quantity', sa.BigInteger(), nullable=False),
        sa.Column('derived_quantity', sa.BigInteger(), nullable=False),
        sa.Column('target_quantity', sa.BigInteger(), nullable=False),
        sa.Column('ledger_entry_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['business_locations.id'], ),
        sa.ForeignKeyConstraint(['product_variation_id'], ['product_variations.id'], ),
        sa.ForeignKeyConstraint(['ledger_entry_id'], ['stock_ledger_entries.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_corrections', schema=None) as batch_op:
        batch_op.create_index('ix_stock_corrections_business_id', ['business_id'], unique=False)
        batch_op.create_index('ix_stock_corrections_location_id', ['location_id'], unique=False)
        batch_op.create_index('ix_stock_corrections_product_variation_id', ['product_variation_id'], unique=False)

    # ==========================================================================
    # 6. IDEMPOTENCY KEYS
    # ==========================================================================
    op.create_table('idempotency_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(length=64), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope', 'key', name='uq_idempotency_scope_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('idempotency_keys', schema=None) as batch_op:
        batch_op.create_index('ix_idempotency_keys_created_at', ['created_at'], unique=False)


def downgrade():
    for table in (
        'idempotency_keys',
        'stock_corrections',
        'customer_return_items',
        'customer_returns',
        'purchase_receipt_items',
        'purchase_receipts',
        'sale_items',
        'sales',
        'sequence_counters',
        'stock_transfer_items',
        'stock_transfers',
        'variation_location_balances',
        'stock_ledger_entries',
        'product_variations',
        'products',
        'business_locations',
        'businesses',
    ):
        op.drop_table(table)
