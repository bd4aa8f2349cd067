"""Create Acumatica sync tables

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-17

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f70001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

sync_entity_type = postgresql.ENUM('customer', 'invoice', 'payment', name='syncentitytype', create_type=False)
sync_run_status = postgresql.ENUM('idle', 'running', 'completed', 'failed', name='syncrunstatus', create_type=False)
sync_source = postgresql.ENUM(
    'scheduled_sync', 'manual_sync', 'bulk_fetch', 'auto_backfill', 'webhook',
    name='syncsource',
    create_type=False,
)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=True)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    sync_entity_type.create(bind, checkfirst=True)
    sync_run_status.create(bind, checkfirst=True)
    sync_source.create(bind, checkfirst=True)

    op.create_table(
        'acumatica_sync_credentials',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('acumatica_url', sa.String(500), nullable=False),
        sa.Column('username', sa.String(200), nullable=False),
        sa.Column('password', sa.String(500), nullable=False),
        sa.Column('company', sa.String(200), nullable=True),
        sa.Column('branch', sa.String(200), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'acumatica_session_cache',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('credential_key', sa.String(120), nullable=False),
        sa.Column('session_cookie', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'ix_acumatica_session_cache_lookup',
        'acumatica_session_cache',
        ['credential_key', 'is_valid', 'expires_at'],
    )

    op.create_table(
        'acumatica_customers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', sa.String(60), nullable=False, unique=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_status', sa.String(40), nullable=True),
        sa.Column('customer_class', sa.String(60), nullable=True),
        sa.Column('credit_limit', sa.Numeric(18, 4), nullable=True),
        sa.Column('credit_days_past_due', sa.Integer(), nullable=True),
        sa.Column('credit_verification_rules', sa.String(80), nullable=True),
        sa.Column('credit_hold', sa.Boolean(), nullable=True),
        sa.Column('credit_terms', sa.String(60), nullable=True),
        sa.Column('currency_id', sa.String(10), nullable=True),
        sa.Column('statement_type', sa.String(40), nullable=True),
        sa.Column('print_statements', sa.Boolean(), nullable=True),
        sa.Column('send_statements_by_email', sa.Boolean(), nullable=True),
        sa.Column('main_contact', sa.JSON(), nullable=True),
        sa.Column('primary_contact', sa.JSON(), nullable=True),
        sa.Column('phone_1', sa.String(60), nullable=True),
        sa.Column('email_address', sa.String(255), nullable=True),
        sa.Column('price_class_id', sa.String(60), nullable=True),
        sa.Column('last_modified_datetime', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('last_sync_timestamp', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_acumatica_customers_customer_status', 'acumatica_customers', ['customer_status'])

    op.create_table(
        'acumatica_invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('reference_number', sa.String(30), nullable=False, unique=True),
        sa.Column('type', sa.String(40), nullable=True),
        sa.Column('status', sa.String(40), nullable=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('post_period', sa.String(10), nullable=True),
        sa.Column('customer', sa.String(60), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_order', sa.String(60), nullable=True),
        sa.Column('currency', sa.String(10), nullable=True),
        sa.Column('amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('balance', sa.Numeric(18, 4), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cash_discount_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('terms', sa.String(60), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('last_modified_datetime', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('last_sync_timestamp', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_acumatica_invoices_status', 'acumatica_invoices', ['status'])
    op.create_index('ix_acumatica_invoices_customer', 'acumatica_invoices', ['customer'])

    op.create_table(
        'acumatica_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('reference_number', sa.String(30), nullable=False),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('status', sa.String(40), nullable=True),
        sa.Column('hold', sa.Boolean(), nullable=True),
        sa.Column('application_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('available_balance', sa.Numeric(18, 4), nullable=True),
        sa.Column('customer_id', sa.String(60), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('payment_method', sa.String(60), nullable=True),
        sa.Column('cash_account', sa.String(60), nullable=True),
        sa.Column('payment_ref', sa.String(120), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('currency_id', sa.String(10), nullable=True),
        sa.Column('last_modified_datetime', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('last_sync_timestamp', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('reference_number', 'type', name='uq_acumatica_payments_ref_type'),
    )
    op.create_index('ix_acumatica_payments_status', 'acumatica_payments', ['status'])
    op.create_index('ix_acumatica_payments_customer_id', 'acumatica_payments', ['customer_id'])
    op.create_index('ix_acumatica_payments_created_id', 'acumatica_payments', ['created_at', 'id'])

    op.create_table(
        'payment_invoice_applications',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'payment_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('acumatica_payments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('payment_reference_number', sa.String(30), nullable=False),
        sa.Column('invoice_reference_number', sa.String(30), nullable=False),
        sa.Column('customer_id', sa.String(60), nullable=True),
        sa.Column('amount_paid', sa.Numeric(18, 4), nullable=True),
        sa.Column('balance', sa.Numeric(18, 4), nullable=True),
        sa.Column('cash_discount_taken', sa.Numeric(18, 4), nullable=True),
        sa.Column('post_period', sa.String(10), nullable=True),
        sa.Column('application_period', sa.String(10), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('customer_order', sa.String(60), nullable=True),
        sa.Column('application_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('doc_type', sa.String(40), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            'payment_id',
            'invoice_reference_number',
            name='uq_payment_invoice_applications_payment_invoice',
        ),
    )
    op.create_index(
        'ix_payment_invoice_applications_invoice_ref',
        'payment_invoice_applications',
        ['invoice_reference_number'],
    )

    op.create_table(
        'payment_attachments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'payment_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('acumatica_payments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('payment_reference_number', sa.String(30), nullable=False),
        sa.Column('file_id', sa.String(80), nullable=False),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=True),
        sa.Column('is_check_image', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('payment_id', 'file_id', name='uq_payment_attachments_payment_file'),
    )

    op.create_table(
        'sync_status',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('entity_type', sync_entity_type, nullable=False, unique=True),
        sa.Column('status', sync_run_status, nullable=True),
        sa.Column('last_sync_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_successful_sync', sa.DateTime(timezone=True), nullable=True),
        sa.Column('records_synced', sa.Integer(), nullable=True),
        sa.Column('records_created', sa.Integer(), nullable=True),
        sa.Column('records_updated', sa.Integer(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sync_duration_ms', sa.Integer(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=True),
        sa.Column('sync_enabled', sa.Boolean(), nullable=True),
        sa.Column('sync_interval_minutes', sa.Integer(), nullable=True),
        sa.Column('lookback_minutes', sa.Integer(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'sync_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('entity_type', sync_entity_type, nullable=False),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sync_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sync_run_status, nullable=False),
        sa.Column('records_synced', sa.Integer(), nullable=True),
        sa.Column('records_created', sa.Integer(), nullable=True),
        sa.Column('records_updated', sa.Integer(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('test_mode', sa.Boolean(), nullable=True),
        sa.Column('sync_source', sync_source, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sync_logs_entity_started', 'sync_logs', ['entity_type', 'sync_started_at'])

    op.create_table(
        'backfill_progress',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('backfill_type', sa.String(60), nullable=False, unique=True),
        sa.Column('is_running', sa.Boolean(), nullable=True),
        sa.Column('batch_size', sa.Integer(), nullable=True),
        sa.Column('last_processed_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('last_processed_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=True),
        sa.Column('items_processed', sa.Integer(), nullable=True),
        sa.Column('applications_found', sa.Integer(), nullable=True),
        sa.Column('attachments_found', sa.Integer(), nullable=True),
        sa.Column('errors_count', sa.Integer(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_batch_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'sync_change_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('sync_type', sa.String(40), nullable=False),
        sa.Column('action_type', sa.String(40), nullable=False),
        sa.Column('entity_id', sa.String(80), nullable=True),
        sa.Column('entity_reference', sa.String(80), nullable=True),
        sa.Column('entity_name', sa.String(255), nullable=True),
        sa.Column('change_summary', sa.Text(), nullable=True),
        sa.Column('change_details', sa.JSON(), nullable=True),
        sa.Column('sync_source', sync_source, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sync_change_logs_type_created', 'sync_change_logs', ['sync_type', 'created_at'])
    op.create_index('ix_sync_change_logs_reference', 'sync_change_logs', ['entity_reference'])


def downgrade() -> None:
    op.drop_index('ix_sync_change_logs_reference', table_name='sync_change_logs')
    op.drop_index('ix_sync_change_logs_type_created', table_name='sync_change_logs')
    op.drop_table('sync_change_logs')
    op.drop_table('backfill_progress')
    op.drop_index('ix_sync_logs_entity_started', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_table('sync_status')
    op.drop_table('payment_attachments')
    op.drop_index('ix_payment_invoice_applications_invoice_ref', table_name='payment_invoice_applications')
    op.drop_table('payment_invoice_applications')
    op.drop_index('ix_acumatica_payments_created_id', table_name='acumatica_payments')
    op.drop_index('ix_acumatica_payments_customer_id', table_name='acumatica_payments')
    op.drop_index('ix_acumatica_payments_status', table_name='acumatica_payments')
    op.drop_table('acumatica_payments')
    op.drop_index('ix_acumatica_invoices_customer', table_name='acumatica_invoices')
    op.drop_index('ix_acumatica_invoices_status', table_name='acumatica_invoices')
    op.drop_table('acumatica_invoices')
    op.drop_index('ix_acumatica_customers_customer_status', table_name='acumatica_customers')
    op.drop_table('acumatica_customers')
    op.drop_index('ix_acumatica_session_cache_lookup', table_name='acumatica_session_cache')
    op.drop_table('acumatica_session_cache')
    op.drop_table('acumatica_sync_credentials')

    bind = op.get_bind()
    sync_source.drop(bind, checkfirst=True)
    sync_run_status.drop(bind, checkfirst=True)
    sync_entity_type.drop(bind, checkfirst=True)
