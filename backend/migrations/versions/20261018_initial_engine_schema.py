"""Initial session and billing engine schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration creates:
1. Registry tables (payers, vehicles, parking_lots)
2. Rate policies with one active policy per (lot, rate_type)
3. Parking sessions with one ACTIVE session per payer
4. Charge records, invoices, payment confirmations, billing backlog
5. Billing ledger and security events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. REGISTRY
    # ==========================================================================
    op.create_table('payers',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('tier', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('parking_lots',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('vehicles',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['payer_id'], ['payers.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('vehicles', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_vehicles_payer_id'), ['payer_id'], unique=False)

    # ==========================================================================
    # 2. RATE POLICIES
    # ==========================================================================
    op.create_table('rate_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.String(length=64), nullable=False),
        sa.Column('rate_type', sa.String(length=16), nullable=False),
        sa.Column('base_price_per_hour_cents', sa.Integer(), nullable=False),
        sa.Column('max_daily_price_cents', sa.Integer(), nullable=False),
        sa.Column('normal_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gold_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('platinum_rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['lot_id'], ['parking_lots.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rate_policies', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rate_policies_lot_id'), ['lot_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rate_policies_is_active'), ['is_active'], unique=False)
        batch_op.create_index(
            'uq_rate_policies_active_lot_type',
            ['lot_id', 'rate_type'],
            unique=True,
            sqlite_where=sa.text('is_active = 1'),
            postgresql_where=sa.text('is_active'),
        )

    # ==========================================================================
    # 3. PARKING SESSIONS
    # ==========================================================================
    op.create_table('parking_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('vehicle_id', sa.String(length=32), nullable=False),
        sa.Column('lot_id', sa.String(length=64), nullable=False),
        sa.Column('rate_type', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('entry_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('exit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('entry_agent_id', sa.String(length=64), nullable=False),
        sa.Column('exit_agent_id', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['payer_id'], ['payers.id'], ),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ),
        sa.ForeignKeyConstraint(['lot_id'], ['parking_lots.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('parking_sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_parking_sessions_payer_id'), ['payer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_parking_sessions_vehicle_id'), ['vehicle_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_parking_sessions_status'), ['status'], unique=False)
        batch_op.create_index('ix_parking_sessions_payer_entry', ['payer_id', 'entry_at'], unique=False)
        batch_op.create_index('ix_parking_sessions_lot_status', ['lot_id', 'status'], unique=False)
        batch_op.create_index(
            'uq_parking_sessions_active_payer',
            ['payer_id'],
            unique=True,
            sqlite_where=sa.text("status = 'ACTIVE'"),
            postgresql_where=sa.text("status = 'ACTIVE'"),
        )

    # ==========================================================================
    # 4. BILLING
    # ==========================================================================
    op.create_table('charge_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('lot_id', sa.String(length=64), nullable=False),
        sa.Column('rate_policy_id', sa.Integer(), nullable=False),
        sa.Column('rate_type', sa.String(length=16), nullable=False),
        sa.Column('tier', sa.String(length=16), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('billable_hours', sa.Numeric(precision=10, scale=4), nullable=False),
        sa.Column('hourly_rate_cents', sa.Numeric(precision=12, scale=4), nullable=False),
        sa.Column('was_capped', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_overdue', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('overdue_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('overdue_surcharge_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['session_id'], ['parking_sessions.id'], ),
        sa.ForeignKeyConstraint(['payer_id'], ['payers.id'], ),
        sa.ForeignKeyConstraint(['lot_id'], ['parking_lots.id'], ),
        sa.ForeignKeyConstraint(['rate_policy_id'], ['rate_policies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('charge_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_charge_records_payer_id'), ['payer_id'], unique=False)
        batch_op.create_index('ix_charge_records_payer_paid', ['payer_id', 'is_paid'], unique=False)

    op.create_table('invoices',
        sa.Column('id', sa.String(length=96), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('charge_ids', sa.JSON(), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_duration_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_charges_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_overdue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_due_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['payer_id'], ['payers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payer_id', 'period', name='uq_invoices_payer_period'),
    )
    with op.batch_alter_table('invoices', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoices_payer_id'), ['payer_id'], unique=False)
        batch_op.create_index('ix_invoices_status', ['payment_status'], unique=False)

    op.create_table('payment_confirmations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('invoice_id', sa.String(length=96), nullable=True),
        sa.Column('charge_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('confirmed_by', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payer_id'], ['payers.id'], ),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['charge_id'], ['charge_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_confirmations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_confirmations_payer_id'), ['payer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_confirmations_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_confirmations_charge_id'), ['charge_id'], unique=False)

    op.create_table('billing_backlog',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=False),
        sa.Column('lot_id', sa.String(length=64), nullable=False),
        sa.Column('rate_type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['parking_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('billing_backlog', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_billing_backlog_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_billing_backlog_status'), ['status'], unique=False)

    # ==========================================================================
    # 5. AUDIT
    # ==========================================================================
    op.create_table('billing_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=96), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=True),
        sa.Column('session_id', sa.Integer(), nullable=True),
        sa.Column('charge_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.String(length=96), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('billing_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_billing_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index('ix_billing_events_payer_occurred', ['payer_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_billing_events_entity', ['entity_type', 'entity_id'], unique=False)

    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('payer_id', sa.String(length=64), nullable=True),
        sa.Column('vehicle_id', sa.String(length=32), nullable=True),
        sa.Column('agent_id', sa.String(length=64), nullable=True),
        sa.Column('lot_id', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_security_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_payer_id'), ['payer_id'], unique=False)
        batch_op.create_index('ix_security_events_occurred', ['occurred_at'], unique=False)


def downgrade():
    # Drop tables in reverse order of creation (respect foreign keys)
    op.drop_table('security_events')
    op.drop_table('billing_events')
    op.drop_table('billing_backlog')
    op.drop_table('payment_confirmations')
    op.drop_table('invoices')
    op.drop_table('charge_records')
    op.drop_table('parking_sessions')
    op.drop_table('rate_policies')
    op.drop_table('vehicles')
    op.drop_table('parking_lots')
    op.drop_table('payers')
