"""booking engine schema

Revision ID: 4c1f0a9d2e77
Revises:
Create Date: 2026-10-19 10:12:44.381902

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1f0a9d2e77'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_BOOKING = sa.text("status IN ('pending', 'accepted', 'in_progress')")


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Parties
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('is_professional', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('account_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 2. Services
    op.create_table(
        'services',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('allow_recurring', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('cancellation_hours', sa.Integer(), nullable=True, server_default='24'),
        sa.Column('rescheduling_hours', sa.Integer(), nullable=True, server_default='24'),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_bookings_per_day', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_services_provider_id', 'services', ['provider_id'])
    op.create_index('ix_services_status', 'services', ['status'])

    # 3. Weekly availability
    op.create_table(
        'availability_windows',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('provider_id', 'day_of_week', 'start_time', 'end_time',
                            name='uq_availability_provider_day_range'),
        sa.CheckConstraint('start_time < end_time', name='ck_availability_range'),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_availability_day'),
    )
    op.create_index('ix_availability_windows_provider_id', 'availability_windows', ['provider_id'])

    # 4. Recurring series
    op.create_table(
        'recurring_booking_series',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('interval', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('occurrences', sa.Integer(), nullable=True),
        sa.Column('days_of_week', sa.JSON(), nullable=True),
        sa.Column('day_of_month', sa.Integer(), nullable=True),
        sa.Column('time_slot', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('materialized_until', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_recurring_booking_series_customer_id', 'recurring_booking_series', ['customer_id'])
    op.create_index('ix_recurring_booking_series_provider_id', 'recurring_booking_series', ['provider_id'])
    op.create_index('ix_recurring_booking_series_status', 'recurring_booking_series', ['status'])

    # 5. Bookings
    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('recurring_series_id', sa.Uuid(), sa.ForeignKey('recurring_booking_series.id'), nullable=True),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('service_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('penalty_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_no_show', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_bookings_service_id', 'bookings', ['service_id'])
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_recurring_series_id', 'bookings', ['recurring_series_id'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_provider_date', 'bookings', ['provider_id', 'booking_date'])

    # Double-booking backstop: one active booking per provider start time
    op.create_index(
        'uq_bookings_provider_active_start', 'bookings',
        ['provider_id', 'booking_date', 'start_time'],
        unique=True,
        postgresql_where=ACTIVE_BOOKING,
        sqlite_where=ACTIVE_BOOKING,
    )

    # 6. Policies
    op.create_table(
        'booking_policies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('hours_before_booking', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('penalty_type', sa.String(20), nullable=False, server_default='none'),
        sa.Column('penalty_value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('allow_exceptions', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('exception_conditions', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_booking_policies_service_id', 'booking_policies', ['service_id'])

    # 7. Payments and escrow
    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('booking_id', sa.Uuid(), sa.ForeignKey('bookings.id'), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('service_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_gateway_error', sa.Text(), nullable=True),
        sa.Column('escrow_release_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('disputed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_escrow_release_date', 'payments', ['escrow_release_date'])

    # 8. Materialized slots
    op.create_table(
        'time_slots',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.Uuid(), sa.ForeignKey('services.id', ondelete='SET NULL'), nullable=True),
        sa.Column('availability_id', sa.Uuid(),
                  sa.ForeignKey('availability_windows.id', ondelete='SET NULL'), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('is_booked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('booking_id', sa.Uuid(), sa.ForeignKey('bookings.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('provider_id', 'date', 'start_time', name='uq_time_slots_provider_date_start'),
    )
    op.create_index('ix_time_slots_provider_date', 'time_slots', ['provider_id', 'date'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('time_slots')
    op.drop_table('payments')
    op.drop_table('booking_policies')
    op.drop_index('uq_bookings_provider_active_start', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('recurring_booking_series')
    op.drop_table('availability_windows')
    op.drop_table('services')
    op.drop_table('users')
