"""Create promoter commission, payout, guest flag and outbox tables

Revision ID: create_settlement_tables
Revises: create_registration_ledger
Create Date: 2026-10-05

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'create_settlement_tables'
down_revision: Union[str, None] = 'create_registration_ledger'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


booking_status = sa.Enum('pending', 'confirmed', 'completed', 'cancelled', name='booking_status')
party_guest_status = sa.Enum('invited', 'joined', 'removed', 'declined', name='party_guest_status')
commission_type = sa.Enum('flat_per_head', 'tiered_thresholds', name='commission_type')
payment_status = sa.Enum('pending', 'paid', 'confirmed', name='payment_status')
# Already created with event_promoters.
existing_commission_type = postgresql.ENUM('flat_per_head', 'tiered_thresholds', name='commission_type', create_type=False)


def upgrade() -> None:
    op.create_table(
        'table_bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('table_name', sa.String(255), nullable=True),
        sa.Column('guest_name', sa.String(255), nullable=True),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('promoter_id', sa.Integer(), nullable=True),
        sa.Column('status', booking_status, nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['promoter_id'], ['promoters.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_table_bookings_id'), 'table_bookings', ['id'], unique=False)
    op.create_index(op.f('ix_table_bookings_event_id'), 'table_bookings', ['event_id'], unique=False)

    op.create_table(
        'table_party_guests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False),
        sa.Column('registration_id', sa.Integer(), nullable=False),
        sa.Column('guest_name', sa.String(255), nullable=True),
        sa.Column('status', party_guest_status, nullable=False, server_default='joined'),
        sa.ForeignKeyConstraint(['booking_id'], ['table_bookings.id'], ),
        sa.ForeignKeyConstraint(['registration_id'], ['registrations.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_table_party_guests_id'), 'table_party_guests', ['id'], unique=False)
    op.create_index(op.f('ix_table_party_guests_booking_id'), 'table_party_guests', ['booking_id'], unique=False)

    op.create_table(
        'event_promoters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('promoter_id', sa.Integer(), nullable=False),
        sa.Column('commission_type', commission_type, nullable=False),
        sa.Column('commission_config', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['promoter_id'], ['promoters.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'promoter_id', name='uq_event_promoters_event_promoter')
    )
    op.create_index(op.f('ix_event_promoters_id'), 'event_promoters', ['id'], unique=False)
    op.create_index(op.f('ix_event_promoters_event_id'), 'event_promoters', ['event_id'], unique=False)

    op.create_table(
        'payout_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('generated_by', sa.Integer(), nullable=False),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('statement_pdf_path', sa.String(500), nullable=True),
        sa.Column('statement_error', sa.String(1000), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', name='uq_payout_runs_event')
    )
    op.create_index(op.f('ix_payout_runs_id'), 'payout_runs', ['id'], unique=False)

    op.create_table(
        'payout_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payout_run_id', sa.Integer(), nullable=False),
        sa.Column('promoter_id', sa.Integer(), nullable=False),
        sa.Column('commission_type', existing_commission_type, nullable=False),
        sa.Column('checkins_count', sa.Integer(), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_status', payment_status, nullable=False, server_default='pending'),
        sa.Column('payment_proof_path', sa.String(500), nullable=True),
        sa.Column('payment_marked_by', sa.Integer(), nullable=True),
        sa.Column('payment_marked_at', sa.DateTime(), nullable=True),
        sa.Column('payment_confirmed_by', sa.Integer(), nullable=True),
        sa.Column('payment_confirmed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['payout_run_id'], ['payout_runs.id'], ),
        sa.ForeignKeyConstraint(['promoter_id'], ['promoters.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payout_run_id', 'promoter_id', name='uq_payout_lines_run_promoter')
    )
    op.create_index(op.f('ix_payout_lines_id'), 'payout_lines', ['id'], unique=False)
    op.create_index(op.f('ix_payout_lines_payout_run_id'), 'payout_lines', ['payout_run_id'], unique=False)

    op.create_table(
        'guest_flags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=False),
        sa.Column('attendee_id', sa.Integer(), nullable=False),
        sa.Column('strike_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('permanent_ban', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reason', sa.String(1000), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('flagged_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id'], ),
        sa.ForeignKeyConstraint(['attendee_id'], ['attendees.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('venue_id', 'attendee_id', name='uq_guest_flags_venue_attendee')
    )
    op.create_index(op.f('ix_guest_flags_id'), 'guest_flags', ['id'], unique=False)
    op.create_index(op.f('ix_guest_flags_venue_id'), 'guest_flags', ['venue_id'], unique=False)

    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_name', sa.String(100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_outbox_events_id'), 'outbox_events', ['id'], unique=False)
    op.create_index(op.f('ix_outbox_events_event_name'), 'outbox_events', ['event_name'], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)
    existing_tables = set(inspector.get_table_names())
    for table in ('outbox_events', 'guest_flags', 'payout_lines', 'payout_runs',
                  'event_promoters', 'table_party_guests', 'table_bookings'):
        if table in existing_tables:
            op.drop_table(table)
    for enum_type in (payment_status, commission_type, party_guest_status, booking_status):
        enum_type.drop(bind, checkfirst=True)
