"""Add table booking spend, commission rates and table_booking_commissions

Revision ID: add_table_booking_commissions
Revises: create_settlement_tables
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = 'add_table_booking_commissions'
down_revision = 'create_settlement_tables'
branch_labels = None
depends_on = None


NEW_COLUMNS = {
    'venues': [
        sa.Column('table_commission_rate', sa.Numeric(5, 2), nullable=True),
    ],
    'event_promoters': [
        sa.Column('table_commission_rate', sa.Numeric(5, 2), nullable=True),
    ],
    'table_bookings': [
        sa.Column('minimum_spend', sa.Numeric(12, 2), nullable=True),
        sa.Column('actual_spend', sa.Numeric(12, 2), nullable=True),
        sa.Column('closeout_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
    ],
    'payout_lines': [
        sa.Column('tables_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('table_commission_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
    ],
}


def upgrade():
    bind = op.get_bind()
    inspector = inspect(bind)
    for table, columns in NEW_COLUMNS.items():
        existing_cols = {c["name"] for c in inspector.get_columns(table)}
        for column in columns:
            if column.name not in existing_cols:
                op.add_column(table, column)

    if 'table_booking_commissions' not in set(inspector.get_table_names()):
        op.create_table(
            'table_booking_commissions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('booking_id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.Integer(), nullable=False),
            sa.Column('promoter_id', sa.Integer(), nullable=True),
            sa.Column('spend_amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('spend_source', sa.String(20), nullable=False),
            sa.Column('promoter_commission_rate', sa.Numeric(5, 2), nullable=True),
            sa.Column('promoter_commission_amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('venue_commission_rate', sa.Numeric(5, 2), nullable=False),
            sa.Column('venue_commission_amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('locked', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['booking_id'], ['table_bookings.id'], ),
            sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
            sa.ForeignKeyConstraint(['promoter_id'], ['promoters.id'], ),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('booking_id'),
        )
        op.create_index(op.f('ix_table_booking_commissions_id'), 'table_booking_commissions', ['id'], unique=False)
        op.create_index(
            op.f('ix_table_booking_commissions_event_id'), 'table_booking_commissions', ['event_id'], unique=False
        )
        op.create_index(
            op.f('ix_table_booking_commissions_promoter_id'), 'table_booking_commissions', ['promoter_id'], unique=False
        )


def downgrade():
    bind = op.get_bind()
    inspector = inspect(bind)
    if 'table_booking_commissions' in set(inspector.get_table_names()):
        op.drop_table('table_booking_commissions')
    for table, columns in NEW_COLUMNS.items():
        existing_cols = {c["name"] for c in inspector.get_columns(table)}
        for column in columns:
            if column.name in existing_cols:
                op.drop_column(table, column.name)
