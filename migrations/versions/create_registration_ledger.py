"""Create registration and check-in ledger tables

Revision ID: create_registration_ledger
Revises:
Create Date: 2026-09-28

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_registration_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


event_status = sa.Enum('draft', 'published', 'ended', 'cancelled', name='event_status')
registration_status = sa.Enum('active', 'cancelled', 'removed', 'declined', name='registration_status')


def upgrade() -> None:
    op.create_table(
        'venues',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_venues_id'), 'venues', ['id'], unique=False)
    op.create_index(op.f('ix_venues_slug'), 'venues', ['slug'], unique=True)

    op.create_table(
        'organizers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_organizers_id'), 'organizers', ['id'], unique=False)

    op.create_table(
        'promoters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_promoters_id'), 'promoters', ['id'], unique=False)
    op.create_index(op.f('ix_promoters_slug'), 'promoters', ['slug'], unique=True)
    op.create_index(op.f('ix_promoters_user_id'), 'promoters', ['user_id'], unique=False)

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', event_status, nullable=False, server_default='draft'),
        sa.Column('venue_id', sa.Integer(), nullable=True),
        sa.Column('organizer_id', sa.Integer(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('tables_closeout_at', sa.DateTime(), nullable=True),
        sa.Column('checkins_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id'], ),
        sa.ForeignKeyConstraint(['organizer_id'], ['organizers.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_events_id'), 'events', ['id'], unique=False)
    op.create_index(op.f('ix_events_slug'), 'events', ['slug'], unique=True)

    op.create_table(
        'event_questions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(500), nullable=False),
        sa.Column('required', sa.Boolean(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_event_questions_id'), 'event_questions', ['id'], unique=False)
    op.create_index(op.f('ix_event_questions_event_id'), 'event_questions', ['event_id'], unique=False)

    op.create_table(
        'attendees',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('surname', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('whatsapp', sa.String(50), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('instagram_handle', sa.String(100), nullable=True),
        sa.Column('tiktok_handle', sa.String(100), nullable=True),
        sa.Column('xp_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_attendees_id'), 'attendees', ['id'], unique=False)
    op.create_index(op.f('ix_attendees_user_id'), 'attendees', ['user_id'], unique=False)
    op.create_index(op.f('ix_attendees_phone'), 'attendees', ['phone'], unique=False)
    op.create_index(op.f('ix_attendees_email'), 'attendees', ['email'], unique=False)

    op.create_table(
        'registrations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attendee_id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('referral_promoter_id', sa.Integer(), nullable=True),
        sa.Column('status', registration_status, nullable=False, server_default='active'),
        sa.Column('registered_at', sa.DateTime(), nullable=True),
        sa.Column('checked_in', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['attendee_id'], ['attendees.id'], ),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.ForeignKeyConstraint(['referral_promoter_id'], ['promoters.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attendee_id', 'event_id', name='uq_registrations_attendee_event')
    )
    op.create_index(op.f('ix_registrations_id'), 'registrations', ['id'], unique=False)
    op.create_index(op.f('ix_registrations_event_id'), 'registrations', ['event_id'], unique=False)
    op.create_index(
        op.f('ix_registrations_referral_promoter_id'), 'registrations', ['referral_promoter_id'], unique=False
    )

    op.create_table(
        'event_answers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registration_id', sa.Integer(), nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('answer_text', sa.String(2000), nullable=True),
        sa.Column('answer_json', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['registration_id'], ['registrations.id'], ),
        sa.ForeignKeyConstraint(['question_id'], ['event_questions.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_event_answers_id'), 'event_answers', ['id'], unique=False)
    op.create_index(op.f('ix_event_answers_registration_id'), 'event_answers', ['registration_id'], unique=False)

    op.create_table(
        'checkins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registration_id', sa.Integer(), nullable=False),
        sa.Column('checked_in_at', sa.DateTime(), nullable=False),
        sa.Column('checked_in_by', sa.String(255), nullable=True),
        sa.Column('undo_at', sa.DateTime(), nullable=True),
        sa.Column('undone_by', sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(['registration_id'], ['registrations.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_checkins_id'), 'checkins', ['id'], unique=False)
    op.create_index(op.f('ix_checkins_registration_id'), 'checkins', ['registration_id'], unique=False)
    # One active row per registration; undone rows stay as history.
    op.create_index(
        'uq_checkins_active_registration',
        'checkins',
        ['registration_id'],
        unique=True,
        postgresql_where=sa.text('undo_at IS NULL'),
        sqlite_where=sa.text('undo_at IS NULL'),
    )


def downgrade() -> None:
    op.drop_index('uq_checkins_active_registration', table_name='checkins')
    op.drop_table('checkins')
    op.drop_table('event_answers')
    op.drop_table('registrations')
    op.drop_table('attendees')
    op.drop_table('event_questions')
    op.drop_table('events')
    op.drop_table('promoters')
    op.drop_table('organizers')
    op.drop_table('venues')
    bind = op.get_bind()
    registration_status.drop(bind, checkfirst=True)
    event_status.drop(bind, checkfirst=True)
