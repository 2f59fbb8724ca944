"""create_calendar_sync_tables

Revision ID: 5b2f0c7d9a13
Revises:
Create Date: 2026-10-18 10:12:41.503118

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b2f0c7d9a13'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create calendar_sources table
    op.create_table('calendar_sources',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('source_kind', sa.String(length=20), nullable=False),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('source_payload', sa.Text(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint("source_kind IN ('url', 'file', 'manual')", name='ck_calendar_sources_kind'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calendar_sources_owner_id'), 'calendar_sources', ['owner_id'], unique=False)

    # Create events table
    op.create_table('events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('calendar_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('uid', sa.String(length=512), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('is_all_day', sa.Boolean(), nullable=False),
        sa.Column('recurrence_rule', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('start_time <= end_time', name='ck_events_start_before_end'),
        sa.ForeignKeyConstraint(['calendar_id'], ['calendar_sources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('calendar_id', 'uid', name='uq_events_calendar_uid')
    )
    op.create_index('ix_events_calendar_time', 'events', ['calendar_id', 'start_time', 'end_time'], unique=False)

    # Create availability_rules table
    op.create_table('availability_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('slot_duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('available_days', sa.JSON(), nullable=False),
        sa.Column('time_ranges', sa.JSON(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('max_bookings_per_day', sa.Integer(), nullable=True),
        sa.Column('calendar_ids', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('share_token', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('slot_duration_minutes > 0', name='ck_availability_rules_duration'),
        sa.CheckConstraint('buffer_minutes >= 0', name='ck_availability_rules_buffer'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_availability_rules_owner_id'), 'availability_rules', ['owner_id'], unique=False)
    op.create_index(op.f('ix_availability_rules_share_token'), 'availability_rules', ['share_token'], unique=True)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name='ck_bookings_status'),
        sa.ForeignKeyConstraint(['rule_id'], ['availability_rules.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_bookings_rule_time', 'bookings', ['rule_id', 'start_time'], unique=False)
    # One live booking per slot; cancelled rows free it again
    op.create_index(
        'uq_bookings_active_slot',
        'bookings',
        ['rule_id', 'start_time', 'end_time'],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'")
    )


def downgrade() -> None:
    op.drop_index('uq_bookings_active_slot', table_name='bookings')
    op.drop_index('ix_bookings_rule_time', table_name='bookings')
    op.drop_table('bookings')

    op.drop_index(op.f('ix_availability_rules_share_token'), table_name='availability_rules')
    op.drop_index(op.f('ix_availability_rules_owner_id'), table_name='availability_rules')
    op.drop_table('availability_rules')

    op.drop_index('ix_events_calendar_time', table_name='events')
    op.drop_table('events')

    op.drop_index(op.f('ix_calendar_sources_owner_id'), table_name='calendar_sources')
    op.drop_table('calendar_sources')
