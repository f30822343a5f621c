"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the watchlist, screening and audit tables. Column types are
portable so the migration runs on PostgreSQL and SQLite alike.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types store member names
list_type = sa.Enum('SANCTIONS', 'PEP', 'ADVERSE_MEDIA', name='listtype')
entity_type = sa.Enum('INDIVIDUAL', 'COMPANY', name='entitytype')
match_status = sa.Enum('PENDING_REVIEW', 'CONFIRMED_MATCH', 'FALSE_POSITIVE', name='matchstatus')
audit_action = sa.Enum('SCREEN', 'REVIEW', 'DATA_UPDATE', name='auditaction')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # ============================================
    # WATCHLIST TABLES
    # ============================================

    op.create_table(
        'watchlist_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('list_code', sa.String(20), nullable=False),
        sa.Column('list_name', sa.String(200), nullable=False),
        sa.Column('list_type', list_type, nullable=False),
        sa.Column('external_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(500), nullable=False),
        sa.Column('entity_type', entity_type, nullable=False),
        sa.Column('date_of_birth', sa.String(30), nullable=True),
        sa.Column('countries', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('source_url', sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('list_code', 'external_id', name='uq_entry_list_external'),
    )
    op.create_index('ix_watchlist_entries_list_code', 'watchlist_entries', ['list_code'])
    op.create_index('ix_watchlist_entries_name', 'watchlist_entries', ['name'])
    op.create_index('ix_watchlist_entries_entity_type', 'watchlist_entries', ['entity_type'])
    op.create_index('ix_entry_list_type', 'watchlist_entries', ['list_code', 'entity_type'])

    op.create_table(
        'entry_aliases',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('entry_id', sa.Uuid(),
                  sa.ForeignKey('watchlist_entries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('alias_name', sa.String(500), nullable=False),
    )
    op.create_index('ix_entry_aliases_entry_id', 'entry_aliases', ['entry_id'])

    # ============================================
    # SCREENING TABLES
    # ============================================

    op.create_table(
        'screening_batches',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('record_count', sa.Integer(), nullable=False),
        sa.Column('algorithm_version', sa.String(20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'screening_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('batch_id', sa.Uuid(),
                  sa.ForeignKey('screening_batches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('record_id', sa.String(100), nullable=False),
        sa.Column('record_name', sa.String(500), nullable=False),
        sa.Column('diagnostics', sa.JSON(), nullable=True),
        sa.UniqueConstraint('batch_id', 'record_id', name='uq_record_batch_record'),
    )
    op.create_index('ix_screening_records_batch_id', 'screening_records', ['batch_id'])

    op.create_table(
        'screening_matches',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('record_row_id', sa.Uuid(),
                  sa.ForeignKey('screening_records.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('record_id', sa.String(100), nullable=False),
        sa.Column('list_code', sa.String(20), nullable=False),
        sa.Column('entry_external_id', sa.String(100), nullable=False),
        sa.Column('entry_snapshot', sa.JSON(), nullable=False),
        sa.Column('match_score', sa.Float(), nullable=False),
        sa.Column('match_details', sa.JSON(), nullable=False),
        sa.Column('status', match_status, nullable=False),
        sa.Column('reviewed_by', sa.String(200), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.CheckConstraint('match_score >= 0 AND match_score <= 1', name='ck_match_score_range'),
    )
    op.create_index('ix_screening_matches_record_row_id', 'screening_matches', ['record_row_id'])
    op.create_index('ix_screening_matches_status', 'screening_matches', ['status'])
    op.create_index('ix_match_list_entry', 'screening_matches', ['list_code', 'entry_external_id'])

    # ============================================
    # AUDIT TABLE
    # ============================================

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(100), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('actor_name', sa.String(200), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_timestamp_action', 'audit_logs', ['timestamp', 'action'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])
    op.create_index('ix_audit_actor', 'audit_logs', ['actor_id', 'timestamp'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('audit_logs')
    op.drop_table('screening_matches')
    op.drop_table('screening_records')
    op.drop_table('screening_batches')
    op.drop_table('entry_aliases')
    op.drop_table('watchlist_entries')

    bind = op.get_bind()
    for enum_type in (audit_action, match_status, entity_type, list_type):
        enum_type.drop(bind, checkfirst=True)
