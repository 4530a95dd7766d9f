"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

This is the baseline migration that creates all tables for the lost document
registry. It matches database/models.py and runs on SQLite and PostgreSQL.
For databases created with create_tables(), use `alembic stamp 001_initial`
to mark it as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_ROLE = sa.Enum('SUPER_ADMIN', 'OPERATOR', name='userrole')
DOCUMENT_STATUS = sa.Enum('ISSUED', name='documentstatus')
AUDIT_ACTION = sa.Enum(
    'DOCUMENT_CREATED', 'DOCUMENT_UPDATED', 'DOCUMENT_DELETED',
    'SETTINGS_UPDATED', 'SYSTEM_SETUP', 'USER_CREATED',
    name='auditaction'
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    ]


def _soft_delete():
    return [
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('registration_number', sa.String(20), nullable=False, unique=True),
        sa.Column('rank', sa.String(100)),
        sa.Column('role', USER_ROLE, nullable=False),
        sa.Column('position', sa.String(100)),
        sa.Column('team', sa.String(10)),
        *_timestamps(),
        *_soft_delete()
    )

    # Create residents table
    op.create_table(
        'residents',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('place_of_birth', sa.String(100), nullable=False, server_default=''),
        sa.Column('birth_date', sa.Date, nullable=False),
        sa.Column('gender', sa.String(20), nullable=False, server_default=''),
        sa.Column('religion', sa.String(50), nullable=False, server_default=''),
        sa.Column('occupation', sa.String(100), nullable=False, server_default=''),
        sa.Column('address', sa.Text, nullable=False, server_default=''),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint('full_name', 'birth_date', name='uq_resident_identity')
    )

    # Create lost_documents table
    op.create_table(
        'lost_documents',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('reference_number', sa.String(255), nullable=False, unique=True),
        sa.Column('period_year', sa.Integer, nullable=False),
        sa.Column('sequence_number', sa.Integer, nullable=False),
        sa.Column('report_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', DOCUMENT_STATUS, nullable=False),
        sa.Column('loss_location', sa.Text),
        sa.Column('resident_id', sa.Integer, sa.ForeignKey('residents.id'), nullable=False),
        sa.Column('reporting_officer_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('approving_official_id', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('operator_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('last_updated_by_id', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint('period_year', 'sequence_number', name='uq_document_period_sequence')
    )

    # Create lost_items table
    op.create_table(
        'lost_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('document_id', sa.Integer,
                  sa.ForeignKey('lost_documents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text)
    )

    # Create document_sequences table
    op.create_table(
        'document_sequences',
        sa.Column('period', sa.String(20), primary_key=True),
        sa.Column('current_value', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )

    # Create system_configs table
    op.create_table(
        'system_configs',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', sa.Text, nullable=False, server_default=''),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('action', AUDIT_ACTION, nullable=False),
        sa.Column('detail', sa.Text),
        sa.Column('resource_type', sa.String(100)),
        sa.Column('resource_id', sa.String(100)),
        sa.Column('extra', sa.JSON)
    )

    # Create indexes
    op.create_index('ix_users_is_deleted', 'users', ['is_deleted'])

    op.create_index('ix_residents_full_name', 'residents', ['full_name'])
    op.create_index('ix_residents_is_deleted', 'residents', ['is_deleted'])

    op.create_index('ix_lost_documents_report_date', 'lost_documents', ['report_date'])
    op.create_index('ix_lost_documents_resident_id', 'lost_documents', ['resident_id'])
    op.create_index('ix_lost_documents_operator_id', 'lost_documents', ['operator_id'])
    op.create_index('ix_lost_documents_is_deleted', 'lost_documents', ['is_deleted'])
    op.create_index('ix_document_period_sequence', 'lost_documents',
                    ['period_year', 'sequence_number'])
    op.create_index('ix_document_operator_report_date', 'lost_documents',
                    ['operator_id', 'report_date'])

    op.create_index('ix_lost_items_document_id', 'lost_items', ['document_id'])

    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_timestamp_action', 'audit_logs', ['timestamp', 'action'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('audit_logs')
    op.drop_table('system_configs')
    op.drop_table('document_sequences')
    op.drop_table('lost_items')
    op.drop_table('lost_documents')
    op.drop_table('residents')
    op.drop_table('users')

    # Named enum types only exist on PostgreSQL
    bind = op.get_bind()
    AUDIT_ACTION.drop(bind, checkfirst=True)
    DOCUMENT_STATUS.drop(bind, checkfirst=True)
    USER_ROLE.drop(bind, checkfirst=True)
