"""Initial project-management tables

Revision ID: 001_initial_pm_tables
Revises:
Create Date: 2026-10-19

Creates:
- pm_epics
- pm_tickets (cascade from pm_epics)
- pm_dependencies (unique per source/target pair, no foreign keys)
- pm_status_history (cascade from pm_tickets)
- pm_test_cases (cascade from pm_tickets)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_pm_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # Epics
    # ==========================================================================
    op.create_table(
        'pm_epics',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # Tickets
    # ==========================================================================
    op.create_table(
        'pm_tickets',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('epic_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('context', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('working_directory', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(length=32), nullable=False, server_default='normal'),
        sa.Column('model_power', sa.String(length=32), nullable=True),
        sa.Column('needs_human_supervision', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['epic_id'], ['pm_epics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pm_tickets_epic_id', 'pm_tickets', ['epic_id'])
    op.create_index('ix_pm_tickets_status', 'pm_tickets', ['status'])

    # ==========================================================================
    # Dependencies
    # ==========================================================================
    op.create_table(
        'pm_dependencies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('source_type', sa.String(length=16), nullable=False, server_default='ticket'),
        sa.Column('source_id', sa.String(length=36), nullable=False),
        sa.Column('target_type', sa.String(length=16), nullable=False, server_default='ticket'),
        sa.Column('target_id', sa.String(length=36), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'target_id', name='uq_pm_dependencies_pair'),
    )
    op.create_index('ix_pm_dependencies_source_id', 'pm_dependencies', ['source_id'])
    op.create_index('ix_pm_dependencies_target_id', 'pm_dependencies', ['target_id'])

    # ==========================================================================
    # Status History
    # ==========================================================================
    op.create_table(
        'pm_status_history',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('ticket_id', sa.String(length=36), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='ui'),
        sa.ForeignKeyConstraint(['ticket_id'], ['pm_tickets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pm_status_history_ticket_id', 'pm_status_history', ['ticket_id'])

    # ==========================================================================
    # Test Cases
    # ==========================================================================
    op.create_table(
        'pm_test_cases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('ticket_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False, server_default=''),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['pm_tickets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_pm_test_cases_ticket_id', 'pm_test_cases', ['ticket_id'])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('pm_test_cases')
    op.drop_table('pm_status_history')
    op.drop_table('pm_dependencies')
    op.drop_table('pm_tickets')
    op.drop_table('pm_epics')
