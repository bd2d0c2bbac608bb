"""create reap logs

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the reap history table:
- reap_logs: One row per reap attempt, including the backup table left
  behind when an export was skipped or failed
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create reap log table"""
    op.create_table(
        'reap_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('table_name', sa.String(64), nullable=False, index=True),
        sa.Column('backup_table_name', sa.String(64), nullable=True),
        sa.Column('conditions', sa.String(1000), nullable=True),
        sa.Column('ignore_expiry', sa.Boolean(), default=False, nullable=False),
        sa.Column('cutoff_date', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, index=True),
        sa.Column('rows_reaped', sa.Integer(), default=0, nullable=False),
        sa.Column('move_records', sa.Boolean(), nullable=False),
        sa.Column('export_performed', sa.Boolean(), default=False, nullable=False),
        sa.Column('output_file', sa.String(500), nullable=True),
        sa.Column('backup_table_preserved', sa.Boolean(), default=False, nullable=False),
        sa.Column('error_type', sa.String(50), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
    )

    # Index for per-table history queries
    op.create_index(
        'ix_reap_logs_table_executed',
        'reap_logs',
        ['table_name', 'executed_at']
    )


def downgrade() -> None:
    """Drop reap log table"""
    op.drop_index('ix_reap_logs_table_executed', table_name='reap_logs')
    op.drop_table('reap_logs')
