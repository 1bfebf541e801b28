"""add_relay_tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 12:00:00.000000

Jira relay: tracker_tasks snapshot, comment watermarks, action audit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tracker_tasks',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('priority', sa.String(30), nullable=False),
        sa.Column('department', sa.String(200), nullable=False),
        sa.Column('issue_type', sa.String(100), nullable=False),
        sa.Column('resolution', sa.String(100), nullable=False),
        sa.Column('assignee', sa.String(200), nullable=False),
        sa.Column('date_added', sa.DateTime(), nullable=False),
        sa.Column('last_sent', sa.DateTime(), nullable=True),
        sa.Column('source', sa.String(30), nullable=False),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_date', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tracker_tasks')),
    )
    op.create_index('ix_tracker_tasks_source_archived', 'tracker_tasks', ['source', 'archived'])

    op.create_table(
        'comment_watermarks',
        sa.Column('task_id', sa.String(64), nullable=False),
        sa.Column('last_comment_id', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('task_id', name=op.f('pk_comment_watermarks')),
    )

    op.create_table(
        'action_audits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.String(64), nullable=False),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_action_audits')),
    )
    op.create_index('ix_action_audits_task_id', 'action_audits', ['task_id'])


def downgrade() -> None:
    op.drop_index('ix_action_audits_task_id', table_name='action_audits')
    op.drop_table('action_audits')
    op.drop_table('comment_watermarks')
    op.drop_index('ix_tracker_tasks_source_archived', table_name='tracker_tasks')
    op.drop_table('tracker_tasks')
