"""Add routing engine tables

Revision ID: 001_routing_engine
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_routing_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'desks',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('team_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('agent_name', sa.String(255), nullable=False),
        sa.Column('model_id', sa.String(100), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_desks_team_id', 'desks', ['team_id'])

    op.create_table(
        'analysis_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('team_id', sa.String(64), nullable=False),
        sa.Column('run_type', sa.String(20), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('analysis_model', sa.String(100), nullable=True),
        sa.Column('analysis_cost_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('findings', postgresql.JSONB(), nullable=True),
        sa.Column('proposed_rules', postgresql.JSONB(), nullable=True),
        sa.Column('tasks_analyzed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cost_analyzed', sa.Float(), nullable=False, server_default='0'),
        sa.Column('estimated_savings_usd', sa.Float(), nullable=False, server_default='0'),
        sa.Column('user_reviewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_analysis_runs_team_id', 'analysis_runs', ['team_id'])
    op.create_index('ix_analysis_runs_created_at', 'analysis_runs', ['created_at'])
    op.create_index(
        'ix_analysis_runs_team_period', 'analysis_runs', ['team_id', 'run_type', 'period_end']
    )
    op.create_index(
        'uq_analysis_runs_team_in_progress',
        'analysis_runs',
        ['team_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'running')"),
    )

    op.create_table(
        'routing_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('team_id', sa.String(64), nullable=False),
        sa.Column('rule_type', sa.String(50), nullable=False),
        sa.Column('source', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('condition', postgresql.JSONB(), nullable=False),
        sa.Column('action', postgresql.JSONB(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('hit_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analysis_run_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.ForeignKeyConstraint(['analysis_run_id'], ['analysis_runs.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_routing_rules_team_id', 'routing_rules', ['team_id'])
    op.create_index('ix_routing_rules_analysis_run_id', 'routing_rules', ['analysis_run_id'])
    op.create_index(
        'ix_routing_rules_team_priority', 'routing_rules', ['team_id', 'priority', 'created_at']
    )

    op.create_table(
        'routing_decisions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('team_id', sa.String(64), nullable=False),
        sa.Column('task_id', sa.String(64), nullable=True),
        sa.Column('task_title', sa.Text(), nullable=False),
        sa.Column('task_description', sa.Text(), nullable=True),
        sa.Column('suggested_desk_id', sa.String(64), nullable=True),
        sa.Column('suggested_model_id', sa.String(100), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('final_desk_id', sa.String(64), nullable=True),
        sa.Column('final_model_id', sa.String(100), nullable=True),
        sa.Column('classifier_model', sa.String(100), nullable=True),
        sa.Column('classifier_cost_usd', sa.Float(), nullable=True),
        sa.Column('classifier_latency_ms', sa.Integer(), nullable=True),
        sa.Column('matched_rules', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_routing_decisions_team_id', 'routing_decisions', ['team_id'])
    op.create_index('ix_routing_decisions_suggested_desk_id', 'routing_decisions', ['suggested_desk_id'])
    op.create_index('ix_routing_decisions_created_at', 'routing_decisions', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_routing_decisions_created_at', table_name='routing_decisions')
    op.drop_index('ix_routing_decisions_suggested_desk_id', table_name='routing_decisions')
    op.drop_index('ix_routing_decisions_team_id', table_name='routing_decisions')
    op.drop_table('routing_decisions')

    op.drop_index('ix_routing_rules_team_priority', table_name='routing_rules')
    op.drop_index('ix_routing_rules_analysis_run_id', table_name='routing_rules')
    op.drop_index('ix_routing_rules_team_id', table_name='routing_rules')
    op.drop_table('routing_rules')

    op.drop_index('uq_analysis_runs_team_in_progress', table_name='analysis_runs')
    op.drop_index('ix_analysis_runs_team_period', table_name='analysis_runs')
    op.drop_index('ix_analysis_runs_created_at', table_name='analysis_runs')
    op.drop_index('ix_analysis_runs_team_id', table_name='analysis_runs')
    op.drop_table('analysis_runs')

    op.drop_index('ix_desks_team_id', table_name='desks')
    op.drop_table('desks')
