"""create research tables

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-01-12 09:14:02.418311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Research jobs, their stage sub-jobs, trace events, costs, pricing and prompts."""
    op.create_table(
        'research_jobs',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('request_id', sa.String(64), nullable=True),
        sa.Column('company_name', sa.String(200), nullable=False),
        sa.Column('geography', sa.String(200), nullable=False, server_default='Global'),
        sa.Column('industry', sa.String(200), nullable=True),
        sa.Column('focus_areas', sa.JSON(), nullable=False),
        sa.Column('report_type', sa.String(32), nullable=True),
        sa.Column('selected_sections', sa.JSON(), nullable=True),
        sa.Column('user_inputs', sa.JSON(), nullable=True),
        sa.Column('draft_id', sa.String(64), nullable=True),
        sa.Column('domain', sa.String(255), nullable=True),
        sa.Column('normalized_domain', sa.String(255), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='queued'),
        sa.Column('progress', sa.Float(), nullable=False, server_default='0'),
        sa.Column('current_stage', sa.String(64), nullable=True),
        sa.Column('overall_confidence', sa.String(16), nullable=True),
        sa.Column('overall_confidence_score', sa.Float(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('total_cost_usd', sa.Numeric(14, 6), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_research_jobs_company_name'), 'research_jobs', ['company_name'], unique=False)
    op.create_index(op.f('ix_research_jobs_draft_id'), 'research_jobs', ['draft_id'], unique=False)
    op.create_index(op.f('ix_research_jobs_status'), 'research_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_research_jobs_created_at'), 'research_jobs', ['created_at'], unique=False)

    op.create_table(
        'research_sub_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('stage', sa.String(64), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('dependencies', sa.JSON(), nullable=False),
        sa.Column('output', sa.JSON(), nullable=True),
        sa.Column('confidence', sa.String(16), nullable=True),
        sa.Column('sources_used', sa.JSON(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['research_jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'stage', name='uq_research_sub_jobs_job_stage')
    )
    op.create_index(op.f('ix_research_sub_jobs_job_id'), 'research_sub_jobs', ['job_id'], unique=False)

    op.create_table(
        'research_trace_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('phase', sa.String(), nullable=False),
        sa.Column('step', sa.String(), nullable=True),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('detail', sa.String(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['research_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_research_trace_events_job_id'), 'research_trace_events', ['job_id'], unique=False)

    op.create_table(
        'cost_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(as_uuid=True), nullable=True),
        sa.Column('draft_id', sa.String(64), nullable=True),
        sa.Column('stage', sa.String(64), nullable=True),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('model', sa.String(128), nullable=False),
        sa.Column('input_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('output_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cache_read_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cache_write_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('web_search_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_usd', sa.Numeric(14, 6), nullable=False, server_default='0'),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['research_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cost_events_job_id'), 'cost_events', ['job_id'], unique=False)
    op.create_index(op.f('ix_cost_events_draft_id'), 'cost_events', ['draft_id'], unique=False)

    op.create_table(
        'pricing_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('model', sa.String(128), nullable=False),
        sa.Column('input_per_mtok', sa.Float(), nullable=False),
        sa.Column('output_per_mtok', sa.Float(), nullable=False),
        sa.Column('cache_read_per_mtok', sa.Float(), nullable=True),
        sa.Column('cache_write_per_mtok', sa.Float(), nullable=True),
        sa.Column('effective_from', sa.DateTime(), nullable=False),
        sa.Column('effective_to', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_pricing_rates_provider'), 'pricing_rates', ['provider'], unique=False)
    op.create_index(op.f('ix_pricing_rates_model'), 'pricing_rates', ['model'], unique=False)

    op.create_table(
        'prompts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('section_id', sa.String(64), nullable=False),
        sa.Column('report_type', sa.String(32), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='draft'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_by', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_prompts_section_id'), 'prompts', ['section_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_prompts_section_id'), table_name='prompts')
    op.drop_table('prompts')
    op.drop_index(op.f('ix_pricing_rates_model'), table_name='pricing_rates')
    op.drop_index(op.f('ix_pricing_rates_provider'), table_name='pricing_rates')
    op.drop_table('pricing_rates')
    op.drop_index(op.f('ix_cost_events_draft_id'), table_name='cost_events')
    op.drop_index(op.f('ix_cost_events_job_id'), table_name='cost_events')
    op.drop_table('cost_events')
    op.drop_index(op.f('ix_research_trace_events_job_id'), table_name='research_trace_events')
    op.drop_table('research_trace_events')
    op.drop_index(op.f('ix_research_sub_jobs_job_id'), table_name='research_sub_jobs')
    op.drop_table('research_sub_jobs')
    op.drop_index(op.f('ix_research_jobs_created_at'), table_name='research_jobs')
    op.drop_index(op.f('ix_research_jobs_status'), table_name='research_jobs')
    op.drop_index(op.f('ix_research_jobs_draft_id'), table_name='research_jobs')
    op.drop_index(op.f('ix_research_jobs_company_name'), table_name='research_jobs')
    op.drop_table('research_jobs')
