"""add pipeline configuration, audit trail and result tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1f2a3b4c5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True),
                     server_default=sa.text('now()'), nullable=False)


def upgrade() -> None:
    # --- model_configurations ---
    op.create_table(
        'model_configurations',
        sa.Column('config_id', sa.Uuid(), nullable=False),
        sa.Column('model_family_code', sa.String(length=100), nullable=False),
        sa.Column('api_endpoint', sa.Text(), nullable=False),
        sa.Column('api_version', sa.String(length=30), nullable=False,
                  server_default='chat_completions'),
        sa.Column('supports_temperature', sa.Boolean(), nullable=False,
                  server_default=sa.text('true')),
        sa.Column('temperature_default', sa.Float(), nullable=True),
        sa.Column('supports_seed', sa.Boolean(), nullable=False,
                  server_default=sa.text('false')),
        sa.Column('reasoning_effort_levels', postgresql.JSONB(astext_type=sa.Text()),
                  nullable=True),
        sa.Column('max_output_tokens_param', sa.String(length=50), nullable=False,
                  server_default='max_tokens'),
        _created_at(),
        sa.PrimaryKeyConstraint('config_id'),
        sa.UniqueConstraint('model_family_code'),
    )

    # --- agent_definitions ---
    op.create_table(
        'agent_definitions',
        sa.Column('agent_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('preferred_model_family', sa.String(length=100), nullable=False),
        sa.Column('fallback_model_family', sa.String(length=100), nullable=True),
        sa.Column('reasoning_effort', sa.String(length=20), nullable=True),
        sa.Column('max_tokens', sa.Integer(), nullable=True),
        sa.Column('tool_schema', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('agent_id'),
        sa.UniqueConstraint('name'),
    )

    # --- prompt_versions ---
    op.create_table(
        'prompt_versions',
        sa.Column('prompt_version_id', sa.Uuid(), nullable=False),
        sa.Column('semver', sa.String(length=30), nullable=False),
        sa.Column('content_text', sa.Text(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('prompt_version_id'),
    )

    # --- prompt_bindings ---
    op.create_table(
        'prompt_bindings',
        sa.Column('binding_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=False),
        sa.Column('environment', sa.String(length=20), nullable=False),
        sa.Column('prompt_version_id', sa.Uuid(), nullable=False),
        sa.Column('traffic_weight', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('effective_from', sa.DateTime(timezone=True),
                  server_default=sa.text('now()'), nullable=False),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint('traffic_weight BETWEEN 0 AND 100', name='ck_binding_weight'),
        sa.ForeignKeyConstraint(['agent_id'], ['agent_definitions.agent_id'],
                                ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['prompt_version_id'], ['prompt_versions.prompt_version_id'],
                                ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('binding_id'),
    )
    op.create_index('idx_bindings_agent_env', 'prompt_bindings', ['agent_id', 'environment'])

    # --- runs ---
    op.create_table(
        'runs',
        sa.Column('run_id', sa.Uuid(), nullable=False),
        sa.Column('environment', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='running'),
        sa.Column('document_id', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True),
                  server_default=sa.text('now()'), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metrics', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('run_id'),
    )
    op.create_index('idx_runs_status_started', 'runs', ['status', 'started_at'])

    # --- node_runs ---
    op.create_table(
        'node_runs',
        sa.Column('node_run_id', sa.Uuid(), nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=False),
        sa.Column('node_id', sa.String(length=100), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=True),
        sa.Column('prompt_version_id', sa.Uuid(), nullable=True),
        sa.Column('model_family', sa.String(length=100), nullable=True),
        sa.Column('rendered_prompt', sa.Text(), nullable=True),
        sa.Column('inputs', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('outputs', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('tool_calls', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('model_params', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('tokens_in', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tokens_out', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('latency_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='success'),
        sa.Column('error_message', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['run_id'], ['runs.run_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['agent_id'], ['agent_definitions.agent_id'],
                                ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['prompt_version_id'], ['prompt_versions.prompt_version_id'],
                                ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('node_run_id'),
    )
    op.create_index('idx_node_runs_run', 'node_runs', ['run_id'])
    op.create_index('idx_node_runs_agent', 'node_runs', ['agent_id'])

    # --- message_logs ---
    op.create_table(
        'message_logs',
        sa.Column('message_id', sa.Uuid(), nullable=False),
        sa.Column('node_run_id', sa.Uuid(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('content_text', sa.Text(), nullable=True),
        sa.Column('tool_name', sa.String(length=100), nullable=True),
        sa.Column('tool_args', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['node_run_id'], ['node_runs.node_run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('message_id'),
    )
    op.create_index('idx_msg_node', 'message_logs', ['node_run_id'])

    # --- guardrail_results ---
    op.create_table(
        'guardrail_results',
        sa.Column('result_id', sa.Uuid(), nullable=False),
        sa.Column('node_run_id', sa.Uuid(), nullable=False),
        sa.Column('suite', sa.String(length=50), nullable=False),
        sa.Column('verdict', sa.String(length=10), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['node_run_id'], ['node_runs.node_run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('result_id'),
        sa.UniqueConstraint('node_run_id', 'suite', name='uq_guardrail_node_suite'),
    )

    # --- entities ---
    op.create_table(
        'entities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=False),
        sa.Column('legal_name', sa.Text(), nullable=False),
        sa.Column('entity_type', sa.String(length=20), nullable=False),
        sa.Column('trading_names', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('identifiers', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['run_id'], ['runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_entities_run', 'entities', ['run_id'])
    op.create_index('idx_entities_legal_name', 'entities', ['legal_name'])

    # --- facts ---
    op.create_table(
        'facts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=False),
        sa.Column('subject', sa.Text(), nullable=False),
        sa.Column('predicate', sa.String(length=200), nullable=False),
        sa.Column('object', sa.Text(), nullable=False),
        sa.Column('evidence_text', sa.Text(), nullable=True),
        sa.Column('evidence_doc_id', sa.String(length=64), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0.8'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['run_id'], ['runs.run_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_facts_run', 'facts', ['run_id'])
    op.create_index('idx_facts_subject_predicate', 'facts', ['subject', 'predicate'])


def downgrade() -> None:
    op.drop_index('idx_facts_subject_predicate', table_name='facts')
    op.drop_index('idx_facts_run', table_name='facts')
    op.drop_table('facts')
    op.drop_index('idx_entities_legal_name', table_name='entities')
    op.drop_index('idx_entities_run', table_name='entities')
    op.drop_table('entities')
    op.drop_table('guardrail_results')
    op.drop_index('idx_msg_node', table_name='message_logs')
    op.drop_table('message_logs')
    op.drop_index('idx_node_runs_agent', table_name='node_runs')
    op.drop_index('idx_node_runs_run', table_name='node_runs')
    op.drop_table('node_runs')
    op.drop_index('idx_runs_status_started', table_name='runs')
    op.drop_table('runs')
    op.drop_index('idx_bindings_agent_env', table_name='prompt_bindings')
    op.drop_table('prompt_bindings')
    op.drop_table('prompt_versions')
    op.drop_table('agent_definitions')
    op.drop_table('model_configurations')
