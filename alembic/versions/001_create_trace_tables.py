"""create_trace_tables

Experiments, trace_info and the two per-trace key/value tables.
Child rows are removed with their trace through ON DELETE CASCADE.

Revision ID: 001_create_trace_tables
Revises: None
Create Date: 2026-10-17 12:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_create_trace_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('experiments',
        sa.Column('experiment_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('artifact_location', sa.String(length=256), nullable=True),
        sa.Column('lifecycle_stage', sa.String(length=32), nullable=False),
        sa.Column('creation_time', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('experiment_id'),
        sa.UniqueConstraint('name'),
    )
    op.create_table('trace_info',
        sa.Column('request_id', sa.String(length=50), nullable=False),
        sa.Column('experiment_id', sa.String(length=32), nullable=False),
        sa.Column('timestamp_ms', sa.BigInteger(), nullable=False),
        sa.Column('execution_time_ms', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('client_request_id', sa.String(length=50), nullable=True),
        sa.Column('request_preview', sa.String(length=1000), nullable=True),
        sa.Column('response_preview', sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(['experiment_id'], ['experiments.experiment_id']),
        sa.PrimaryKeyConstraint('request_id', name='trace_info_pk'),
    )
    op.create_index(
        'index_trace_info_experiment_id_timestamp_ms',
        'trace_info',
        ['experiment_id', 'timestamp_ms'],
        unique=False,
    )
    op.create_table('trace_tags',
        sa.Column('request_id', sa.String(length=50), nullable=False),
        sa.Column('key', sa.String(length=250), nullable=False),
        sa.Column('value', sa.String(length=8000), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['trace_info.request_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('request_id', 'key', name='trace_tag_pk'),
    )
    op.create_index('index_trace_tags_request_id', 'trace_tags', ['request_id'], unique=False)
    op.create_table('trace_request_metadata',
        sa.Column('request_id', sa.String(length=50), nullable=False),
        sa.Column('key', sa.String(length=250), nullable=False),
        sa.Column('value', sa.String(length=8000), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['trace_info.request_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('request_id', 'key', name='trace_request_metadata_pk'),
    )
    op.create_index(
        'index_trace_request_metadata_request_id',
        'trace_request_metadata',
        ['request_id'],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index('index_trace_request_metadata_request_id', table_name='trace_request_metadata')
    op.drop_table('trace_request_metadata')
    op.drop_index('index_trace_tags_request_id', table_name='trace_tags')
    op.drop_table('trace_tags')
    op.drop_index('index_trace_info_experiment_id_timestamp_ms', table_name='trace_info')
    op.drop_table('trace_info')
    op.drop_table('experiments')
