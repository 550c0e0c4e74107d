"""create ops_documents table with collection expression indexes

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# (index name, collection, indexed expressions)
EXPRESSION_INDEXES = [
    # ops_approval_requests
    ('ix_ops_approvals_status_created', 'ops_approval_requests', "(body->>'status'), (body->>'createdAt') DESC"),
    ('ix_ops_approvals_tool_created', 'ops_approval_requests', "(body->>'tool'), (body->>'createdAt') DESC"),
    ('ix_ops_approvals_requested_by', 'ops_approval_requests', "(body->>'requestedBy'), (body->>'createdAt') DESC"),
    # ops_event_logs
    ('ix_ops_events_business_executed', 'ops_event_logs', "(body->>'businessId'), (body->>'executedAt') DESC"),
    ('ix_ops_events_tool_status', 'ops_event_logs', "(body->>'tool'), (body->>'status')"),
    ('ix_ops_events_executed', 'ops_event_logs', "(body->>'executedAt') DESC"),
    ('ix_ops_events_actor_executed', 'ops_event_logs', "(body->>'actor'), (body->>'executedAt') DESC"),
    # tenant records
    ('ix_ops_event_types_user', 'event_types', "(body->>'userId')"),
]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'ops_documents',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('collection', sa.Text(), nullable=False),
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('body', postgresql.JSONB(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('collection', 'key', name='uq_ops_documents_collection_key'),
    )
    op.create_index(op.f('ix_ops_documents_collection'), 'ops_documents', ['collection'], unique=False)
    op.create_index('ix_ops_documents_expires_at', 'ops_documents', ['expires_at'], unique=False)

    # JSONB containment filters
    op.execute("CREATE INDEX ix_ops_documents_body ON ops_documents USING gin (body jsonb_path_ops)")

    for name, collection, expressions in EXPRESSION_INDEXES:
        op.execute(
            f"CREATE INDEX {name} ON ops_documents ({expressions}) WHERE collection = '{collection}'"
        )


def downgrade() -> None:
    """Downgrade database schema."""
    for name, _, _ in reversed(EXPRESSION_INDEXES):
        op.execute(f"DROP INDEX IF EXISTS {name}")
    op.execute("DROP INDEX IF EXISTS ix_ops_documents_body")
    op.drop_index('ix_ops_documents_expires_at', table_name='ops_documents')
    op.drop_index(op.f('ix_ops_documents_collection'), table_name='ops_documents')
    op.drop_table('ops_documents')
