"""RAG index and chunk tables

Revision ID: 3b9e51c2a7d4
Revises:
Create Date: 2026-10-19 10:42:07.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b9e51c2a7d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create rag_index table
    op.create_table('rag_index',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Create rag_chunk table; embeddings are stored as plain float arrays
    op.create_table('rag_chunk',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('index_id', sa.Text(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('page', sa.Integer(), nullable=True),
        sa.Column('ord', sa.Integer(), nullable=False),
        sa.Column('meta', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('embedding', postgresql.ARRAY(sa.Float(precision=53)), nullable=False),
        sa.ForeignKeyConstraint(['index_id'], ['rag_index.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_index('idx_rag_chunk_index_page_ord', 'rag_chunk', ['index_id', 'page', 'ord'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_rag_chunk_index_page_ord', table_name='rag_chunk')
    op.drop_table('rag_chunk')
    op.drop_table('rag_index')
