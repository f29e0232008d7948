"""Initial schema: medical references and embedded chunks

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates the document corpus table and the pgvector chunk table. The
(document_id, chunk_index) unique constraint stops duplicate chunks when
two processes ingest the same document concurrently.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

from medroute.config import resolve_embedding_dimension

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSION = resolve_embedding_dimension()


def upgrade() -> None:
    """Create all tables and indexes."""

    # Enable extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ========================================
    # Medical references table
    # ========================================
    op.create_table(
        "medical_references",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("document_type", sa.String(50), nullable=False),
        sa.Column("source", sa.String(255), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("version", sa.String(50), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String()), nullable=False,
                  server_default=sa.text("'{}'::varchar[]")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata", postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.CheckConstraint(
            "document_type IN ('protocol', 'guideline', 'policy', 'standard', "
            "'requirement', 'specialist_protocol')",
            name="ck_medical_references_document_type",
        ),
    )
    op.create_index("idx_medical_references_document_type", "medical_references", ["document_type"])
    op.create_index("idx_medical_references_is_active", "medical_references", ["is_active"])
    op.create_index("idx_medical_references_url", "medical_references", ["url"])
    op.create_index("idx_medical_references_tags", "medical_references", ["tags"],
                    postgresql_using="gin")

    # ========================================
    # Document chunks table
    # ========================================
    op.create_table(
        "document_chunks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("document_id", postgresql.UUID(as_uuid=True),
                  sa.ForeignKey("medical_references.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSION), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.text("NOW()"), nullable=False),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        sa.CheckConstraint("chunk_index >= 0", name="ck_document_chunks_index"),
    )
    op.create_index("idx_document_chunks_document_id", "document_chunks", ["document_id"])

    # HNSW vector index for cosine similarity search
    op.execute("""
        CREATE INDEX idx_document_chunks_embedding ON document_chunks
        USING hnsw (embedding vector_cosine_ops)
    """)


def downgrade() -> None:
    """Drop all tables. Extensions are left installed."""
    op.execute("DROP INDEX IF EXISTS idx_document_chunks_embedding")
    op.drop_index("idx_document_chunks_document_id", table_name="document_chunks")
    op.drop_table("document_chunks")

    op.drop_index("idx_medical_references_tags", table_name="medical_references")
    op.drop_index("idx_medical_references_url", table_name="medical_references")
    op.drop_index("idx_medical_references_is_active", table_name="medical_references")
    op.drop_index("idx_medical_references_document_type", table_name="medical_references")
    op.drop_table("medical_references")
