"""
MedRoute SQLAlchemy Models

Database models for the medical reference corpus and its embedded chunks.
All models use SQLAlchemy 2.0 patterns with async support.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from medroute.config import resolve_embedding_dimension

# ============================================
# Configuration
# ============================================

# Fixed for the whole corpus; must match the embedding model output.
# init_db re-applies the configured value before creating tables.
EMBEDDING_DIMENSION = resolve_embedding_dimension()


# ============================================
# Base Model
# ============================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: ARRAY(String),
    }


# ============================================
# Helper Mixins
# ============================================


class TimestampMixin:
    """Mixin adding created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# ============================================
# Medical Reference Model
# ============================================


class MedicalReference(Base, TimestampMixin):
    """A corpus document. Deactivated, never deleted."""

    __tablename__ = "medical_references"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )

    chunks: Mapped[list["DocumentChunk"]] = relationship(
        "DocumentChunk", back_populates="document"
    )

    __table_args__ = (
        CheckConstraint(
            "document_type IN ('protocol', 'guideline', 'policy', 'standard', "
            "'requirement', 'specialist_protocol')",
            name="ck_medical_references_document_type",
        ),
        Index("idx_medical_references_document_type", "document_type"),
        Index("idx_medical_references_is_active", "is_active"),
        Index("idx_medical_references_url", "url"),
        Index("idx_medical_references_tags", "tags", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return (
            f"<MedicalReference(id={self.id}, title='{self.title}', "
            f"type='{self.document_type}', active={self.is_active})>"
        )


# ============================================
# Document Chunk Model
# ============================================


class DocumentChunk(Base):
    """An embedded chunk. (document_id, chunk_index) is unique."""

    __tablename__ = "document_chunks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("medical_references.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(EMBEDDING_DIMENSION), nullable=False
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    document: Mapped["MedicalReference"] = relationship(
        "MedicalReference", back_populates="chunks"
    )

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        CheckConstraint("chunk_index >= 0", name="ck_document_chunks_index"),
        Index("idx_document_chunks_document_id", "document_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentChunk(id={self.id}, document_id={self.document_id}, "
            f"chunk_index={self.chunk_index})>"
        )


def set_embedding_dimension(dimension: int) -> None:
    """Size the chunk embedding column for the configured model.

    Must run before tables are created or queried through the ORM.
    """
    column = DocumentChunk.__table__.c.embedding
    if column.type.dim != dimension:
        column.type = Vector(dimension)


def embedding_column_dimension() -> int:
    return DocumentChunk.__table__.c.embedding.type.dim
