"""
PostgreSQL-backed DocumentStore and VectorStore.

Documents live in ``medical_references``; chunks and their pgvector
embeddings live in ``document_chunks``. Similarity is pgvector cosine
distance converted to cosine similarity: ``1 - (embedding <=> query)``.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medroute.core.errors import EmbeddingDimensionError
from medroute.core.models import (
    Chunk,
    Document,
    DocumentType,
    NewDocument,
    VectorHit,
)
from medroute.db.models import DocumentChunk, MedicalReference
from medroute.db.postgres import get_db_session

logger = logging.getLogger(__name__)


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _to_document(row: MedicalReference) -> Document:
    return Document(
        id=str(row.id),
        title=row.title,
        document_type=DocumentType(row.document_type),
        source=row.source,
        url=row.url,
        content=row.content,
        version=row.version,
        tags=list(row.tags or []),
        metadata=dict(row.metadata_ or {}),
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _vector_literal(embedding: list[float]) -> str:
    """Format a vector as a pgvector literal: '[1.0,2.0,3.0]'."""
    return "[" + ",".join(str(float(v)) for v in embedding) + "]"


# ============================================
# Document Store
# ============================================


class PgDocumentStore:
    """DocumentStore over the medical_references table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, document: NewDocument) -> Document:
        row = MedicalReference(
            title=document.title,
            document_type=DocumentType(document.document_type).value,
            source=document.source,
            url=document.url,
            content=document.content,
            version=document.version,
            tags=list(document.tags),
            metadata_=dict(document.metadata),
            is_active=True,
        )
        async with get_db_session(self._session_factory) as session:
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_document(row)

    async def get_by_id(self, document_id: str) -> Document | None:
        doc_uuid = _parse_uuid(document_id)
        if doc_uuid is None:
            return None
        async with get_db_session(self._session_factory) as session:
            row = await session.get(MedicalReference, doc_uuid)
            return _to_document(row) if row is not None else None

    async def get_by_ids(self, document_ids: list[str]) -> list[Document]:
        uuids = [u for u in (_parse_uuid(i) for i in set(document_ids)) if u is not None]
        if not uuids:
            return []
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference).where(MedicalReference.id.in_(uuids))
            )
            return [_to_document(row) for row in result.scalars().all()]

    async def get_by_url(self, url: str) -> Document | None:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference).where(MedicalReference.url == url).limit(1)
            )
            row = result.scalars().first()
            return _to_document(row) if row is not None else None

    async def get_by_type(self, document_type: DocumentType) -> list[Document]:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference)
                .where(
                    MedicalReference.document_type == DocumentType(document_type).value,
                    MedicalReference.is_active.is_(True),
                )
                .order_by(MedicalReference.title)
            )
            return [_to_document(row) for row in result.scalars().all()]

    async def get_by_tags(self, tags: list[str]) -> list[Document]:
        if not tags:
            return []
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference).where(
                    MedicalReference.tags.overlap(list(tags)),
                    MedicalReference.is_active.is_(True),
                )
            )
            return [_to_document(row) for row in result.scalars().all()]

    async def search_text(self, query: str, limit: int = 10) -> list[Document]:
        pattern = f"%{query}%"
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference)
                .where(
                    MedicalReference.is_active.is_(True),
                    or_(
                        MedicalReference.title.ilike(pattern),
                        MedicalReference.content.ilike(pattern),
                    ),
                )
                .limit(limit)
            )
            return [_to_document(row) for row in result.scalars().all()]

    async def list_active(self) -> list[Document]:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(MedicalReference)
                .where(MedicalReference.is_active.is_(True))
                .order_by(MedicalReference.created_at)
            )
            return [_to_document(row) for row in result.scalars().all()]

    async def count_active(self) -> int:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(func.count())
                .select_from(MedicalReference)
                .where(MedicalReference.is_active.is_(True))
            )
            return int(result.scalar() or 0)

    async def deactivate(self, document_id: str) -> bool:
        doc_uuid = _parse_uuid(document_id)
        if doc_uuid is None:
            return False
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                update(MedicalReference)
                .where(MedicalReference.id == doc_uuid)
                .values(is_active=False)
            )
            return result.rowcount > 0


# ============================================
# Vector Store
# ============================================


class PgVectorStore:
    """VectorStore over the document_chunks table (pgvector)."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], dimension: int
    ) -> None:
        self._session_factory = session_factory
        self.dimension = dimension

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[VectorHit]:
        """Chunks with cosine similarity >= threshold, most similar first."""
        if len(embedding) != self.dimension:
            raise EmbeddingDimensionError(self.dimension, len(embedding))

        sql = text(
            "SELECT id, document_id, content, metadata, "
            "1 - (embedding <=> CAST(:query_vector AS vector)) AS similarity "
            "FROM document_chunks "
            "WHERE 1 - (embedding <=> CAST(:query_vector AS vector)) >= :threshold "
            "ORDER BY embedding <=> CAST(:query_vector AS vector) "
            "LIMIT :limit"
        )
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                sql,
                {
                    "query_vector": _vector_literal(embedding),
                    "threshold": threshold,
                    "limit": limit,
                },
            )
            rows = result.fetchall()

        return [
            VectorHit(
                chunk_id=str(row.id),
                document_id=str(row.document_id),
                content=row.content,
                metadata=dict(row.metadata or {}),
                similarity=float(row.similarity),
            )
            for row in rows
        ]

    async def has_chunks(self, document_id: str) -> bool:
        doc_uuid = _parse_uuid(document_id)
        if doc_uuid is None:
            return False
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(DocumentChunk.id).where(DocumentChunk.document_id == doc_uuid).limit(1)
            )
            return result.first() is not None

    async def add_chunks(self, chunks: list[Chunk]) -> int:
        """Insert all chunks in one transaction.

        The (document_id, chunk_index) unique constraint rejects a second
        concurrent ingestion of the same document from another process.
        """
        for chunk in chunks:
            if len(chunk.embedding) != self.dimension:
                raise EmbeddingDimensionError(self.dimension, len(chunk.embedding))

        rows = [
            DocumentChunk(
                id=uuid.UUID(chunk.id),
                document_id=uuid.UUID(chunk.document_id),
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=chunk.embedding,
                metadata_=chunk.metadata.model_dump(),
                created_at=chunk.created_at,
            )
            for chunk in chunks
        ]
        async with get_db_session(self._session_factory) as session:
            session.add_all(rows)
        return len(rows)

    async def delete_chunks(self, document_id: str) -> int:
        doc_uuid = _parse_uuid(document_id)
        if doc_uuid is None:
            return 0
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == doc_uuid)
            )
            return result.rowcount

    async def delete_all(self) -> int:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(delete(DocumentChunk))
            return result.rowcount

    async def index_stats(self) -> tuple[int, int, datetime | None]:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(
                    func.count(func.distinct(DocumentChunk.document_id)),
                    func.count(DocumentChunk.id),
                    func.max(DocumentChunk.created_at),
                )
            )
            indexed, total, last = result.one()
            return int(indexed or 0), int(total or 0), last
