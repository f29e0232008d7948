"""
In-memory DocumentStore and VectorStore.

Used by the memory storage backend for development and as fakes in tests.
Similarity is computed with numpy cosine over all stored chunks.
"""

from datetime import datetime, timezone

import numpy as np

from medroute.core.errors import EmbeddingDimensionError
from medroute.core.models import Chunk, Document, DocumentType, NewDocument, VectorHit


class InMemoryDocumentStore:
    """Dict-backed DocumentStore."""

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._documents: dict[str, Document] = {}
        for doc in documents or []:
            self._documents[doc.id] = doc

    def add(self, document: Document) -> Document:
        """Insert a fully-formed document (test and seeding helper)."""
        self._documents[document.id] = document
        return document

    async def create(self, document: NewDocument) -> Document:
        created = Document(**document.model_dump())
        self._documents[created.id] = created
        return created

    async def get_by_id(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def get_by_ids(self, document_ids: list[str]) -> list[Document]:
        return [self._documents[i] for i in dict.fromkeys(document_ids) if i in self._documents]

    async def get_by_url(self, url: str) -> Document | None:
        for doc in self._documents.values():
            if doc.url == url:
                return doc
        return None

    async def get_by_type(self, document_type: DocumentType) -> list[Document]:
        return [
            d for d in self._documents.values()
            if d.is_active and d.document_type == document_type
        ]

    async def get_by_tags(self, tags: list[str]) -> list[Document]:
        wanted = set(tags)
        return [
            d for d in self._documents.values()
            if d.is_active and wanted.intersection(d.tags)
        ]

    async def search_text(self, query: str, limit: int = 10) -> list[Document]:
        needle = query.lower()
        matches = [
            d for d in self._documents.values()
            if d.is_active and (needle in d.title.lower() or needle in d.content.lower())
        ]
        return matches[:limit]

    async def list_active(self) -> list[Document]:
        return [d for d in self._documents.values() if d.is_active]

    async def count_active(self) -> int:
        return sum(1 for d in self._documents.values() if d.is_active)

    async def deactivate(self, document_id: str) -> bool:
        doc = self._documents.get(document_id)
        if doc is None:
            return False
        self._documents[document_id] = doc.model_copy(
            update={"is_active": False, "updated_at": datetime.now(timezone.utc)}
        )
        return True


class InMemoryVectorStore:
    """List-backed VectorStore with exact cosine search."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._chunks: list[Chunk] = []

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[VectorHit]:
        if len(embedding) != self.dimension:
            raise EmbeddingDimensionError(self.dimension, len(embedding))
        if not self._chunks:
            return []

        matrix = np.asarray([c.embedding for c in self._chunks], dtype=np.float64)
        query = np.asarray(embedding, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        order = np.argsort(-scores, kind="stable")
        hits: list[VectorHit] = []
        for idx in order:
            score = float(scores[idx])
            if score < threshold or len(hits) >= limit:
                break
            chunk = self._chunks[idx]
            hits.append(
                VectorHit(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    content=chunk.content,
                    metadata=chunk.metadata.model_dump(),
                    similarity=score,
                )
            )
        return hits

    async def has_chunks(self, document_id: str) -> bool:
        return any(c.document_id == document_id for c in self._chunks)

    async def add_chunks(self, chunks: list[Chunk]) -> int:
        existing = {(c.document_id, c.chunk_index) for c in self._chunks}
        for chunk in chunks:
            if len(chunk.embedding) != self.dimension:
                raise EmbeddingDimensionError(self.dimension, len(chunk.embedding))
            key = (chunk.document_id, chunk.chunk_index)
            if key in existing:
                raise ValueError(
                    f"Chunk {chunk.chunk_index} already exists for document {chunk.document_id}"
                )
            existing.add(key)
        self._chunks.extend(chunks)
        return len(chunks)

    async def delete_chunks(self, document_id: str) -> int:
        before = len(self._chunks)
        self._chunks = [c for c in self._chunks if c.document_id != document_id]
        return before - len(self._chunks)

    async def delete_all(self) -> int:
        removed = len(self._chunks)
        self._chunks = []
        return removed

    async def index_stats(self) -> tuple[int, int, datetime | None]:
        if not self._chunks:
            return 0, 0, None
        documents = {c.document_id for c in self._chunks}
        last = max(c.created_at for c in self._chunks)
        return len(documents), len(self._chunks), last

    def chunks_for(self, document_id: str) -> list[Chunk]:
        """Stored chunks of one document ordered by index."""
        return sorted(
            (c for c in self._chunks if c.document_id == document_id),
            key=lambda c: c.chunk_index,
        )
