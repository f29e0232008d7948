"""
MedRoute Collaborator Protocols

Contracts for the external collaborators the core depends on. Services take
these as constructor arguments so tests can substitute in-memory fakes.

Implementations:
- DocumentStore: PgDocumentStore, InMemoryDocumentStore
- VectorStore: PgVectorStore, InMemoryVectorStore
- EmbeddingProvider: SentenceTransformerEmbeddings, OpenAIEmbeddings
- WebDiscoveryProvider: DuckDuckGoDiscoveryProvider
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from medroute.core.models import (
        Chunk,
        Document,
        DocumentType,
        NewDocument,
        VectorHit,
    )
    from medroute.rag.web_search import WebResult


# ============================================
# Document Store
# ============================================


@runtime_checkable
class DocumentStore(Protocol):
    """Persists document metadata and content."""

    async def create(self, document: NewDocument) -> Document: ...

    async def get_by_id(self, document_id: str) -> Document | None: ...

    async def get_by_ids(self, document_ids: list[str]) -> list[Document]:
        """Fetch many documents in a single round-trip. Missing ids are skipped."""
        ...

    async def get_by_url(self, url: str) -> Document | None: ...

    async def get_by_type(self, document_type: DocumentType) -> list[Document]:
        """Active documents of the given type."""
        ...

    async def get_by_tags(self, tags: list[str]) -> list[Document]:
        """Active documents carrying any of the given tags."""
        ...

    async def search_text(self, query: str, limit: int = 10) -> list[Document]:
        """Active documents whose title or content contains the query text."""
        ...

    async def list_active(self) -> list[Document]: ...

    async def count_active(self) -> int: ...

    async def deactivate(self, document_id: str) -> bool: ...


# ============================================
# Vector Store
# ============================================


@runtime_checkable
class VectorStore(Protocol):
    """Persists chunks with embeddings and runs nearest-neighbour search."""

    dimension: int

    async def search(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[VectorHit]:
        """Hits with similarity >= threshold, most similar first."""
        ...

    async def has_chunks(self, document_id: str) -> bool: ...

    async def add_chunks(self, chunks: list[Chunk]) -> int:
        """Persist chunks in one batched write. Rejects wrong dimensions."""
        ...

    async def delete_chunks(self, document_id: str) -> int: ...

    async def delete_all(self) -> int: ...

    async def index_stats(self) -> tuple[int, int, datetime | None]:
        """(indexed document count, total chunk count, last chunk created_at)."""
        ...


# ============================================
# Embedding Provider
# ============================================


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Converts text to fixed-dimension vectors."""

    dimension: int

    async def embed(self, text: str, is_query: bool = False) -> list[float]: ...

    async def embed_batch(
        self, texts: list[str], is_query: bool = False
    ) -> list[list[float]]:
        """One vector per input text, in input order."""
        ...


# ============================================
# Web Discovery Provider
# ============================================


@runtime_checkable
class WebDiscoveryProvider(Protocol):
    """Finds candidate external documents for a query."""

    async def search(self, query: str) -> list[WebResult]: ...
