"""
MedRoute Retrieval Service

Orchestrates the ingestion pipeline (chunk -> batch embed -> one batched
write), cached similarity search with single-query document enrichment,
context assembly, the per-use-case retrieval policies and index status.
"""

import asyncio
import logging
import time
import weakref
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from medroute.config import Settings
from medroute.core.errors import (
    ChunkingError,
    DocumentInactiveError,
    DocumentNotFoundError,
)
from medroute.core.models import (
    Chunk,
    Context,
    Document,
    DocumentType,
    IndexStatus,
    IngestionReport,
    SearchResult,
)
from medroute.core.protocols import DocumentStore, VectorStore
from medroute.observability.metrics import record_ingestion, record_search
from medroute.rag.cache import (
    GENERAL_PARTITION,
    SEARCH_PARTITION,
    STORE_PARTITION,
    CacheLayer,
)
from medroute.rag.chunker import DocumentChunker, chunker_for
from medroute.rag.embedding import EmbeddingService

logger = logging.getLogger(__name__)

INDEX_STATUS_KEY = "index_status"
NO_RESULTS_SUMMARY = "No relevant medical documents found for this query."


# ============================================
# Retrieval Policies
# ============================================


@dataclass(frozen=True)
class RetrievalPolicy:
    """Threshold, type filter and result cap for one call site.

    Emergency retrieval uses a stricter threshold than triage: it returns
    fewer, more certain passages.
    """

    name: str
    query_prefix: str
    document_types: tuple[DocumentType, ...]
    threshold: float
    limit: int

    def build_query(self, text: str) -> str:
        return f"{self.query_prefix}{text.strip()}"


TRIAGE_POLICY = RetrievalPolicy(
    name="triage",
    query_prefix="medical triage symptoms: ",
    document_types=(DocumentType.PROTOCOL, DocumentType.GUIDELINE),
    threshold=0.75,
    limit=3,
)

EMERGENCY_POLICY = RetrievalPolicy(
    name="emergency",
    query_prefix="medical triage symptoms: ",
    document_types=(DocumentType.PROTOCOL,),
    threshold=0.80,
    limit=3,
)

MENTAL_HEALTH_POLICY = RetrievalPolicy(
    name="mental_health",
    query_prefix="mental health: ",
    document_types=(DocumentType.PROTOCOL, DocumentType.GUIDELINE),
    threshold=0.75,
    limit=3,
)


def _type_values(document_types: Iterable[DocumentType | str] | None) -> list[str] | None:
    if not document_types:
        return None
    return sorted({DocumentType(t).value for t in document_types})


def build_summary(results: list[SearchResult]) -> str:
    """Readable one-line summary of a result set."""
    if not results:
        return NO_RESULTS_SUMMARY

    types = list(dict.fromkeys(r.document_type for r in results))
    sources = list(dict.fromkeys(r.source for r in results))
    average = sum(r.similarity for r in results) / len(results)
    return (
        f"Found {len(results)} relevant sections from {', '.join(types)} documents "
        f"({', '.join(sources)}). Average relevance: {average * 100:.1f}%."
    )


# ============================================
# Retrieval Service
# ============================================


class RetrievalService:
    """Ingestion, search and context assembly over injected collaborators."""

    def __init__(
        self,
        document_store: DocumentStore,
        vector_store: VectorStore,
        embedding_service: EmbeddingService,
        cache: CacheLayer,
        settings: Settings | None = None,
        chunker_factory: Callable[[DocumentType], DocumentChunker] = chunker_for,
    ) -> None:
        self.document_store = document_store
        self.vector_store = vector_store
        self.embedding_service = embedding_service
        self.cache = cache
        self.settings = settings or Settings(storage_backend="memory")
        self._chunker_factory = chunker_factory
        # One lock per document id, released with its last waiter
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ----------------------------------------
    # Ingestion
    # ----------------------------------------

    def _lock_for(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        return lock

    async def ingest_document(self, document_id: str) -> bool:
        """Chunk, embed and store one document.

        Concurrent calls for the same id are serialised, so the
        "already has chunks?" check and the insert cannot interleave.

        Returns:
            True if the document is indexed (now or already), False on any
            failure. Never raises.
        """
        lock = self._lock_for(document_id)
        async with lock:
            success = await self._ingest_locked(document_id)
        record_ingestion(success)
        return success

    async def _ingest_locked(self, document_id: str) -> bool:
        try:
            document = await self.document_store.get_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            if not document.is_active:
                raise DocumentInactiveError(f"Document {document_id} is inactive")

            if await self.vector_store.has_chunks(document_id):
                logger.info("Document %s already indexed", document_id)
                return True

            chunker = self._chunker_factory(document.document_type)
            text_chunks = chunker.chunk(
                document.content,
                {
                    "document_title": document.title,
                    "document_type": document.document_type.value,
                    "source": document.source,
                },
            )
            if not text_chunks:
                raise ChunkingError(
                    f"Document {document_id} ({document.title}) produced no valid chunks"
                )

            embeddings = await self.embedding_service.embed_documents(
                [c.content for c in text_chunks]
            )
            chunks = [
                Chunk(
                    document_id=document.id,
                    chunk_index=text_chunk.metadata.chunk_index,
                    content=text_chunk.content,
                    embedding=embedding,
                    metadata=text_chunk.metadata,
                )
                for text_chunk, embedding in zip(text_chunks, embeddings, strict=True)
            ]
            await self.vector_store.add_chunks(chunks)
        except (DocumentNotFoundError, DocumentInactiveError, ChunkingError) as e:
            logger.warning("Skipping ingestion: %s", e)
            return False
        except Exception as e:
            logger.error("Failed to ingest document %s: %s", document_id, e, exc_info=True)
            return False

        self._invalidate_document(document_id)
        logger.info(
            "Ingested document %s (%s): %d chunks",
            document_id,
            document.title,
            len(chunks),
        )
        return True

    async def ingest_all(
        self, document_types: Iterable[DocumentType | str] | None = None
    ) -> IngestionReport:
        """Ingest every active document, optionally restricted to types."""
        report = IngestionReport()
        try:
            documents = await self.document_store.list_active()
        except Exception as e:
            logger.error("Could not list documents for ingestion: %s", e, exc_info=True)
            return report

        wanted = _type_values(document_types)
        if wanted is not None:
            documents = [d for d in documents if d.document_type.value in wanted]

        for document in documents:
            if await self.ingest_document(document.id):
                report.success += 1
            else:
                report.failed += 1

        logger.info(
            "Bulk ingestion complete: %d succeeded, %d failed",
            report.success,
            report.failed,
        )
        return report

    # ----------------------------------------
    # Search
    # ----------------------------------------

    async def search_documents(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        document_types: Iterable[DocumentType | str] | None = None,
        strict: bool = False,
    ) -> list[SearchResult]:
        """Similarity search enriched with source-document identity.

        Args:
            query: Free-text query.
            limit: Maximum results. Defaults to the configured search limit.
            threshold: Minimum cosine similarity. Defaults to 0.78.
            document_types: Keep only these document types.
            strict: Propagate errors instead of returning an empty list.

        Returns:
            Results ordered by similarity, most similar first. Empty when
            nothing passes the threshold or the search failed.
        """
        query = (query or "").strip()
        if not query:
            return []

        limit = limit or self.settings.default_search_limit
        threshold = self.settings.default_search_threshold if threshold is None else threshold
        types = _type_values(document_types)

        start = time.perf_counter()
        try:
            results = await self.cache.get_or_set(
                SEARCH_PARTITION,
                f"search:{query}",
                lambda: self._search_uncached(query, limit, threshold, types),
                params={"limit": limit, "threshold": threshold, "types": types},
            )
        except Exception as e:
            record_search((time.perf_counter() - start) * 1000, 0, success=False)
            if strict:
                raise
            logger.error("Search failed for %r: %s", query, e, exc_info=True)
            return []

        record_search((time.perf_counter() - start) * 1000, len(results))
        return list(results)

    async def _search_uncached(
        self, query: str, limit: int, threshold: float, types: list[str] | None
    ) -> list[SearchResult]:
        embedding = await self.embedding_service.embed_query(query)
        hits = await self.vector_store.search(embedding, threshold, limit)
        if not hits:
            return []

        documents = await self._load_documents(list(dict.fromkeys(h.document_id for h in hits)))

        results: list[SearchResult] = []
        for hit in hits:
            document = documents.get(hit.document_id)
            if document is None or not document.is_active:
                continue
            if types is not None and document.document_type.value not in types:
                continue
            results.append(
                SearchResult(
                    content=hit.content,
                    similarity=hit.similarity,
                    document_id=document.id,
                    document_title=document.title,
                    document_type=document.document_type.value,
                    source=document.source,
                    chunk_index=int(hit.metadata.get("chunk_index", 0)),
                    url=document.url,
                )
            )

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    async def _load_documents(self, document_ids: list[str]) -> dict[str, Document]:
        """Resolve parent documents: cache first, then one batched fetch."""
        found: dict[str, Document] = {}
        missing: list[str] = []
        for document_id in document_ids:
            cached = self.cache.get(STORE_PARTITION, f"document:{document_id}")
            if cached is not None:
                found[document_id] = cached
            else:
                missing.append(document_id)

        if missing:
            for document in await self.document_store.get_by_ids(missing):
                found[document.id] = document
                self.cache.set(STORE_PARTITION, f"document:{document.id}", document)
        return found

    async def get_context(
        self,
        query: str,
        max_results: int | None = None,
        threshold: float | None = None,
        document_types: Iterable[DocumentType | str] | None = None,
    ) -> Context:
        """Search results plus a summary. Never raises for a bad query."""
        query = (query or "").strip()
        max_results = max_results or self.settings.default_context_limit
        threshold = self.settings.default_search_threshold if threshold is None else threshold
        types = _type_values(document_types)

        async def build() -> Context:
            start = time.perf_counter()
            results = await self.search_documents(
                query, limit=max_results, threshold=threshold, document_types=types
            )
            return Context(
                query=query,
                results=results,
                total_results=len(results),
                search_time_ms=round((time.perf_counter() - start) * 1000, 2),
                summary=build_summary(results),
            )

        if not query:
            return await build()

        return await self.cache.get_or_set(
            SEARCH_PARTITION,
            f"context:{query}",
            build,
            params={"limit": max_results, "threshold": threshold, "types": types},
        )

    async def get_policy_context(self, policy: RetrievalPolicy, text: str) -> Context:
        return await self.get_context(
            policy.build_query(text),
            max_results=policy.limit,
            threshold=policy.threshold,
            document_types=policy.document_types,
        )

    async def get_triage_context(
        self, symptoms: str, appointment_type: str | None = None
    ) -> Context:
        text = symptoms.strip()
        if appointment_type:
            text = f"{text} {appointment_type} appointment criteria"
        return await self.get_policy_context(TRIAGE_POLICY, text)

    async def get_emergency_context(self, symptoms: str) -> Context:
        return await self.get_policy_context(EMERGENCY_POLICY, symptoms)

    async def get_mental_health_context(self, concerns: str) -> Context:
        return await self.get_policy_context(MENTAL_HEALTH_POLICY, concerns)

    # ----------------------------------------
    # Index Management
    # ----------------------------------------

    async def get_index_status(self) -> IndexStatus:
        async def fetch() -> IndexStatus:
            total = await self.document_store.count_active()
            indexed, chunks, last = await self.vector_store.index_stats()
            return IndexStatus(
                total_documents=total,
                indexed_documents=indexed,
                total_chunks=chunks,
                last_indexed=last,
            )

        try:
            return await self.cache.get_or_set(
                GENERAL_PARTITION,
                INDEX_STATUS_KEY,
                fetch,
                ttl=self.settings.index_status_ttl_seconds,
            )
        except Exception as e:
            logger.error("Failed to read index status: %s", e, exc_info=True)
            return IndexStatus()

    async def remove_document(self, document_id: str) -> bool:
        """Deactivate a document, delete its chunks and drop cached references."""
        lock = self._lock_for(document_id)
        async with lock:
            deleted = await self.vector_store.delete_chunks(document_id)
            deactivated = await self.document_store.deactivate(document_id)
            self._invalidate_document(document_id)
        logger.info(
            "Removed document %s (%d chunks deleted, deactivated=%s)",
            document_id,
            deleted,
            deactivated,
        )
        return deactivated

    async def clear_index(self) -> int:
        """Delete every chunk. Documents stay and can be re-ingested."""
        removed = await self.vector_store.delete_all()
        self.cache.invalidate_all()
        logger.info("Cleared index: %d chunks deleted", removed)
        return removed

    def clear_cache(self) -> None:
        self.cache.invalidate_all()

    def _invalidate_document(self, document_id: str) -> None:
        # Cached searches may include or exclude this document
        self.cache.invalidate_everywhere(document_id)
        self.cache.invalidate_partition(SEARCH_PARTITION)
        self.cache.invalidate(GENERAL_PARTITION, INDEX_STATUS_KEY)
