"""
MedRoute Embedding Module

Embedding providers (local sentence-transformers, OpenAI) and the
EmbeddingService wrapper used by ingestion and search. Providers fail with
an explicit error instead of returning placeholder vectors.
"""

import asyncio
import hashlib
import logging
from functools import lru_cache

import numpy as np

from medroute.config import Settings
from medroute.core.errors import (
    ConfigurationError,
    EmbeddingDimensionError,
    EmbeddingError,
)
from medroute.core.protocols import EmbeddingProvider
from medroute.rag.cache import GENERAL_PARTITION, CacheLayer, EmbeddingCache

logger = logging.getLogger(__name__)

# nomic-embed-text uses task-type prefixes for optimal retrieval.
QUERY_PREFIX = "search_query: "
DOCUMENT_PREFIX = "search_document: "

DEFAULT_BATCH_SIZE = 16

# Query embeddings are stable for a given model, keep them for an hour
QUERY_EMBEDDING_TTL_SECONDS = 60 * 60


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity dot(a, b) / (|a| |b|), in [-1, 1].

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


# ============================================
# Sentence-Transformers Provider
# ============================================


@lru_cache(maxsize=4)
def _load_st_model(model_name: str):
    """Load a sentence-transformers model once and cache it."""
    from sentence_transformers import SentenceTransformer

    logger.info("Loading sentence-transformers model: %s", model_name)
    model = SentenceTransformer(model_name, trust_remote_code=True)
    logger.info("Model loaded, dimension: %d", model.get_sentence_embedding_dimension())
    return model


def _encode_sync(model, texts: list[str], batch_size: int) -> list[list[float]]:
    """Run model.encode synchronously. Called via asyncio.to_thread.

    Encodes in small batches. If a batch hits a tensor size mismatch the
    batch is retried one text at a time; a text that still fails raises.
    """
    all_embeddings: list[list[float]] = []
    for start in range(0, len(texts), batch_size):
        batch = texts[start : start + batch_size]
        try:
            batch_np = model.encode(batch, batch_size=batch_size, show_progress_bar=False)
            all_embeddings.extend(emb.tolist() for emb in batch_np)
        except RuntimeError:
            for t in batch:
                single = model.encode([t], show_progress_bar=False)
                all_embeddings.append(single[0].tolist())
    return all_embeddings


class SentenceTransformerEmbeddings:
    """Local embedding provider backed by sentence-transformers."""

    def __init__(
        self,
        model_name: str,
        dimension: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if not model_name:
            raise ConfigurationError("An embedding model name is required")
        self.model_name = model_name
        self.dimension = dimension
        self.batch_size = batch_size
        # nomic models expect task prefixes, other models do not
        self._use_prefixes = "nomic" in model_name.lower()

    def _get_model(self):
        return _load_st_model(self.model_name)

    def _prefix(self, texts: list[str], is_query: bool) -> list[str]:
        if not self._use_prefixes:
            return texts
        prefix = QUERY_PREFIX if is_query else DOCUMENT_PREFIX
        return [prefix + t for t in texts]

    async def embed(self, text: str, is_query: bool = False) -> list[float]:
        return (await self.embed_batch([text], is_query=is_query))[0]

    async def embed_batch(
        self, texts: list[str], is_query: bool = False
    ) -> list[list[float]]:
        """Encode texts off the event loop, preserving order."""
        if not texts:
            return []
        try:
            model = self._get_model()
            return await asyncio.to_thread(
                _encode_sync, model, self._prefix(texts, is_query), self.batch_size
            )
        except Exception as e:
            raise EmbeddingError(f"sentence-transformers encode failed: {e}") from e


# ============================================
# OpenAI Provider
# ============================================


class OpenAIEmbeddings:
    """OpenAI embedding provider. Uses text-embedding-3-small by default."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        base_url: str | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAI embeddings")

        from openai import AsyncOpenAI

        self.model = model
        self.dimension = dimension
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, text: str, is_query: bool = False) -> list[float]:
        return (await self.embed_batch([text], is_query=is_query))[0]

    async def embed_batch(
        self, texts: list[str], is_query: bool = False
    ) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = await self._client.embeddings.create(input=texts, model=self.model)
        except Exception as e:
            raise EmbeddingError(f"OpenAI embeddings request failed: {e}") from e

        # The API may return items out of order; index restores input order
        data = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in data]

    async def close(self) -> None:
        await self._client.close()


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Build the provider selected by EMBEDDING_BACKEND."""
    if settings.embedding_backend == "openai":
        return OpenAIEmbeddings(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            base_url=settings.openai_base_url,
        )
    return SentenceTransformerEmbeddings(
        model_name=settings.embedding_model,
        dimension=settings.embedding_dimension,
        batch_size=settings.embedding_batch_size,
    )


# ============================================
# Embedding Service
# ============================================


class EmbeddingService:
    """Validating, caching wrapper around an EmbeddingProvider.

    Trims inputs, enforces a 1:1 input/output count and the corpus
    dimension, batches ingestion calls and caches query embeddings in the
    in-process cache and (optionally) in Redis.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: CacheLayer | None = None,
        embedding_cache: EmbeddingCache | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.embedding_cache = embedding_cache
        self.batch_size = batch_size

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def _check(self, vectors: list[list[float]], expected_count: int) -> None:
        if len(vectors) != expected_count:
            raise EmbeddingError(
                f"Provider returned {len(vectors)} embeddings for {expected_count} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingDimensionError(self.dimension, len(vector))

    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query, using the caches when possible.

        Raises:
            ValueError: If the text is empty after trimming.
            EmbeddingError: If the provider fails or returns a bad vector.
        """
        text = text.strip()
        if not text:
            raise ValueError("Cannot embed empty text")

        async def fetch() -> list[float]:
            if self.embedding_cache is not None:
                cached = await self.embedding_cache.get(text)
                if cached is not None and len(cached) == self.dimension:
                    return cached
            vectors = await self.provider.embed_batch([text], is_query=True)
            self._check(vectors, 1)
            if self.embedding_cache is not None:
                await self.embedding_cache.set(text, vectors[0])
            return vectors[0]

        if self.cache is None:
            return await fetch()

        key = "embedding:" + hashlib.sha256(text.encode()).hexdigest()
        return await self.cache.get_or_set(
            GENERAL_PARTITION, key, fetch, ttl=QUERY_EMBEDDING_TTL_SECONDS
        )

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed chunk texts in batches of ``batch_size``, preserving order.

        Raises:
            EmbeddingError: If any batch fails or returns a bad vector.
        """
        cleaned = [t.strip() for t in texts]
        if any(not t for t in cleaned):
            raise EmbeddingError("Cannot embed empty chunk text")

        embeddings: list[list[float]] = []
        for start in range(0, len(cleaned), self.batch_size):
            batch = cleaned[start : start + self.batch_size]
            vectors = await self.provider.embed_batch(batch, is_query=False)
            self._check(vectors, len(batch))
            embeddings.extend(vectors)
        return embeddings

    async def close(self) -> None:
        if self.embedding_cache is not None:
            await self.embedding_cache.close()
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
