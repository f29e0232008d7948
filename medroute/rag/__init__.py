"""
MedRoute RAG Module

Ingestion, retrieval and continuous-improvement pipeline for medical
reference documents: chunking, embedding, caching, similarity search,
context assembly, gap detection and web discovery.
"""

from medroute.rag.cache import (
    DEFAULT_PARTITIONS,
    CacheLayer,
    CachePartition,
    CacheStats,
    EmbeddingCache,
    LRUBackend,
    make_key,
)
from medroute.rag.chunker import (
    DocumentChunker,
    chunker_for,
    create_dense_chunker,
    create_wide_chunker,
)
from medroute.rag.embedding import (
    EmbeddingService,
    OpenAIEmbeddings,
    SentenceTransformerEmbeddings,
    cosine_similarity,
    create_embedding_provider,
)
from medroute.rag.improvement import ImprovementEngine
from medroute.rag.retriever import (
    EMERGENCY_POLICY,
    MENTAL_HEALTH_POLICY,
    TRIAGE_POLICY,
    RetrievalPolicy,
    RetrievalService,
)
from medroute.rag.web_search import DuckDuckGoDiscoveryProvider, WebResult

__all__ = [
    # Chunker
    "DocumentChunker",
    "chunker_for",
    "create_dense_chunker",
    "create_wide_chunker",
    # Embedding
    "EmbeddingService",
    "SentenceTransformerEmbeddings",
    "OpenAIEmbeddings",
    "cosine_similarity",
    "create_embedding_provider",
    # Cache
    "CacheLayer",
    "CachePartition",
    "CacheStats",
    "DEFAULT_PARTITIONS",
    "EmbeddingCache",
    "LRUBackend",
    "make_key",
    # Retrieval
    "RetrievalService",
    "RetrievalPolicy",
    "TRIAGE_POLICY",
    "EMERGENCY_POLICY",
    "MENTAL_HEALTH_POLICY",
    # Improvement
    "ImprovementEngine",
    "DuckDuckGoDiscoveryProvider",
    "WebResult",
]
