"""
MedRoute Service Container

Builds every service once, at startup, from a validated Settings object and
hands them out explicitly. Tests construct a container from fakes instead.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine

from medroute.config import Settings
from medroute.core.protocols import DocumentStore, VectorStore, WebDiscoveryProvider
from medroute.rag.cache import CacheLayer, CachePartition, EmbeddingCache
from medroute.rag.embedding import EmbeddingService, create_embedding_provider
from medroute.rag.improvement import ImprovementEngine
from medroute.rag.retriever import RetrievalService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    document_store: DocumentStore
    vector_store: VectorStore
    embedding_service: EmbeddingService
    cache: CacheLayer
    retrieval: RetrievalService
    improvement: ImprovementEngine
    discovery: WebDiscoveryProvider | None = None
    engine: AsyncEngine | None = field(default=None, repr=False)

    async def aclose(self) -> None:
        await self.embedding_service.close()
        if self.engine is not None:
            from medroute.db.postgres import close_db

            await close_db(self.engine)
        logger.info("Service container closed")


def build_cache(settings: Settings) -> CacheLayer:
    return CacheLayer(
        partitions=[
            CachePartition("search", settings.cache_search_max_size, settings.cache_search_ttl_seconds),
            CachePartition("store", settings.cache_store_max_size, settings.cache_store_ttl_seconds),
            CachePartition(
                "session", settings.cache_session_max_size, settings.cache_session_ttl_seconds
            ),
            CachePartition(
                "general", settings.cache_general_max_size, settings.cache_general_ttl_seconds
            ),
        ],
        health_threshold=settings.cache_health_threshold,
    )


def assemble(
    settings: Settings,
    document_store: DocumentStore,
    vector_store: VectorStore,
    embedding_service: EmbeddingService,
    cache: CacheLayer,
    discovery: WebDiscoveryProvider | None = None,
    engine: AsyncEngine | None = None,
) -> ServiceContainer:
    """Wire the services on top of already-built collaborators."""
    retrieval = RetrievalService(
        document_store=document_store,
        vector_store=vector_store,
        embedding_service=embedding_service,
        cache=cache,
        settings=settings,
    )
    improvement = ImprovementEngine(
        retrieval=retrieval,
        document_store=document_store,
        discovery=discovery,
    )
    return ServiceContainer(
        settings=settings,
        document_store=document_store,
        vector_store=vector_store,
        embedding_service=embedding_service,
        cache=cache,
        retrieval=retrieval,
        improvement=improvement,
        discovery=discovery,
        engine=engine,
    )


async def build_container(settings: Settings) -> ServiceContainer:
    """Build all services for the configured backends.

    Raises:
        ConfigurationError: If a provider lacks required configuration.
    """
    cache = build_cache(settings)

    provider = create_embedding_provider(settings)
    embedding_cache = (
        EmbeddingCache(
            settings.redis_url,
            model_name=settings.embedding_model,
            ttl_seconds=settings.embedding_cache_ttl_seconds,
        )
        if settings.redis_url
        else None
    )
    embedding_service = EmbeddingService(
        provider,
        cache=cache,
        embedding_cache=embedding_cache,
        batch_size=settings.embedding_batch_size,
    )

    engine = None
    if settings.storage_backend == "postgres":
        from medroute.db.postgres import create_db_engine, create_session_factory, init_db
        from medroute.db.stores import PgDocumentStore, PgVectorStore

        engine = create_db_engine(settings.database_url, echo=settings.db_echo)
        await init_db(engine, settings.embedding_dimension)
        session_factory = create_session_factory(engine)
        document_store: DocumentStore = PgDocumentStore(session_factory)
        vector_store: VectorStore = PgVectorStore(session_factory, settings.embedding_dimension)
        logger.info("Using PostgreSQL storage backend")
    else:
        from medroute.db.memory import InMemoryDocumentStore, InMemoryVectorStore

        document_store = InMemoryDocumentStore()
        vector_store = InMemoryVectorStore(settings.embedding_dimension)
        logger.info("Using in-memory storage backend")

    discovery = None
    if settings.discovery_enabled:
        from medroute.rag.web_search import DuckDuckGoDiscoveryProvider

        discovery = DuckDuckGoDiscoveryProvider(
            max_results=settings.discovery_max_results,
            region=settings.discovery_region,
            scoped=settings.discovery_scoped_search,
        )

    return assemble(
        settings,
        document_store,
        vector_store,
        embedding_service,
        cache,
        discovery=discovery,
        engine=engine,
    )
