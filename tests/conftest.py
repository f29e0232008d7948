"""
MedRoute Test Configuration

Pytest fixtures and configuration for the test suite. Services are wired
from in-memory stores and a deterministic keyword embedding provider, so
no test needs a database, a model download or network access.
"""

import re
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from medroute.config import Settings
from medroute.container import ServiceContainer, assemble
from medroute.core.models import Document, DocumentType, SourceClass
from medroute.db.memory import InMemoryDocumentStore, InMemoryVectorStore
from medroute.main import create_app
from medroute.observability.metrics import reset_metrics
from medroute.rag.cache import CacheLayer
from medroute.rag.embedding import EmbeddingService
from medroute.rag.improvement import ImprovementEngine
from medroute.rag.retriever import RetrievalService
from medroute.rag.web_search import WebResult

# ============================================
# Fake Collaborators
# ============================================

# One axis per topic; a text's vector counts the topic words it contains
TOPICS = (
    ("chest", "emergency", "breath", "bleeding", "unconscious", "cardiac", "heart"),
    ("physiotherapy", "ankle", "knee", "sprain", "muscle", "rehabilitation", "shoulder"),
    ("stress", "anxiety", "mental", "depression", "counseling"),
    ("policy", "appointment", "parade"),
)
BIAS = 0.1


class TopicEmbeddings:
    """EmbeddingProvider whose vectors are topic-word counts plus a small bias."""

    dimension = len(TOPICS) + 1

    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    @staticmethod
    def vector(text: str) -> list[float]:
        words = re.findall(r"[a-z]+", text.lower())
        counts = [
            float(sum(1 for w in words for k in topic if w.startswith(k))) for topic in TOPICS
        ]
        return counts + [BIAS]

    async def embed(self, text: str, is_query: bool = False) -> list[float]:
        return (await self.embed_batch([text], is_query=is_query))[0]

    async def embed_batch(self, texts: list[str], is_query: bool = False) -> list[list[float]]:
        self.batches.append(list(texts))
        return [self.vector(t) for t in texts]


class FakeDiscovery:
    """WebDiscoveryProvider returning the same canned results for every query."""

    def __init__(self, results: list[WebResult] | None = None, error: Exception | None = None):
        self.results = results or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str) -> list[WebResult]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)


# ============================================
# Sample Data
# ============================================

EMERGENCY_CONTENT = (
    "Any member presenting with sudden chest pain or chest pressure must be referred "
    "to the emergency department without delay. Shortness of breath at rest, severe "
    "bleeding and cardiac symptoms are emergency indicators. Staff must call emergency "
    "services and begin first aid while waiting for transport."
)

PHYSIO_CONTENT = (
    "Members with an ankle sprain, knee strain after running or shoulder overuse "
    "injuries are referred to physiotherapy. A structured rehabilitation program "
    "restores muscle strength before the member returns to full duties."
)

MENTAL_HEALTH_CONTENT = (
    "Members reporting persistent stress, anxiety or low mood are offered a mental "
    "health assessment. Counseling services are available through the base team and "
    "depression screening is repeated at every follow-up visit."
)


def make_long_protocol(length: int = 2400) -> str:
    """Protocol text of exactly ``length`` characters built from ~76-char sentences."""
    sentence = "Step {:02d}: assess airway, breathing and circulation, then record vital signs."
    text = " ".join(sentence.format(i) for i in range(60))
    return text[:length]


@pytest.fixture
def long_protocol_text() -> str:
    return make_long_protocol()


@pytest.fixture
def emergency_document() -> Document:
    return Document(
        title="Emergency Triage Protocol",
        document_type=DocumentType.PROTOCOL,
        source="CAF Health Services",
        content=EMERGENCY_CONTENT,
        tags=["emergency", "triage"],
    )


@pytest.fixture
def physio_document() -> Document:
    return Document(
        title="Physiotherapy Guidelines",
        document_type=DocumentType.GUIDELINE,
        source="CAF Health Services",
        content=PHYSIO_CONTENT,
        tags=["physio"],
    )


@pytest.fixture
def mental_health_document() -> Document:
    return Document(
        title="Mental Health Support Guideline",
        document_type=DocumentType.GUIDELINE,
        source="CAF Mental Health Services",
        content=MENTAL_HEALTH_CONTENT,
        tags=["mental-health"],
    )


@pytest.fixture
def long_protocol_document() -> Document:
    return Document(
        title="Primary Survey Protocol",
        document_type=DocumentType.PROTOCOL,
        source="CAF Health Services",
        content=make_long_protocol(),
    )


@pytest.fixture
def official_result() -> WebResult:
    return WebResult(
        title="CAF Emergency Medical Protocol",
        url="https://www.forces.gc.ca/health/emergency-protocol",
        content="Canadian Armed Forces emergency protocol for chest pain and breathing problems.",
        relevance=0.95,
        source_class=SourceClass.OFFICIAL,
        document_type=DocumentType.PROTOCOL,
    )


@pytest.fixture
def other_result() -> WebResult:
    return WebResult(
        title="Chest pain tips",
        url="https://healthblog.example.com/chest-pain",
        content="Some tips about chest pain.",
        relevance=0.72,
        source_class=SourceClass.OTHER,
        document_type=DocumentType.GUIDELINE,
    )


# ============================================
# Service Fixtures
# ============================================


@pytest.fixture(autouse=True)
def clean_metrics() -> Generator[None, None, None]:
    """Metrics are process-global; start every test from zero."""
    reset_metrics()
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_backend="memory", discovery_enabled=False)


@pytest.fixture
def provider() -> TopicEmbeddings:
    return TopicEmbeddings()


@pytest.fixture
def cache() -> CacheLayer:
    return CacheLayer()


@pytest.fixture
def embedding_service(provider, cache) -> EmbeddingService:
    return EmbeddingService(provider, cache=cache)


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore(TopicEmbeddings.dimension)


@pytest.fixture
def retrieval(document_store, vector_store, embedding_service, cache, settings) -> RetrievalService:
    return RetrievalService(
        document_store=document_store,
        vector_store=vector_store,
        embedding_service=embedding_service,
        cache=cache,
        settings=settings,
    )


@pytest.fixture
def discovery() -> FakeDiscovery:
    return FakeDiscovery()


@pytest.fixture
def engine(retrieval, document_store, discovery) -> ImprovementEngine:
    return ImprovementEngine(retrieval=retrieval, document_store=document_store, discovery=discovery)


@pytest.fixture
def container(
    settings, document_store, vector_store, embedding_service, cache
) -> ServiceContainer:
    return assemble(settings, document_store, vector_store, embedding_service, cache)


@pytest.fixture
def client(container) -> Generator[TestClient, None, None]:
    """Synchronous test client over an app with injected services."""
    with TestClient(create_app(container)) as c:
        yield c


# ============================================
# Pytest Configuration
# ============================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "requires_db: test requires database connection")
    config.addinivalue_line("markers", "requires_redis: test requires Redis connection")
