"""
MedRoute Core Module

Domain models, collaborator protocols and the error taxonomy shared by
every other package.
"""

from medroute.core.errors import (
    ChunkingError,
    ConfigurationError,
    DiscoveryError,
    DocumentInactiveError,
    DocumentNotFoundError,
    EmbeddingDimensionError,
    EmbeddingError,
    MedRouteError,
)
from medroute.core.models import (
    Chunk,
    ChunkMetadata,
    Context,
    DiscoveredResource,
    Document,
    DocumentType,
    EnhancedAnalysis,
    GapPriority,
    GapType,
    IndexStatus,
    IngestionReport,
    KnowledgeGap,
    NewDocument,
    PatternAnalysis,
    QualityTier,
    ResearchResult,
    ScoutAnalysis,
    SearchResult,
    SourceClass,
    TextChunk,
    TradeRequirement,
    TriageClassification,
    VectorHit,
)
from medroute.core.protocols import (
    DocumentStore,
    EmbeddingProvider,
    VectorStore,
    WebDiscoveryProvider,
)

__all__ = [
    # Errors
    "MedRouteError",
    "ConfigurationError",
    "EmbeddingError",
    "EmbeddingDimensionError",
    "DocumentNotFoundError",
    "DocumentInactiveError",
    "ChunkingError",
    "DiscoveryError",
    # Models
    "DocumentType",
    "Document",
    "NewDocument",
    "Chunk",
    "ChunkMetadata",
    "TextChunk",
    "VectorHit",
    "SearchResult",
    "Context",
    "IndexStatus",
    "IngestionReport",
    "GapType",
    "GapPriority",
    "KnowledgeGap",
    "SourceClass",
    "QualityTier",
    "DiscoveredResource",
    "TriageClassification",
    "PatternAnalysis",
    "ScoutAnalysis",
    "EnhancedAnalysis",
    "ResearchResult",
    "TradeRequirement",
    # Protocols
    "DocumentStore",
    "VectorStore",
    "EmbeddingProvider",
    "WebDiscoveryProvider",
]
