"""
MedRoute Domain Models

Pydantic models for persisted entities (documents and chunks) and
dataclasses for the ephemeral results the services hand back.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# ============================================
# Enumerations
# ============================================


class DocumentType(str, Enum):
    """Kind of corpus document. Drives the chunking profile and retrieval filters."""

    PROTOCOL = "protocol"
    GUIDELINE = "guideline"
    POLICY = "policy"
    STANDARD = "standard"
    REQUIREMENT = "requirement"
    SPECIALIST_PROTOCOL = "specialist_protocol"


class GapType(str, Enum):
    MISSING_DOCUMENTATION = "missing_documentation"
    INSUFFICIENT_COVERAGE = "insufficient_coverage"
    OUTDATED_PROTOCOL = "outdated_protocol"
    SPECIALTY_GAP = "specialty_gap"


class GapPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SourceClass(str, Enum):
    """Authority of a discovered web source, most authoritative first."""

    OFFICIAL = "official"
    GOVERNMENT = "government"
    MEDICAL_AUTHORITY = "medical_authority"
    ACADEMIC = "academic"
    OTHER = "other"


class QualityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4())


# ============================================
# Documents
# ============================================


class NewDocument(BaseModel):
    """Payload for DocumentStore.create.

    Attributes:
        title: Human-readable document title.
        document_type: Kind of document, see DocumentType.
        source: Publishing organisation or origin label.
        url: Optional canonical URL of the source.
        content: Full document text to be chunked.
        version: Optional version label.
        tags: Free-form tags used for lookup.
        metadata: Additional metadata (discovery query, quality tier, ...).
    """

    title: str = Field(..., min_length=1)
    document_type: DocumentType
    source: str = Field(..., min_length=1)
    url: str | None = None
    content: str = ""
    version: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Document(NewDocument):
    """A persisted corpus document. Never deleted, only deactivated."""

    id: str = Field(default_factory=new_id)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ============================================
# Chunks
# ============================================


class ChunkMetadata(BaseModel):
    """Offsets and denormalised document identity carried by every chunk."""

    chunk_index: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., ge=0)
    document_title: str = ""
    document_type: str = ""
    source: str = ""


class TextChunk(BaseModel):
    """Chunker output: cleaned text plus metadata, not yet embedded."""

    content: str
    metadata: ChunkMetadata

    @property
    def chunk_index(self) -> int:
        return self.metadata.chunk_index


class Chunk(BaseModel):
    """An embedded chunk as persisted by a VectorStore.

    Attributes:
        id: Chunk id.
        document_id: Parent document id.
        chunk_index: Zero-based, contiguous position within the document.
        content: Cleaned chunk text.
        embedding: Fixed-length vector, dimension checked by the store on write.
        metadata: Offsets and denormalised document identity.
    """

    id: str = Field(default_factory=new_id)
    document_id: str
    chunk_index: int = Field(..., ge=0)
    content: str
    embedding: list[float]
    metadata: ChunkMetadata
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("embedding")
    @classmethod
    def validate_embedding(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("embedding must not be empty")
        if not all(math.isfinite(x) for x in v):
            raise ValueError("embedding contains non-finite values")
        return v


# ============================================
# Search Results
# ============================================


@dataclass
class VectorHit:
    """Raw VectorStore search hit, before document enrichment."""

    chunk_id: str
    document_id: str
    content: str
    metadata: dict[str, Any]
    similarity: float


@dataclass
class SearchResult:
    """A chunk returned by RetrievalService.search_documents.

    ``similarity`` is cosine similarity in its native range [-1, 1]. Any
    returned result has already passed the search threshold.
    """

    content: str
    similarity: float
    document_id: str
    document_title: str
    document_type: str
    source: str
    chunk_index: int
    url: str | None = None


@dataclass
class Context:
    """Ordered search results for a query plus a readable summary."""

    query: str
    results: list[SearchResult]
    total_results: int
    search_time_ms: float
    summary: str


@dataclass
class IndexStatus:
    total_documents: int = 0
    indexed_documents: int = 0
    total_chunks: int = 0
    last_indexed: datetime | None = None


@dataclass
class IngestionReport:
    success: int = 0
    failed: int = 0


# ============================================
# Continuous Improvement
# ============================================


@dataclass
class TriageClassification:
    """Upstream routing decision for a query.

    ``appointment_type`` is one of: ER referral, specialist, mental health,
    physio, GP.
    """

    appointment_type: str
    reason: str | None = None


@dataclass
class KnowledgeGap:
    gap_type: GapType
    description: str
    priority: GapPriority
    suggested_action: str


@dataclass
class DiscoveredResource:
    """A candidate web document found during resource discovery."""

    title: str
    url: str
    source_class: SourceClass
    document_type: DocumentType
    relevance: float
    discovery_query: str
    eligible: bool
    quality: QualityTier
    snippet: str = ""


@dataclass
class PatternAnalysis:
    primary_symptoms: list[str]
    emergency_indicators: list[str]
    complexity_indicators: list[str]
    triage_category: str
    symptom_count: int


@dataclass
class ScoutAnalysis:
    keywords: list[str]
    patterns: PatternAnalysis
    confidence_factors: list[str] = field(default_factory=list)
    improvement_suggestions: list[str] = field(default_factory=list)


@dataclass
class EnhancedAnalysis:
    """Result of ImprovementEngine.perform_enhanced_analysis."""

    gaps: list[KnowledgeGap]
    discovered_resources: list[DiscoveredResource]
    learning_recommendations: list[str]
    analysis: ScoutAnalysis | None = None
    ingested_count: int = 0


@dataclass
class ResearchResult:
    """Result of ImprovementEngine.research_topic."""

    topic: str
    documents: list[DiscoveredResource]
    summary: str
    sources: list[str] = field(default_factory=list)
    ingested_count: int = 0


@dataclass(frozen=True)
class TradeRequirement:
    """A periodic medical requirement inferred for a military trade."""

    trade: str
    category: str
    requirement: str
    frequency: str
    authority: str
    source: str
