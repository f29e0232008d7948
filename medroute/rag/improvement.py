"""
MedRoute Continuous Improvement Engine

Analyses a classified query against the corpus, reports knowledge gaps,
discovers candidate external resources, scores them and auto-ingests the
eligible ones, then emits advisory learning recommendations.

Stateless across calls: every analysis starts from the query text, the
upstream classification and the current corpus.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from urllib.parse import urlparse

from medroute.core.errors import DiscoveryError
from medroute.core.models import (
    DiscoveredResource,
    DocumentType,
    EnhancedAnalysis,
    GapPriority,
    GapType,
    IndexStatus,
    KnowledgeGap,
    NewDocument,
    PatternAnalysis,
    QualityTier,
    ResearchResult,
    ScoutAnalysis,
    SearchResult,
    SourceClass,
    TradeRequirement,
    TriageClassification,
)
from medroute.core.protocols import DocumentStore, WebDiscoveryProvider
from medroute.observability.metrics import record_auto_ingestion
from medroute.rag.retriever import RetrievalService
from medroute.rag.web_search import WebResult

logger = logging.getLogger(__name__)

# ============================================
# Vocabularies
# ============================================

MEDICAL_KEYWORDS = (
    "pain",
    "ache",
    "fever",
    "cough",
    "headache",
    "nausea",
    "dizzy",
    "fatigue",
    "chest pain",
    "shortness of breath",
    "breathing",
    "heart",
    "bleeding",
    "severe",
    "acute",
    "sudden",
    "emergency",
    "urgent",
    "unconscious",
    "stress",
    "anxiety",
    "depression",
    "mental health",
    "counseling",
    "pilot",
    "aircrew",
    "aviation",
    "flight medical",
    "combat",
    "military",
)
MAX_KEYWORDS = 15

EMERGENCY_INDICATORS = (
    "severe",
    "acute",
    "sudden",
    "emergency",
    "urgent",
    "chest pain",
    "breathing",
)
COMPLEXITY_INDICATORS = ("multiple", "chronic", "recurring", "persistent")
MENTAL_HEALTH_TERMS = (
    "stress",
    "anxiety",
    "depression",
    "mental health",
    "counseling",
    "therapy",
)
AVIATION_TERMS = ("pilot", "aircrew", "aviation", "flight medical")
CARDIOVASCULAR_TERMS = ("chest pain", "breathing", "heart")

CATEGORY_QUERIES = {
    "ER referral": ["CAF emergency medical procedures", "military medical emergency protocols"],
    "specialist": ["CAF specialist referral guidelines", "military specialist medical care"],
    "mental health": ["CAF mental health support protocols", "military mental health guidelines"],
    "physio": ["CAF physiotherapy protocols", "military physical therapy guidelines"],
}
AVIATION_QUERIES = ["CAF aviation medicine requirements", "military pilot medical standards"]

TRADE_QUERY_TEMPLATES = (
    "CAF {trade} medical requirements annual testing",
    "Canadian Forces {trade} occupational health standards",
    "{trade} military medical fitness standards Canada",
    "CAF {trade} periodic health assessment requirements",
)

# (all of, any of, category, requirement, source)
REQUIREMENT_RULES = (
    (
        ("annual", "medical"),
        (),
        "Annual Medical",
        "Annual medical examination",
        "CAF Medical Standards",
    ),
    (
        ("vision", "test"),
        (),
        "Vision Standards",
        "Visual acuity and color vision testing",
        "CAF Vision Standards",
    ),
    (
        (),
        ("cardiovascular", "cardiac"),
        "Cardiovascular Health",
        "Cardiovascular assessment and fitness evaluation",
        "CAF Cardiovascular Standards",
    ),
)
REQUIREMENT_FREQUENCY = "Annually"
REQUIREMENT_AUTHORITY = "CAF Medical Officer"

TITLE_STOP_WORDS = frozenset(
    {"a", "an", "the", "for", "of", "in", "and", "on", "with", "guide", "protocol", "document"}
)

# ============================================
# Thresholds
# ============================================

GAP_SEARCH_THRESHOLD = 0.7
GAP_SEARCH_LIMIT = 5
EMERGENCY_MIN_RESULTS = 3

MAX_DISCOVERY_QUERIES = 3
MAX_RESULTS_PER_QUERY = 2
DISCOVERY_MIN_RELEVANCE = 0.7
INGESTION_MIN_RELEVANCE = 0.8

RESEARCH_INGEST_LIMIT = 5
RESEARCH_MIN_RELEVANCE = 0.7

SMALL_CORPUS_DOCUMENTS = 10
RICH_CORPUS_CHUNKS = 50
DETAILED_TEXT_LENGTH = 100

SOURCE_AUTHORITY_POINTS = {
    SourceClass.OFFICIAL: 3,
    SourceClass.GOVERNMENT: 2,
    SourceClass.MEDICAL_AUTHORITY: 2,
}

_NON_TAG_CHARS = re.compile(r"[^a-z0-9\s-]")

EMERGENCY_CATEGORY = "ER referral"
SPECIALIST_CATEGORY = "specialist"
LOW_URGENCY_CATEGORY = "GP"


def _contains_any(text: str, terms: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(term in lower for term in terms)


def extract_medical_keywords(text: str) -> list[str]:
    """Vocabulary terms present in the text, in vocabulary order."""
    lower = text.lower()
    return [k for k in MEDICAL_KEYWORDS if k in lower][:MAX_KEYWORDS]


def evaluate_resource_quality(
    source_class: SourceClass, document_type: DocumentType, relevance: float
) -> QualityTier:
    """Weighted sum of source authority, document-type authority and relevance."""
    score = SOURCE_AUTHORITY_POINTS.get(source_class, 1)
    score += 2 if document_type in (DocumentType.PROTOCOL, DocumentType.GUIDELINE) else 1
    if relevance > 0.9:
        score += 2
    elif relevance > 0.8:
        score += 1

    if score >= 6:
        return QualityTier.HIGH
    if score >= 4:
        return QualityTier.MEDIUM
    return QualityTier.LOW


def title_tags(title: str) -> list[str]:
    """Tags from a title: lowercase words longer than two chars, minus stop words."""
    words = _NON_TAG_CHARS.sub("", title.lower()).split()
    return list(dict.fromkeys(w for w in words if w not in TITLE_STOP_WORDS and len(w) > 2))


def placeholder_content(resource: DiscoveredResource) -> str:
    """Templated body for an auto-ingested resource, plus its discovery snippet."""
    body = (
        f"Reference document for: {resource.title}. "
        f"Full content available at {resource.url}. "
        "This document was automatically discovered and ingested "
        "based on its relevance to user queries."
    )
    if resource.snippet:
        body = f"{body}\n\n{resource.snippet}"
    return body


def _to_resource(result: WebResult, query: str, eligible: bool) -> DiscoveredResource:
    return DiscoveredResource(
        title=result.title,
        url=result.url,
        source_class=result.source_class,
        document_type=result.document_type,
        relevance=result.relevance,
        discovery_query=query,
        eligible=eligible,
        quality=evaluate_resource_quality(
            result.source_class, result.document_type, result.relevance
        ),
        snippet=result.content,
    )


def extract_trade_requirements(content: str, trade: str) -> list[TradeRequirement]:
    """Requirements whose trigger words all (or any) appear in the content."""
    lower = content.lower()
    found = []
    for all_of, any_of, category, requirement, source in REQUIREMENT_RULES:
        if all(t in lower for t in all_of) and (not any_of or any(t in lower for t in any_of)):
            found.append(
                TradeRequirement(
                    trade=trade,
                    category=category,
                    requirement=requirement,
                    frequency=REQUIREMENT_FREQUENCY,
                    authority=REQUIREMENT_AUTHORITY,
                    source=source,
                )
            )
    return found


def research_summary(topic: str, documents: list[DiscoveredResource]) -> str:
    if not documents:
        return f'No documents found for "{topic}".'
    classes = list(dict.fromkeys(d.source_class.value for d in documents))
    return (
        f'Found {len(documents)} documents for "{topic}" from '
        f"{len(classes)} source classes: {', '.join(classes)}."
    )


# ============================================
# Improvement Engine
# ============================================


class ImprovementEngine:
    """Gap detection, resource discovery and auto-ingestion."""

    def __init__(
        self,
        retrieval: RetrievalService,
        document_store: DocumentStore,
        discovery: WebDiscoveryProvider | None = None,
        auto_ingest: bool = True,
    ) -> None:
        self.retrieval = retrieval
        self.document_store = document_store
        self.discovery = discovery
        self.auto_ingest = auto_ingest

    async def perform_enhanced_analysis(
        self, text: str, classification: TriageClassification
    ) -> EnhancedAnalysis:
        """Run the full improvement cycle for one classified query.

        Pattern analysis, gap detection and discovery run concurrently;
        ingestion and recommendations follow.
        """
        logger.info(
            "Enhanced analysis for %s query (%d chars)",
            classification.appointment_type,
            len(text),
        )
        analysis, gaps, resources = await asyncio.gather(
            self.perform_scout_analysis(text, classification),
            self.detect_knowledge_gaps(text, classification),
            self.discover_resources(text, classification),
        )

        ingested = 0
        if self.auto_ingest and resources:
            ingested = await self.ingest_discovered_resources(resources)

        recommendations = await self.generate_learning_recommendations(
            text, classification, gaps
        )
        return EnhancedAnalysis(
            gaps=gaps,
            discovered_resources=resources,
            learning_recommendations=recommendations,
            analysis=analysis,
            ingested_count=ingested,
        )

    # ----------------------------------------
    # Pattern Analysis
    # ----------------------------------------

    async def perform_scout_analysis(
        self, text: str, classification: TriageClassification
    ) -> ScoutAnalysis:
        keywords = extract_medical_keywords(text)
        lower = text.lower()
        patterns = PatternAnalysis(
            primary_symptoms=keywords[:3],
            emergency_indicators=[t for t in EMERGENCY_INDICATORS if t in lower],
            complexity_indicators=[t for t in COMPLEXITY_INDICATORS if t in lower],
            triage_category=classification.appointment_type,
            symptom_count=len(keywords),
        )
        status = await self.retrieval.get_index_status()
        return ScoutAnalysis(
            keywords=keywords,
            patterns=patterns,
            confidence_factors=self._confidence_factors(text, classification, keywords, status),
            improvement_suggestions=self._improvement_suggestions(
                text, classification, keywords, status
            ),
        )

    @staticmethod
    def _confidence_factors(
        text: str,
        classification: TriageClassification,
        keywords: list[str],
        status: IndexStatus,
    ) -> list[str]:
        factors = []
        if status.total_chunks > RICH_CORPUS_CHUNKS:
            factors.append("Rich knowledge base available for evidence-based decisions")
        else:
            factors.append("Limited knowledge base, confidence may be reduced")

        if classification.appointment_type == EMERGENCY_CATEGORY:
            factors.append("Emergency indicators detected, high confidence in urgency assessment")

        if len(text) > DETAILED_TEXT_LENGTH:
            factors.append("Detailed symptom description provides good analytical context")
        else:
            factors.append("Brief description, may benefit from additional details")

        if len(keywords) > 3:
            factors.append("Multiple medical indicators support decision confidence")
        return factors

    @staticmethod
    def _improvement_suggestions(
        text: str,
        classification: TriageClassification,
        keywords: list[str],
        status: IndexStatus,
    ) -> list[str]:
        suggestions = []
        lower = text.lower()
        if status.total_documents < SMALL_CORPUS_DOCUMENTS:
            suggestions.append("Expand medical reference library for evidence-based decisions")
        if classification.appointment_type == LOW_URGENCY_CATEGORY and "pain" in lower:
            suggestions.append("Implement standardized pain assessment scales and protocols")
        if len(keywords) < 3:
            suggestions.append("Encourage more detailed symptom reporting in the triage interface")
        if "pilot" in lower and status.total_documents < 5:
            suggestions.append("Add aviation medicine protocols for pilot-specific requirements")
        return suggestions

    # ----------------------------------------
    # Gap Detection
    # ----------------------------------------

    async def detect_knowledge_gaps(
        self, text: str, classification: TriageClassification
    ) -> list[KnowledgeGap]:
        """Compare what the corpus returns for the query against what it should."""
        try:
            results = await self.retrieval.search_documents(
                text,
                limit=GAP_SEARCH_LIMIT,
                threshold=GAP_SEARCH_THRESHOLD,
                strict=True,
            )
        except Exception as e:
            logger.error("Knowledge gap detection failed: %s", e, exc_info=True)
            return [
                KnowledgeGap(
                    gap_type=GapType.MISSING_DOCUMENTATION,
                    description="Unable to analyze knowledge base completeness",
                    priority=GapPriority.MEDIUM,
                    suggested_action="Check knowledge base connectivity and integrity",
                )
            ]
        return self._gaps_for(text, classification, results)

    @staticmethod
    def _gaps_for(
        text: str, classification: TriageClassification, results: list[SearchResult]
    ) -> list[KnowledgeGap]:
        gaps = []
        keywords = extract_medical_keywords(text)
        titles = [r.document_title.lower() for r in results]

        if not results:
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.MISSING_DOCUMENTATION,
                    description=(
                        "No relevant documentation found for: "
                        + (", ".join(keywords) or text.strip()[:80])
                    ),
                    priority=GapPriority.HIGH,
                    suggested_action="Search and ingest relevant medical protocols",
                )
            )

        if (
            classification.appointment_type == EMERGENCY_CATEGORY
            and len(results) < EMERGENCY_MIN_RESULTS
        ):
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.INSUFFICIENT_COVERAGE,
                    description="Limited emergency protocol documentation for this scenario",
                    priority=GapPriority.CRITICAL,
                    suggested_action="Expand emergency medical protocol library",
                )
            )

        if classification.appointment_type == SPECIALIST_CATEGORY and not any(
            r.document_type == DocumentType.SPECIALIST_PROTOCOL.value for r in results
        ):
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.SPECIALTY_GAP,
                    description="Missing specialist referral protocols",
                    priority=GapPriority.MEDIUM,
                    suggested_action="Add specialist referral guidelines",
                )
            )

        if _contains_any(text, MENTAL_HEALTH_TERMS) and not any("mental" in t for t in titles):
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.SPECIALTY_GAP,
                    description="Limited mental health guidance documentation",
                    priority=GapPriority.HIGH,
                    suggested_action="Ingest mental health support protocols",
                )
            )

        if _contains_any(text, AVIATION_TERMS) and not any("aviation" in t for t in titles):
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.SPECIALTY_GAP,
                    description="Missing aviation medicine protocols",
                    priority=GapPriority.HIGH,
                    suggested_action="Add aviation medical examination requirements and protocols",
                )
            )
        return gaps

    # ----------------------------------------
    # Resource Discovery
    # ----------------------------------------

    @staticmethod
    def generate_search_queries(
        text: str, classification: TriageClassification
    ) -> list[str]:
        """Targeted discovery queries, most specific first, without duplicates."""
        queries = list(CATEGORY_QUERIES.get(classification.appointment_type, []))
        queries += [f"CAF medical protocol {k}" for k in extract_medical_keywords(text)[:2]]
        if _contains_any(text, AVIATION_TERMS):
            queries += AVIATION_QUERIES
        return list(dict.fromkeys(queries))

    async def discover_resources(
        self, text: str, classification: TriageClassification
    ) -> list[DiscoveredResource]:
        """Query the discovery provider and keep authoritative, relevant hits."""
        if self.discovery is None:
            return []

        queries = self.generate_search_queries(text, classification)[:MAX_DISCOVERY_QUERIES]
        found: dict[str, DiscoveredResource] = {}

        for query in queries:
            try:
                results = await self.discovery.search(query)
            except Exception as e:
                logger.warning("Discovery query %r failed: %s", query, e)
                continue

            kept = [
                r
                for r in results
                if r.relevance > DISCOVERY_MIN_RELEVANCE and r.source_class != SourceClass.OTHER
            ][:MAX_RESULTS_PER_QUERY]

            for r in kept:
                if r.url in found:
                    continue
                found[r.url] = _to_resource(
                    r, query, eligible=r.relevance > INGESTION_MIN_RELEVANCE
                )

        resources = sorted(found.values(), key=lambda r: r.relevance, reverse=True)
        logger.info("Discovered %d candidate resources from %d queries", len(resources), len(queries))
        return resources

    # ----------------------------------------
    # Auto-Ingestion
    # ----------------------------------------

    async def ingest_discovered_resources(self, resources: list[DiscoveredResource]) -> int:
        """Promote eligible resources to corpus documents and index them.

        Returns:
            Number of resources created and indexed.
        """
        ingested = 0
        for resource in resources:
            if resource.eligible and await self._ingest_resource(resource):
                ingested += 1

        if ingested:
            record_auto_ingestion(ingested)
        return ingested

    async def _ingest_resource(self, resource: DiscoveredResource) -> bool:
        """Create and index one resource. False when skipped or on failure."""
        try:
            if await self.document_store.get_by_url(resource.url) is not None:
                logger.info("Resource already in corpus: %s", resource.url)
                return False

            document = await self.document_store.create(
                NewDocument(
                    title=resource.title,
                    document_type=resource.document_type,
                    source=urlparse(resource.url).hostname or resource.source_class.value,
                    url=resource.url,
                    content=placeholder_content(resource),
                    version=str(datetime.now(timezone.utc).year),
                    tags=title_tags(resource.title),
                    metadata={
                        "auto_ingested": True,
                        "source_class": resource.source_class.value,
                        "quality": resource.quality.value,
                        "relevance": resource.relevance,
                        "discovery_query": resource.discovery_query,
                    },
                )
            )
            if await self.retrieval.ingest_document(document.id):
                logger.info("Auto-ingested %s (%s)", document.title, document.id)
                return True
            logger.warning("Created %s but indexing failed", document.id)
        except Exception as e:
            logger.error("Failed to ingest resource %s: %s", resource.url, e, exc_info=True)
        return False

    # ----------------------------------------
    # Topic Research
    # ----------------------------------------

    async def research_topic(self, topic: str) -> ResearchResult:
        """Search a topic across the authority streams and ingest the best hits.

        The top five results with relevance above 0.7 from a non-"other"
        source are ingested when auto-ingestion is enabled.

        Raises:
            DiscoveryError: If no discovery provider is configured or the
                search fails.
        """
        if self.discovery is None:
            raise DiscoveryError("Web discovery is not configured")

        results = await self.discovery.search(topic)
        documents = [
            _to_resource(
                r,
                topic,
                eligible=r.relevance > RESEARCH_MIN_RELEVANCE
                and r.source_class != SourceClass.OTHER,
            )
            for r in results
        ]

        sources = []
        if self.auto_ingest:
            for resource in documents[:RESEARCH_INGEST_LIMIT]:
                if resource.eligible and await self._ingest_resource(resource):
                    sources.append(resource.title)
            if sources:
                record_auto_ingestion(len(sources))

        logger.info(
            "Researched %r: %d documents, %d ingested", topic, len(documents), len(sources)
        )
        return ResearchResult(
            topic=topic,
            documents=documents,
            summary=research_summary(topic, documents),
            sources=sources,
            ingested_count=len(sources),
        )

    async def find_trade_requirements(self, trade: str) -> list[TradeRequirement]:
        """Periodic medical requirements for a trade, inferred from web results.

        Trade queries run concurrently; a failed query is logged and skipped.
        """
        if self.discovery is None:
            raise DiscoveryError("Web discovery is not configured")

        queries = [t.format(trade=trade) for t in TRADE_QUERY_TEMPLATES]
        outcomes = await asyncio.gather(
            *(self.discovery.search(q) for q in queries), return_exceptions=True
        )

        requirements: dict[tuple[str, str, str], TradeRequirement] = {}
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Trade requirement query %r failed: %s", query, outcome)
                continue
            for result in outcome:
                for req in extract_trade_requirements(result.content, trade):
                    requirements.setdefault((req.trade, req.category, req.requirement), req)

        logger.info("Found %d requirements for trade %s", len(requirements), trade)
        return list(requirements.values())

    # ----------------------------------------
    # Learning Recommendations
    # ----------------------------------------

    async def generate_learning_recommendations(
        self,
        text: str,
        classification: TriageClassification,
        gaps: list[KnowledgeGap],
    ) -> list[str]:
        """Advisory strings. Nothing here is acted on automatically."""
        recommendations = []
        lower = text.lower()
        keywords = extract_medical_keywords(text)

        if len(gaps) > 2:
            recommendations.append(
                "Implement automated medical document discovery and ingestion pipeline"
            )
        if classification.appointment_type == LOW_URGENCY_CATEGORY and "urgent" in lower:
            recommendations.append(
                "Review urgency assessment: possible under-triage of emergency indicators"
            )
        if len(keywords) > 5:
            recommendations.append(
                "Develop multi-symptom correlation for complex presentations"
            )
        if any(k in CARDIOVASCULAR_TERMS for k in keywords):
            recommendations.append("Update cardiovascular emergency protocols and decision trees")
        if _contains_any(text, MENTAL_HEALTH_TERMS):
            recommendations.append("Expand mental health triage capabilities and crisis detection")
        if "pilot" in lower:
            recommendations.append(
                "Integrate aviation medicine standards and flight medical requirements"
            )
        if any(g.priority == GapPriority.CRITICAL for g in gaps):
            recommendations.append(
                "Critical knowledge gaps detected: immediate protocol review required"
            )

        status = await self.retrieval.get_index_status()
        if status.total_documents < SMALL_CORPUS_DOCUMENTS:
            recommendations.append(
                "Expand the knowledge base to at least 50 documents for reliable retrieval"
            )
        return recommendations
