"""
Tests for the continuous-improvement engine.

Tests cover:
- Knowledge gap detection and its degraded fallback
- Resource discovery filtering, eligibility and quality scoring
- Auto-ingestion of eligible resources
- Pattern analysis and learning recommendations
- Topic research and trade requirement extraction
"""

import pytest

from medroute.core.errors import DiscoveryError
from medroute.core.models import (
    DiscoveredResource,
    DocumentType,
    GapPriority,
    GapType,
    QualityTier,
    SourceClass,
    TriageClassification,
)
from medroute.observability.metrics import get_metrics_snapshot
from medroute.rag.improvement import (
    ImprovementEngine,
    evaluate_resource_quality,
    extract_medical_keywords,
    extract_trade_requirements,
    placeholder_content,
    research_summary,
    title_tags,
)
from medroute.rag.web_search import WebResult

GP = TriageClassification(appointment_type="GP")
ER = TriageClassification(appointment_type="ER referral")
SPECIALIST = TriageClassification(appointment_type="specialist")


# ============================================
# Gap Detection
# ============================================


class TestKnowledgeGaps:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_hits_yields_one_high_missing_documentation_gap(self, engine):
        gaps = await engine.detect_knowledge_gaps("persistent cough at night", GP)

        missing = [g for g in gaps if g.gap_type == GapType.MISSING_DOCUMENTATION]
        assert len(missing) == 1
        assert missing[0].priority == GapPriority.HIGH

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_hits_emergency_adds_critical_coverage_gap(self, engine):
        gaps = await engine.detect_knowledge_gaps("sudden chest pain", ER)

        kinds = {(g.gap_type, g.priority) for g in gaps}
        assert (GapType.MISSING_DOCUMENTATION, GapPriority.HIGH) in kinds
        assert (GapType.INSUFFICIENT_COVERAGE, GapPriority.CRITICAL) in kinds

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_covered_query_has_no_missing_documentation_gap(
        self, engine, retrieval, document_store, emergency_document
    ):
        document_store.add(emergency_document)
        await retrieval.ingest_document(emergency_document.id)

        gaps = await engine.detect_knowledge_gaps("chest pain", GP)

        assert not any(g.gap_type == GapType.MISSING_DOCUMENTATION for g in gaps)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_specialist_without_specialist_protocol(self, engine):
        gaps = await engine.detect_knowledge_gaps("recurring migraine", SPECIALIST)
        assert any(
            g.gap_type == GapType.SPECIALTY_GAP and "specialist" in g.description for g in gaps
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mental_health_and_aviation_gaps(self, engine):
        gaps = await engine.detect_knowledge_gaps("pilot reports stress before flights", GP)
        descriptions = " ".join(g.description for g in gaps)
        assert "mental health" in descriptions
        assert "aviation" in descriptions

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_search_failure_yields_generic_gap(self, mocker, engine, retrieval):
        mocker.patch.object(
            retrieval, "search_documents", mocker.AsyncMock(side_effect=ConnectionError("db down"))
        )

        gaps = await engine.detect_knowledge_gaps("chest pain", ER)

        assert len(gaps) == 1
        assert gaps[0].gap_type == GapType.MISSING_DOCUMENTATION
        assert gaps[0].priority == GapPriority.MEDIUM
        assert "Unable to analyze" in gaps[0].description


# ============================================
# Discovery & Quality
# ============================================


class TestDiscovery:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_only_official_high_relevance_candidate_is_eligible(
        self, engine, discovery, official_result, other_result
    ):
        discovery.results = [official_result, other_result]

        resources = await engine.discover_resources("chest pain", ER)

        eligible = [r for r in resources if r.eligible]
        assert [r.url for r in eligible] == [official_result.url]
        assert all(r.url != other_result.url or not r.eligible for r in resources)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_urls_across_queries_are_merged(self, engine, discovery, official_result):
        discovery.results = [official_result]

        resources = await engine.discover_resources("chest pain", ER)

        assert len(discovery.queries) == 3
        assert len(resources) == 1
        assert resources[0].discovery_query == discovery.queries[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_relevant_but_below_ingestion_bar_is_not_eligible(
        self, engine, discovery, official_result
    ):
        discovery.results = [
            official_result.__class__(
                **{**official_result.__dict__, "relevance": 0.75, "url": "https://www.forces.gc.ca/x"}
            )
        ]

        resources = await engine.discover_resources("chest pain", ER)

        assert len(resources) == 1
        assert resources[0].eligible is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_discovery_errors_degrade_to_empty(self, engine, discovery):
        discovery.error = DiscoveryError("rate limited")
        assert await engine.discover_resources("chest pain", ER) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_provider_means_no_discovery(self, retrieval, document_store):
        engine = ImprovementEngine(retrieval, document_store, discovery=None)
        assert await engine.discover_resources("chest pain", ER) == []

    @pytest.mark.unit
    def test_search_queries_for_emergency(self):
        queries = ImprovementEngine.generate_search_queries("sudden chest pain", ER)
        assert queries[0] == "CAF emergency medical procedures"
        assert "CAF medical protocol pain" in queries
        assert len(queries) == len(set(queries))

    @pytest.mark.unit
    def test_search_queries_include_aviation(self):
        queries = ImprovementEngine.generate_search_queries("pilot with headache", GP)
        assert "CAF aviation medicine requirements" in queries

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "source_class,document_type,relevance,expected",
        [
            (SourceClass.OFFICIAL, DocumentType.PROTOCOL, 0.95, QualityTier.HIGH),
            (SourceClass.GOVERNMENT, DocumentType.GUIDELINE, 0.85, QualityTier.MEDIUM),
            (SourceClass.GOVERNMENT, DocumentType.POLICY, 0.85, QualityTier.MEDIUM),
            (SourceClass.ACADEMIC, DocumentType.STANDARD, 0.75, QualityTier.LOW),
            (SourceClass.OTHER, DocumentType.POLICY, 0.5, QualityTier.LOW),
        ],
    )
    def test_quality_tiers(self, source_class, document_type, relevance, expected):
        assert evaluate_resource_quality(source_class, document_type, relevance) == expected


# ============================================
# Auto-Ingestion
# ============================================


class TestAutoIngestion:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_enhanced_analysis_ingests_eligible_resource(
        self, engine, discovery, document_store, vector_store, official_result, other_result
    ):
        discovery.results = [official_result, other_result]

        result = await engine.perform_enhanced_analysis("sudden chest pain", ER)

        assert result.ingested_count == 1
        document = await document_store.get_by_url(official_result.url)
        assert document is not None
        assert document.document_type == DocumentType.PROTOCOL
        assert document.metadata["auto_ingested"] is True
        assert document.metadata["quality"] == "high"
        assert official_result.url in document.content
        assert await vector_store.has_chunks(document.id)
        assert await document_store.get_by_url(other_result.url) is None
        assert get_metrics_snapshot()["resources_auto_ingested_total"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_existing_url_is_not_ingested_again(
        self, engine, discovery, document_store, official_result
    ):
        discovery.results = [official_result]

        await engine.perform_enhanced_analysis("sudden chest pain", ER)
        second = await engine.perform_enhanced_analysis("sudden chest pain", ER)

        assert second.ingested_count == 0
        assert await document_store.count_active() == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auto_ingest_can_be_disabled(
        self, retrieval, document_store, discovery, official_result
    ):
        discovery.results = [official_result]
        engine = ImprovementEngine(retrieval, document_store, discovery, auto_ingest=False)

        result = await engine.perform_enhanced_analysis("sudden chest pain", ER)

        assert result.ingested_count == 0
        assert len(result.discovered_resources) == 1
        assert await document_store.count_active() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_failure_is_contained(
        self, mocker, engine, discovery, document_store, official_result
    ):
        discovery.results = [official_result]
        mocker.patch.object(
            document_store, "create", mocker.AsyncMock(side_effect=ConnectionError("db down"))
        )

        result = await engine.perform_enhanced_analysis("sudden chest pain", ER)

        assert result.ingested_count == 0
        assert result.gaps

    @pytest.mark.unit
    def test_placeholder_content_references_url_and_snippet(self, official_result):
        resource = DiscoveredResource(
            title=official_result.title,
            url=official_result.url,
            source_class=official_result.source_class,
            document_type=official_result.document_type,
            relevance=official_result.relevance,
            discovery_query="q",
            eligible=True,
            quality=QualityTier.HIGH,
            snippet="Snippet text.",
        )
        content = placeholder_content(resource)
        assert official_result.url in content
        assert content.endswith("Snippet text.")

    @pytest.mark.unit
    def test_title_tags(self):
        assert title_tags("Emergency Triage Protocol for the CAF") == ["emergency", "triage", "caf"]


# ============================================
# Analysis & Recommendations
# ============================================


class TestAnalysis:
    @pytest.mark.unit
    def test_extract_keywords_in_vocabulary_order(self):
        assert extract_medical_keywords("Sudden severe chest pain") == [
            "pain",
            "chest pain",
            "severe",
            "sudden",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scout_analysis_patterns(self, engine):
        analysis = await engine.perform_scout_analysis("sudden chest pain, chronic cough", ER)

        assert analysis.patterns.triage_category == "ER referral"
        assert "sudden" in analysis.patterns.emergency_indicators
        assert analysis.patterns.complexity_indicators == ["chronic"]
        assert "Limited knowledge base, confidence may be reduced" in analysis.confidence_factors

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_under_triage_flagged(self, engine):
        recommendations = await engine.generate_learning_recommendations(
            "urgent help needed", GP, []
        )
        assert any("under-triage" in r for r in recommendations)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_small_corpus_and_many_gaps(self, engine):
        gaps = await engine.detect_knowledge_gaps("pilot with stress and sudden chest pain", ER)
        assert len(gaps) > 2

        recommendations = await engine.generate_learning_recommendations(
            "pilot with stress and sudden chest pain", ER, gaps
        )

        assert any("discovery and ingestion pipeline" in r for r in recommendations)
        assert any("Expand the knowledge base" in r for r in recommendations)
        assert any("Critical knowledge gaps" in r for r in recommendations)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_enhanced_analysis_returns_everything(self, engine):
        result = await engine.perform_enhanced_analysis("sudden chest pain", ER)

        assert result.gaps
        assert result.discovered_resources == []
        assert result.learning_recommendations
        assert result.analysis is not None


# ============================================
# Topic Research & Trade Requirements
# ============================================


def _web_result(index: int, relevance: float, source_class: SourceClass) -> WebResult:
    return WebResult(
        title=f"CAF Medical Standard {index}",
        url=f"https://www.canada.ca/en/standard-{index}",
        content="Canadian Armed Forces medical standard for aircrew.",
        relevance=relevance,
        source_class=source_class,
        document_type=DocumentType.STANDARD,
    )


class TestResearch:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ingests_authoritative_relevant_documents(
        self, engine, discovery, document_store, official_result, other_result
    ):
        discovery.results = [official_result, other_result]

        result = await engine.research_topic("chest pain")

        assert discovery.queries == ["chest pain"]
        assert [d.url for d in result.documents] == [official_result.url, other_result.url]
        assert result.sources == [official_result.title]
        assert result.ingested_count == 1
        assert await document_store.get_by_url(other_result.url) is None
        assert get_metrics_snapshot()["resources_auto_ingested_total"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_research_bar_is_lower_than_discovery_bar(
        self, engine, discovery, document_store
    ):
        discovery.results = [_web_result(0, 0.75, SourceClass.GOVERNMENT)]

        result = await engine.research_topic("aircrew standards")

        assert result.ingested_count == 1
        assert result.documents[0].eligible is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_only_top_five_are_ingested(self, engine, discovery, document_store):
        discovery.results = [_web_result(i, 0.9, SourceClass.OFFICIAL) for i in range(7)]

        result = await engine.research_topic("aircrew standards")

        assert len(result.documents) == 7
        assert result.ingested_count == 5
        assert await document_store.count_active() == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_research_respects_auto_ingest_flag(
        self, retrieval, document_store, discovery, official_result
    ):
        discovery.results = [official_result]
        engine = ImprovementEngine(retrieval, document_store, discovery, auto_ingest=False)

        result = await engine.research_topic("chest pain")

        assert result.ingested_count == 0
        assert result.sources == []
        assert len(result.documents) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_search_failure_propagates(self, engine, discovery):
        discovery.error = DiscoveryError("rate limited")
        with pytest.raises(DiscoveryError):
            await engine.research_topic("chest pain")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_requires_provider(self, retrieval, document_store):
        engine = ImprovementEngine(retrieval, document_store, discovery=None)
        with pytest.raises(DiscoveryError):
            await engine.research_topic("chest pain")

    @pytest.mark.unit
    def test_summary_lists_source_classes(self, official_result, other_result):
        resources = [
            DiscoveredResource(
                title=r.title,
                url=r.url,
                source_class=r.source_class,
                document_type=r.document_type,
                relevance=r.relevance,
                discovery_query="q",
                eligible=False,
                quality=QualityTier.LOW,
            )
            for r in (official_result, other_result)
        ]
        summary = research_summary("chest pain", resources)
        assert summary == 'Found 2 documents for "chest pain" from 2 source classes: official, other.'
        assert research_summary("x", []) == 'No documents found for "x".'


class TestTradeRequirements:
    @pytest.mark.unit
    def test_extraction_rules(self):
        found = extract_trade_requirements(
            "Annual medical review includes a vision test and cardiac screening.", "Pilot"
        )
        assert [r.category for r in found] == [
            "Annual Medical",
            "Vision Standards",
            "Cardiovascular Health",
        ]
        assert all(r.trade == "Pilot" and r.frequency == "Annually" for r in found)
        assert found[0].authority == "CAF Medical Officer"

    @pytest.mark.unit
    def test_partial_triggers_do_not_match(self):
        assert extract_trade_requirements("Annual leave and vision statement", "Pilot") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_requirements_deduplicated_across_queries(self, engine, discovery):
        discovery.results = [
            WebResult(
                title="Aircrew medical",
                url="https://www.forces.gc.ca/aircrew",
                content="Aircrew undergo an annual medical and a vision test.",
                relevance=0.9,
                source_class=SourceClass.OFFICIAL,
                document_type=DocumentType.REQUIREMENT,
            )
        ]

        requirements = await engine.find_trade_requirements("Pilot")

        assert len(discovery.queries) == 4
        assert all("Pilot" in q for q in discovery.queries)
        assert [r.category for r in requirements] == ["Annual Medical", "Vision Standards"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_query_is_skipped(self, mocker, retrieval, document_store):
        result = WebResult(
            title="Infantry fitness",
            url="https://www.canada.ca/infantry",
            content="Cardiovascular fitness evaluation for infantry.",
            relevance=0.8,
            source_class=SourceClass.GOVERNMENT,
            document_type=DocumentType.STANDARD,
        )
        discovery = mocker.MagicMock()
        discovery.search = mocker.AsyncMock(
            side_effect=[DiscoveryError("rate limited"), [result], [], []]
        )
        engine = ImprovementEngine(retrieval, document_store, discovery)

        requirements = await engine.find_trade_requirements("Infantry")

        assert [r.category for r in requirements] == ["Cardiovascular Health"]
        assert discovery.search.await_count == 4
