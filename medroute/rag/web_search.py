"""
Web Discovery for MedRoute

Finds candidate external documents for knowledge-gap filling. Each result
carries a coarse source-authority class, an inferred document type and a
relevance score, so the improvement engine can decide what to ingest.

Uses the duckduckgo-search library (MIT license, zero API cost).
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from medroute.core.errors import DiscoveryError
from medroute.core.models import DocumentType, SourceClass

logger = logging.getLogger(__name__)

MAX_WEB_RESULTS = 10

# Host suffixes per authority class
OFFICIAL_HOSTS = ("forces.gc.ca", "cfmws.com", "cfmws.ca")
OFFICIAL_PATHS = ("/department-national-defence", "/services/health-services")
MEDICAL_AUTHORITY_HOSTS = (
    "phac-aspc.gc.ca",
    "health.gc.ca",
    "hc-sc.gc.ca",
    "cmaj.ca",
    "cma.ca",
    "royalcollege.ca",
    "who.int",
    "cdc.gov",
)
GOVERNMENT_HOSTS = ("canada.ca", "gc.ca", "gov")
ACADEMIC_HOSTS = (
    "edu",
    "ncbi.nlm.nih.gov",
    "pubmed.ncbi.nlm.nih.gov",
    "bmj.com",
    "thelancet.com",
    "nature.com",
    "sciencedirect.com",
)

SOURCE_WEIGHT = {
    SourceClass.OFFICIAL: 4,
    SourceClass.GOVERNMENT: 3,
    SourceClass.MEDICAL_AUTHORITY: 2,
    SourceClass.ACADEMIC: 1,
    SourceClass.OTHER: 0,
}

OFFICIAL_TERMS = (
    "caf",
    "canadian armed forces",
    "military",
    "protocol",
    "standard",
    "requirement",
)

# Site-scoped query templates per authority stream; {q} is the user query
AUTHORITY_STREAMS = {
    "government": (
        "site:canada.ca {q} medical",
        "site:forces.gc.ca {q}",
        'site:canada.ca "Canadian Armed Forces" {q}',
        'site:canada.ca "CAF" medical standards {q}',
    ),
    "caf_official": (
        "site:forces.gc.ca {q} medical",
        "site:cfmws.com {q} health",
        '"Canadian Armed Forces" {q} medical protocol',
        '"CAF health services" {q}',
    ),
    "medical_authority": (
        "site:phac-aspc.gc.ca {q}",
        "site:health.gc.ca {q} military",
        '"Royal College of Physicians" {q}',
        "site:cmaj.ca {q} military medical",
    ),
}


def scoped_queries(query: str) -> list[str]:
    """The query followed by every authority-stream rendering of it."""
    queries = [query]
    for templates in AUTHORITY_STREAMS.values():
        queries += [t.format(q=query) for t in templates]
    return list(dict.fromkeys(queries))

_WORD = re.compile(r"\s+")


@dataclass
class WebResult:
    """A single discovery result."""

    title: str
    url: str
    content: str
    relevance: float
    source_class: SourceClass
    document_type: DocumentType


def _host_matches(host: str, suffixes: tuple[str, ...]) -> bool:
    return any(host == s or host.endswith("." + s) for s in suffixes)


def classify_source(url: str) -> SourceClass:
    """Coarse authority class of a URL, by host."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path = parsed.path.lower()
    if not host:
        return SourceClass.OTHER

    if _host_matches(host, OFFICIAL_HOSTS):
        return SourceClass.OFFICIAL
    if _host_matches(host, ("canada.ca",)) and any(p in path for p in OFFICIAL_PATHS):
        return SourceClass.OFFICIAL
    if _host_matches(host, MEDICAL_AUTHORITY_HOSTS):
        return SourceClass.MEDICAL_AUTHORITY
    # Academic hosts first: nih.gov and similar would otherwise match "gov"
    if _host_matches(host, ACADEMIC_HOSTS):
        return SourceClass.ACADEMIC
    if _host_matches(host, GOVERNMENT_HOSTS):
        return SourceClass.GOVERNMENT
    return SourceClass.OTHER


def classify_document_type(text: str) -> DocumentType:
    """Infer a document type from title/snippet text. Defaults to guideline."""
    lower = text.lower()
    for document_type in (
        DocumentType.PROTOCOL,
        DocumentType.GUIDELINE,
        DocumentType.POLICY,
        DocumentType.STANDARD,
        DocumentType.REQUIREMENT,
    ):
        if document_type.value in lower:
            return document_type
    return DocumentType.GUIDELINE


def calculate_relevance(content: str, query: str) -> float:
    """Score content against a query in [0, 1].

    One point per query word (longer than two characters) found in the
    content, two per official-vocabulary term, normalised by word count + 2.
    """
    content_lower = content.lower()
    words = [w for w in _WORD.split(query.lower()) if w]

    score = 0
    for word in words:
        if len(word) > 2 and word in content_lower:
            score += 1
    for term in OFFICIAL_TERMS:
        if term in content_lower:
            score += 2

    return min(score / (len(words) + 2), 1.0)


class DuckDuckGoDiscoveryProvider:
    """WebDiscoveryProvider backed by DuckDuckGo text search.

    Each search runs the plain query plus the site-scoped authority streams
    concurrently, then merges the hits into one ranked list.
    """

    def __init__(
        self,
        max_results: int = MAX_WEB_RESULTS,
        region: str = "ca-en",
        scoped: bool = True,
    ) -> None:
        self.max_results = max_results
        self.region = region
        self.scoped = scoped

    def _search_sync(self, query: str) -> list[dict]:
        from duckduckgo_search import DDGS

        with DDGS() as ddgs:
            return list(
                ddgs.text(query, region=self.region, max_results=self.max_results)
            )

    async def search(self, query: str) -> list[WebResult]:
        """Ranked candidates for the query, most authoritative first.

        Relevance is scored against the caller's query, not the scoped
        rendering that found the hit. A URL found by several streams is kept
        once.

        Raises:
            DiscoveryError: If every stream fails.
        """
        queries = scoped_queries(query) if self.scoped else [query]
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._search_sync, q) for q in queries),
            return_exceptions=True,
        )

        raw: list[dict] = []
        failures = 0
        for scoped_query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                failures += 1
                logger.warning("Web search stream %r failed: %s", scoped_query, outcome)
                continue
            raw.extend(outcome)

        if failures == len(queries):
            raise DiscoveryError(
                f"Web search failed for {query!r}: all {failures} streams failed"
            )

        merged: dict[str, WebResult] = {}
        for r in raw:
            title = r.get("title", "")
            url = r.get("href", "")
            body = r.get("body", "")
            if not (title and url and body) or url in merged:
                continue
            text = f"{title} {body}"
            merged[url] = WebResult(
                title=title,
                url=url,
                content=body,
                relevance=calculate_relevance(text, query),
                source_class=classify_source(url),
                document_type=classify_document_type(text),
            )

        results = sorted(
            merged.values(),
            key=lambda r: (SOURCE_WEIGHT[r.source_class], r.relevance),
            reverse=True,
        )
        logger.info(
            "Web search returned %d results from %d streams for: %s",
            len(results),
            len(queries) - failures,
            query,
        )
        return results[: self.max_results]
