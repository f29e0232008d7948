"""
MedRoute - FastAPI Application Entry Point

HTTP surface over the clinical context engine: search, context assembly,
ingestion, index management and continuous-improvement analysis.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from medroute import __version__
from medroute.config import Settings
from medroute.container import ServiceContainer, build_container
from medroute.core.errors import DiscoveryError
from medroute.core.models import NewDocument, TriageClassification
from medroute.db.postgres import (
    check_database_health,
    check_pgvector_extension,
    create_session_factory,
)
from medroute.observability.metrics import get_metrics_text, reset_metrics
from medroute.rag.retriever import EMERGENCY_POLICY, MENTAL_HEALTH_POLICY, TRIAGE_POLICY
from medroute.security.input_validation import (
    AnalysisRequest,
    ContextRequest,
    DocumentCreateRequest,
    IngestRequest,
    InputValidator,
    SearchRequest,
    WebSearchRequest,
)

logger = logging.getLogger(__name__)

_validator = InputValidator()

router = APIRouter()


def _container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return container


def _safe_text(text: str) -> str:
    text = _validator.sanitize(text)
    if not _validator.is_safe(text):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query contains potentially unsafe content",
        )
    return text


# ============================================
# Health Check Endpoints
# ============================================


@router.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "medroute-api",
    }


@router.get("/ready", tags=["Health"])
async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness check with dependency status."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        return {"ready": False, "checks": {"services": "unavailable"}}

    checks: dict[str, Any] = {"storage": container.settings.storage_backend}
    ready = True
    if container.engine is not None:
        session_factory = create_session_factory(container.engine)
        db_health = await check_database_health(session_factory)
        checks["database"] = db_health["status"]
        checks["pgvector"] = await check_pgvector_extension(session_factory)
        ready = db_health["status"] == "healthy" and checks["pgvector"]

    cache_health = container.cache.get_health_status()
    index = await container.retrieval.get_index_status()
    return {
        "ready": ready,
        "checks": {
            **checks,
            "embedding_backend": container.settings.embedding_backend,
            "discovery": "enabled" if container.discovery is not None else "disabled",
            "cache": "ok" if cache_health["healthy"] else "degraded",
        },
        "index": asdict(index),
    }


# ============================================
# API v1 Routes
# ============================================


@router.post("/api/v1/search", tags=["Retrieval"])
async def search_endpoint(body: SearchRequest, request: Request) -> dict[str, Any]:
    """Similarity search over the indexed corpus."""
    container = _container(request)
    query = _safe_text(body.query)
    results = await container.retrieval.search_documents(
        query,
        limit=body.limit,
        threshold=body.threshold,
        document_types=body.document_types,
    )
    return {
        "query": query,
        "results": [asdict(r) for r in results],
        "total_results": len(results),
    }


@router.post("/api/v1/context", tags=["Retrieval"])
async def context_endpoint(body: ContextRequest, request: Request) -> dict[str, Any]:
    """Search results plus summary, optionally under a named retrieval policy."""
    container = _container(request)
    retrieval = container.retrieval
    query = _safe_text(body.query)

    if body.policy == TRIAGE_POLICY.name:
        context = await retrieval.get_triage_context(query, body.appointment_type)
    elif body.policy == EMERGENCY_POLICY.name:
        context = await retrieval.get_emergency_context(query)
    elif body.policy == MENTAL_HEALTH_POLICY.name:
        context = await retrieval.get_mental_health_context(query)
    else:
        context = await retrieval.get_context(
            query,
            max_results=body.max_results,
            threshold=body.threshold,
            document_types=body.document_types,
        )
    return asdict(context)


@router.get("/api/v1/index/status", tags=["Index"])
async def index_status_endpoint(request: Request) -> dict[str, Any]:
    container = _container(request)
    return asdict(await container.retrieval.get_index_status())


@router.post("/api/v1/index/ingest", tags=["Index"])
async def ingest_endpoint(body: IngestRequest, request: Request) -> dict[str, Any]:
    """Ingest one document, or every active document."""
    container = _container(request)
    if body.document_id:
        success = await container.retrieval.ingest_document(body.document_id)
        return {"document_id": body.document_id, "success": success}

    report = await container.retrieval.ingest_all(body.document_types)
    return asdict(report)


@router.delete("/api/v1/index", tags=["Index"])
async def clear_index_endpoint(request: Request) -> dict[str, Any]:
    container = _container(request)
    removed = await container.retrieval.clear_index()
    return {"chunks_deleted": removed}


@router.post("/api/v1/documents", tags=["Documents"], status_code=status.HTTP_201_CREATED)
async def create_document_endpoint(
    body: DocumentCreateRequest, request: Request
) -> dict[str, Any]:
    """Add a document to the corpus and (by default) index it."""
    container = _container(request)
    document = await container.document_store.create(
        NewDocument(**body.model_dump(exclude={"ingest"}))
    )
    indexed = await container.retrieval.ingest_document(document.id) if body.ingest else False
    return {
        "document": document.model_dump(mode="json", exclude={"content"}),
        "indexed": indexed,
    }


@router.get("/api/v1/documents/{document_id}", tags=["Documents"])
async def get_document_endpoint(document_id: str, request: Request) -> dict[str, Any]:
    container = _container(request)
    document = await container.document_store.get_by_id(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document.model_dump(mode="json")


@router.delete("/api/v1/documents/{document_id}", tags=["Documents"])
async def remove_document_endpoint(document_id: str, request: Request) -> dict[str, Any]:
    """Deactivate a document and remove its chunks from the index."""
    container = _container(request)
    removed = await container.retrieval.remove_document(document_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"document_id": document_id, "removed": True}


@router.post("/api/v1/analysis", tags=["Improvement"])
async def analysis_endpoint(body: AnalysisRequest, request: Request) -> dict[str, Any]:
    """Gap detection, discovery and auto-ingestion for a classified query."""
    container = _container(request)
    text = _safe_text(body.text)
    result = await container.improvement.perform_enhanced_analysis(
        text,
        TriageClassification(appointment_type=body.appointment_type, reason=body.reason),
    )
    return asdict(result)


@router.post("/api/v1/web-search", tags=["Improvement"])
async def web_search_endpoint(body: WebSearchRequest, request: Request) -> dict[str, Any]:
    """General search, topic research with auto-ingestion, or trade requirements."""
    container = _container(request)
    if container.discovery is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Web discovery is disabled",
        )
    query = _safe_text(body.query)

    ingested_count = 0
    try:
        if body.type == "trade_requirements":
            trade = _safe_text(body.trade)
            requirements = await container.improvement.find_trade_requirements(trade)
            results = [asdict(r) for r in requirements]
            summary = f"Found {len(results)} medical requirements for {trade}"
        elif body.type == "research":
            research = await container.improvement.research_topic(query)
            results = [asdict(r) for r in research.documents]
            summary = research.summary
            ingested_count = research.ingested_count
        else:
            found = await container.discovery.search(query)
            results = [asdict(r) for r in found]
            summary = f"Found {len(results)} relevant documents"
    except DiscoveryError as e:
        logger.warning("Web search failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return {
        "query": query,
        "type": body.type,
        "trade": body.trade,
        "results": results,
        "summary": summary,
        "ingested_count": ingested_count,
    }


@router.get("/api/v1/cache/stats", tags=["Cache"])
async def cache_stats_endpoint(request: Request) -> dict[str, Any]:
    container = _container(request)
    return {
        "partitions": {
            name: asdict(stats) for name, stats in container.cache.get_stats().items()
        },
        "health": container.cache.get_health_status(),
    }


@router.delete("/api/v1/cache", tags=["Cache"])
async def clear_cache_endpoint(request: Request) -> dict[str, Any]:
    container = _container(request)
    container.retrieval.clear_cache()
    return {"status": "cache_cleared"}


# ============================================
# Metrics Endpoint
# ============================================


@router.get("/metrics", tags=["Monitoring"])
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint."""
    container = getattr(request.app.state, "container", None)
    cache_stats = container.cache.get_stats() if container is not None else None
    return PlainTextResponse(content=get_metrics_text(cache_stats), media_type="text/plain")


@router.post("/metrics/reset", tags=["Monitoring"])
async def reset_metrics_endpoint():
    """Reset all metrics counters."""
    reset_metrics()
    return {"status": "metrics_reset"}


# ============================================
# Application Factory
# ============================================


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        container: Pre-built services. When omitted, services are built from
            the environment at startup and configuration errors abort startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting MedRoute API v%s", __version__)
        owned = None
        if getattr(app.state, "container", None) is None:
            settings = Settings.from_env()
            owned = await build_container(settings)
            app.state.container = owned
            logger.info(
                "Services initialized (storage=%s, embeddings=%s)",
                settings.storage_backend,
                settings.embedding_backend,
            )

        yield

        logger.info("Shutting down MedRoute API")
        if owned is not None:
            await owned.aclose()

    app = FastAPI(
        title="MedRoute",
        description="Clinical context engine for medical triage",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
            },
        )

    return app


app = create_app()


# ============================================
# Main Entry Point
# ============================================


def main():
    """Run the application using uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "medroute.main:app",
        host="0.0.0.0",
        port=8000,
    )


if __name__ == "__main__":
    main()
