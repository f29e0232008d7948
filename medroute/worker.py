"""
Celery Worker for MedRoute

Background ingestion tasks:
- Ingest a single document (chunk, embed, store)
- Bulk ingestion of every active document

Each task builds the service container from the environment and runs the
coroutine to completion.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import asdict

from celery import Celery

from medroute.config import Settings
from medroute.container import build_container

logger = logging.getLogger(__name__)

# Initialize Celery app
celery_app = Celery(
    "medroute",
    broker=os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/1"),
    backend=os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/2"),
)

# Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=2,
)

# In-process job tracking; the Celery result backend is the source of truth
_job_store: dict[str, dict] = {}


async def _ingest_document(document_id: str) -> bool:
    container = await build_container(Settings.from_env())
    try:
        return await container.retrieval.ingest_document(document_id)
    finally:
        await container.aclose()


async def _ingest_all(document_types: list[str] | None) -> dict:
    container = await build_container(Settings.from_env())
    try:
        report = await container.retrieval.ingest_all(document_types)
        return asdict(report)
    finally:
        await container.aclose()


@celery_app.task(bind=True, name="ingest_document")
def ingest_document(self, document_id: str):  # type: ignore[no-untyped-def]
    """Chunk, embed and store one document."""
    job_id = self.request.id or str(uuid.uuid4())
    _job_store[job_id] = {"status": "processing", "document_id": document_id}

    try:
        success = asyncio.run(_ingest_document(document_id))
    except Exception as e:
        logger.error("Ingestion task for %s failed: %s", document_id, e)
        _job_store[job_id].update({"status": "failed", "error": str(e)})
        raise

    _job_store[job_id].update(
        {"status": "completed" if success else "failed", "success": success}
    )
    return {"job_id": job_id, "document_id": document_id, "success": success}


@celery_app.task(bind=True, name="ingest_all")
def ingest_all(self, document_types: list[str] | None = None):  # type: ignore[no-untyped-def]
    """Ingest every active document, aggregating success/failed counts."""
    job_id = self.request.id or str(uuid.uuid4())
    _job_store[job_id] = {"status": "processing"}

    try:
        report = asyncio.run(_ingest_all(document_types))
    except Exception as e:
        logger.error("Bulk ingestion task failed: %s", e)
        _job_store[job_id].update({"status": "failed", "error": str(e)})
        raise

    _job_store[job_id].update({"status": "completed", "result": report})
    return {"job_id": job_id, **report}


def get_job_status(job_id: str) -> dict:
    """Get the status of an ingestion job."""
    if job_id in _job_store:
        return {"job_id": job_id, **_job_store[job_id]}

    # Try Celery result backend
    try:
        result = celery_app.AsyncResult(job_id)
        if result.state == "PENDING":
            return {"job_id": job_id, "status": "pending"}
        elif result.state == "STARTED":
            return {"job_id": job_id, "status": "processing"}
        elif result.state == "SUCCESS":
            return {"job_id": job_id, "status": "completed", "result": result.result}
        elif result.state == "FAILURE":
            return {"job_id": job_id, "status": "failed", "error": str(result.result)}
        return {"job_id": job_id, "status": result.state.lower()}
    except Exception:
        return {"job_id": job_id, "status": "unknown"}


if __name__ == "__main__":
    celery_app.start()
