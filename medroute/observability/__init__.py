"""
MedRoute Observability Module

Monitoring components:
- Prometheus metrics for searches, ingestion and cache partitions
"""

from medroute.observability.metrics import (
    get_metrics_snapshot,
    get_metrics_text,
    record_auto_ingestion,
    record_ingestion,
    record_search,
    reset_metrics,
)

__all__ = [
    "get_metrics_snapshot",
    "get_metrics_text",
    "record_auto_ingestion",
    "record_ingestion",
    "record_search",
    "reset_metrics",
]
