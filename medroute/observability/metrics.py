"""
Prometheus Metrics for MedRoute

Tracks:
- searches_total / searches_failed: Counters of similarity searches
- search_latency_seconds: Histogram buckets and percentiles of search time
- documents_ingested_total / documents_ingest_failed_total: Ingestion outcomes
- cache_*: Per-partition hit/miss/size gauges (read from a CacheLayer)
"""

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from medroute.rag.cache import CacheStats

logger = logging.getLogger(__name__)

# Keep the latency window bounded
MAX_LATENCY_SAMPLES = 10_000

# Thread-safe metrics storage
_lock = threading.Lock()

_metrics: dict[str, float] = {
    "searches_total": 0,
    "searches_failed": 0,
    "search_results_total": 0,
    "documents_ingested_total": 0,
    "documents_ingest_failed_total": 0,
    "resources_auto_ingested_total": 0,
}

_latencies: list[float] = []


def record_search(latency_ms: float, result_count: int, success: bool = True) -> None:
    """Record metrics for one search."""
    with _lock:
        _metrics["searches_total"] += 1
        if not success:
            _metrics["searches_failed"] += 1
        _metrics["search_results_total"] += result_count
        _latencies.append(latency_ms)
        if len(_latencies) > MAX_LATENCY_SAMPLES:
            del _latencies[: len(_latencies) - MAX_LATENCY_SAMPLES]


def record_ingestion(success: bool) -> None:
    """Record one document ingestion outcome."""
    with _lock:
        if success:
            _metrics["documents_ingested_total"] += 1
        else:
            _metrics["documents_ingest_failed_total"] += 1


def record_auto_ingestion(count: int) -> None:
    with _lock:
        _metrics["resources_auto_ingested_total"] += count


def get_metrics_snapshot() -> dict[str, float]:
    with _lock:
        return dict(_metrics)


def get_metrics_text(cache_stats: "dict[str, CacheStats] | None" = None) -> str:
    """Generate Prometheus-compatible metrics text."""
    with _lock:
        sorted_latencies = sorted(_latencies)
        p50 = _percentile(sorted_latencies, 50)
        p95 = _percentile(sorted_latencies, 95)
        p99 = _percentile(sorted_latencies, 99)

        lines = [
            "# HELP searches_total Total number of similarity searches",
            "# TYPE searches_total counter",
            f'searches_total {int(_metrics["searches_total"])}',
            "",
            "# HELP searches_failed Searches that failed and returned no results",
            "# TYPE searches_failed counter",
            f'searches_failed {int(_metrics["searches_failed"])}',
            "",
            "# HELP search_results_total Results returned across all searches",
            "# TYPE search_results_total counter",
            f'search_results_total {int(_metrics["search_results_total"])}',
            "",
            "# HELP search_latency_seconds Search response time histogram",
            "# TYPE search_latency_seconds histogram",
            f'search_latency_seconds{{le="0.1"}} {_count_below(sorted_latencies, 100)}',
            f'search_latency_seconds{{le="0.5"}} {_count_below(sorted_latencies, 500)}',
            f'search_latency_seconds{{le="1.0"}} {_count_below(sorted_latencies, 1000)}',
            f'search_latency_seconds{{le="2.0"}} {_count_below(sorted_latencies, 2000)}',
            f"search_latency_seconds_p50 {p50 / 1000:.4f}",
            f"search_latency_seconds_p95 {p95 / 1000:.4f}",
            f"search_latency_seconds_p99 {p99 / 1000:.4f}",
            "",
            "# HELP documents_ingested_total Documents chunked and embedded",
            "# TYPE documents_ingested_total counter",
            f'documents_ingested_total {int(_metrics["documents_ingested_total"])}',
            "",
            "# HELP documents_ingest_failed_total Document ingestions that failed",
            "# TYPE documents_ingest_failed_total counter",
            f'documents_ingest_failed_total {int(_metrics["documents_ingest_failed_total"])}',
            "",
            "# HELP resources_auto_ingested_total Discovered resources added to the corpus",
            "# TYPE resources_auto_ingested_total counter",
            f'resources_auto_ingested_total {int(_metrics["resources_auto_ingested_total"])}',
        ]

    if cache_stats:
        lines += [
            "",
            "# HELP cache_hits Cache hits per partition",
            "# TYPE cache_hits counter",
        ]
        lines += [f'cache_hits{{partition="{n}"}} {s.hits}' for n, s in cache_stats.items()]
        lines += ["", "# HELP cache_misses Cache misses per partition", "# TYPE cache_misses counter"]
        lines += [f'cache_misses{{partition="{n}"}} {s.misses}' for n, s in cache_stats.items()]
        lines += ["", "# HELP cache_size Resident entries per partition", "# TYPE cache_size gauge"]
        lines += [f'cache_size{{partition="{n}"}} {s.size}' for n, s in cache_stats.items()]
        lines += ["", "# HELP cache_hit_rate Cache hit ratio per partition", "# TYPE cache_hit_rate gauge"]
        lines += [
            f'cache_hit_rate{{partition="{n}"}} {s.hit_rate:.4f}' for n, s in cache_stats.items()
        ]

    return "\n".join(lines) + "\n"


def reset_metrics() -> None:
    """Reset all metrics to zero."""
    with _lock:
        for key in _metrics:
            _metrics[key] = 0
        _latencies.clear()


def _percentile(sorted_data: list[float], percentile: int) -> float:
    """Compute the given percentile from sorted data."""
    if not sorted_data:
        return 0.0
    idx = int(len(sorted_data) * percentile / 100)
    idx = min(idx, len(sorted_data) - 1)
    return sorted_data[idx]


def _count_below(sorted_data: list[float], threshold_ms: float) -> int:
    """Count values below threshold in sorted data."""
    count = 0
    for v in sorted_data:
        if v <= threshold_ms:
            count += 1
        else:
            break
    return count
