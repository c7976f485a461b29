"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- HTTP request counts and latencies
- Offline event ingestion and handler outcomes
- Blob storage volume
- Biometric enrollment workflow, template worker and identification
"""
import logging
from prometheus_client import (
    Counter, Histogram, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)

# Custom registry to avoid conflicts with the default registry
REGISTRY = CollectorRegistry()

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY
)

# ============================================================================
# Offline Event Metrics
# ============================================================================

offline_events_ingested_total = Counter(
    'offline_events_ingested_total',
    'Offline events durably recorded',
    ['event_type'],
    registry=REGISTRY
)

offline_event_handler_outcomes_total = Counter(
    'offline_event_handler_outcomes_total',
    'Outcomes of offline event handler steps',
    ['event_type', 'outcome'],  # applied, skipped, failed
    registry=REGISTRY
)

blob_bytes_stored_total = Counter(
    'blob_bytes_stored_total',
    'Bytes written to the blob store',
    ['namespace'],
    registry=REGISTRY
)

# ============================================================================
# Biometric Metrics
# ============================================================================

biometric_requests_total = Counter(
    'biometric_requests_total',
    'Enrollment request lifecycle actions',
    ['action'],  # created, updated, approved, rejected, revoked
    registry=REGISTRY
)

biometric_worker_records_total = Counter(
    'biometric_worker_records_total',
    'Enrollment records processed by the template worker',
    ['outcome'],  # enrolled, no_photos, failed, skipped
    registry=REGISTRY
)

biometric_identifications_total = Counter(
    'biometric_identifications_total',
    'Identification attempts by result reason',
    ['reason'],
    registry=REGISTRY
)


def init_metrics(version: str = "1.0.0") -> None:
    """Publish static application info."""
    app_info.info({'version': version, 'name': 'smartops-sync'})
    logger.info("Prometheus metrics initialized", extra={"event_type": "metrics_init"})


def record_request_metrics(method: str, path: str, status_code: int, response_time_seconds: float) -> None:
    """
    Record HTTP request metrics.

    Path segments that look like identifiers are collapsed so label
    cardinality stays bounded.
    """
    normalized_path = _normalize_path(path)
    http_requests_total.labels(method=method, path=normalized_path, status_code=str(status_code)).inc()
    http_request_duration_seconds.labels(method=method, path=normalized_path).observe(response_time_seconds)


def _normalize_path(path: str) -> str:
    parts = []
    for segment in path.split('/'):
        if len(segment) >= 16 and any(c.isdigit() for c in segment):
            parts.append('{id}')
        else:
            parts.append(segment)
    return '/'.join(parts)


def record_offline_event(event_type: str) -> None:
    offline_events_ingested_total.labels(event_type=event_type).inc()


def record_handler_outcome(event_type: str, outcome: str) -> None:
    offline_event_handler_outcomes_total.labels(event_type=event_type, outcome=outcome).inc()


def record_blob_stored(namespace: str, size: int) -> None:
    blob_bytes_stored_total.labels(namespace=namespace).inc(size)


def record_biometric_request(action: str) -> None:
    biometric_requests_total.labels(action=action).inc()


def record_worker_outcome(outcome: str) -> None:
    biometric_worker_records_total.labels(outcome=outcome).inc()


def record_identification(reason: str) -> None:
    biometric_identifications_total.labels(reason=reason).inc()


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
