"""
Prometheus metrics collection and pipeline metrics.
"""
from prometheus_client import Counter, Histogram, Gauge, Info
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from app.core.config import settings

registry = CollectorRegistry()

app_info = Info('app', 'Application information', registry=registry)
app_info.info({
    'name': settings.APP_NAME,
    'version': settings.APP_VERSION
})

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'Number of HTTP requests in progress',
    ['method', 'endpoint'],
    registry=registry
)

# Ingestion Metrics
imports_ingested_total = Counter(
    'imports_ingested_total',
    'Total number of uploaded files processed by the ingestor',
    ['file_type', 'status'],
    registry=registry
)

import_ingestion_duration_seconds = Histogram(
    'import_ingestion_duration_seconds',
    'File ingestion duration in seconds',
    ['file_type'],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60, 120],
    registry=registry
)

rows_staged_total = Counter(
    'rows_staged_total',
    'Total number of rows written to the staging store',
    registry=registry
)

# Materialization Metrics
tables_materialized_total = Counter(
    'tables_materialized_total',
    'Total number of materialization runs',
    ['status'],
    registry=registry
)

rows_materialized_total = Counter(
    'rows_materialized_total',
    'Total number of rows inserted into materialized tables',
    registry=registry
)

# Quality Metrics
quality_analyses_total = Counter(
    'quality_analyses_total',
    'Total number of quality analyses',
    ['status'],
    registry=registry
)

column_statistics_failures_total = Counter(
    'column_statistics_failures_total',
    'Columns skipped because statistics could not be computed',
    registry=registry
)

# Fix Metrics
fixes_applied_total = Counter(
    'fixes_applied_total',
    'Total number of corrective transformations',
    ['fix_type', 'status'],
    registry=registry
)

# Suggester Metrics
suggestions_total = Counter(
    'suggestions_total',
    'Total number of column name suggestion requests',
    ['status'],
    registry=registry
)

# Error Metrics
errors_total = Counter(
    'errors_total',
    'Total number of errors',
    ['error_type', 'endpoint'],
    registry=registry
)


def get_metrics():
    """
    Get current metrics in Prometheus format.

    Returns:
        Prometheus metrics in text format
    """
    return generate_latest(registry)


def get_metrics_content_type():
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST
