"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Gauge, Histogram, Info, generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY


def _exposition_registry():
    """Registry to expose; aggregates worker files in multiprocess mode"""
    if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        return registry
    return REGISTRY


# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

# ============================================================================
# Database Metrics
# ============================================================================

db_queries_total = Counter(
    'db_queries_total',
    'Total number of database queries',
    ['operation', 'table']  # operation: 'select', 'insert', 'update', 'delete'
)

db_query_duration_seconds = Histogram(
    'db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'table'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

db_connection_pool_size = Gauge(
    'db_connection_pool_size',
    'Database connection pool size',
    ['state']  # state: 'active', 'idle'
)

# ============================================================================
# Inventory Metrics
# ============================================================================

blocks_registered_total = Counter(
    'stone_blocks_registered_total',
    'Total number of stone blocks registered',
    ['category']
)

block_dispatch_attempts_total = Counter(
    'stone_block_dispatch_attempts_total',
    'Dispatch scans by outcome',
    ['outcome']  # outcome: 'dispatched', 'already_dispatched', 'not_found'
)

blocks_removed_total = Counter(
    'stone_blocks_removed_total',
    'Total number of stone blocks removed'
)

blob_operations_total = Counter(
    'blob_operations_total',
    'Blob store operations',
    ['operation', 'status']  # operation: 'store', 'retrieve', 'release'
)

catalog_queries_total = Counter(
    'catalog_queries_total',
    'Catalog filter queries by sort order',
    ['sort_by']
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'app_info',
    'Application information'
)

from app.core.config import get_settings

app_info.info({
    'app_name': get_settings().app_name,
    'app_env': get_settings().app_env,
    'version': '0.1.0'
})

# ============================================================================
# Helper Functions
# ============================================================================

def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(_exposition_registry())


def get_metrics_content_type():
    """
    Get content type for Prometheus metrics

    Returns:
        str: Content type for metrics endpoint
    """
    return CONTENT_TYPE_LATEST
