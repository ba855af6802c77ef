"""
Prometheus metrics for the support assistant.

Provides counters, histograms, and gauges for tracking:
- Request counts and status codes
- Request latency distributions
- Per-store search volume, latency and failures
- Context size sent to the model
- LLM call statistics
- Usage feedback writes
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from typing import Optional

# ============================================================================
# HTTP Request Metrics
# ============================================================================

request_count = Counter(
    'support_rag_requests_total',
    'Total number of HTTP requests',
    ['endpoint', 'method', 'status']
)

request_latency = Histogram(
    'support_rag_request_duration_seconds',
    'HTTP request latency in seconds',
    ['endpoint', 'method'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# ============================================================================
# Retrieval Metrics
# ============================================================================

search_query_count = Counter(
    'support_rag_store_searches_total',
    'Total store searches',
    ['store']
)

search_results_count = Histogram(
    'support_rag_store_search_results',
    'Number of results returned per store search',
    ['store'],
    buckets=(0, 1, 2, 3, 5, 10, 20, 50)
)

search_latency = Histogram(
    'support_rag_store_search_duration_seconds',
    'Store search latency in seconds',
    ['store'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0)
)

store_failures = Counter(
    'support_rag_store_failures_total',
    'Store searches that failed or timed out',
    ['store']
)

context_items = Histogram(
    'support_rag_context_items',
    'Number of ranked context items sent to the LLM',
    buckets=(0, 1, 2, 3, 4, 5, 6, 8, 10)
)

# ============================================================================
# LLM Metrics
# ============================================================================

llm_requests = Counter(
    'support_rag_llm_requests_total',
    'Total LLM completion requests',
    ['model', 'status']
)

llm_latency = Histogram(
    'support_rag_llm_duration_seconds',
    'LLM completion latency in seconds',
    ['model'],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

llm_tokens = Histogram(
    'support_rag_llm_tokens',
    'Tokens reported per completion',
    ['model'],
    buckets=(50, 100, 250, 500, 1000, 2000, 4000)
)

# ============================================================================
# Usage Feedback Metrics
# ============================================================================

usage_writes = Counter(
    'support_rag_usage_writes_total',
    'Usage counter writes by outcome',
    ['source_kind', 'outcome']  # outcome: ok, failed, dropped
)

# ============================================================================
# Helper Functions
# ============================================================================

def track_request(endpoint: str, method: str, status: int, duration: float) -> None:
    """
    Track HTTP request metrics.

    Args:
        endpoint: API endpoint path
        method: HTTP method (GET, POST, etc.)
        status: HTTP status code
        duration: Request duration in seconds
    """
    request_count.labels(endpoint=endpoint, method=method, status=status).inc()
    request_latency.labels(endpoint=endpoint, method=method).observe(duration)


def track_search(store: str, num_results: int, duration: float) -> None:
    """
    Track a store search.

    Args:
        store: Store name (FAQ, Document)
        num_results: Number of results returned
        duration: Search duration in seconds
    """
    search_query_count.labels(store=store).inc()
    search_results_count.labels(store=store).observe(num_results)
    search_latency.labels(store=store).observe(duration)


def track_store_failure(store: str) -> None:
    store_failures.labels(store=store).inc()


def track_context_size(size: int) -> None:
    context_items.observe(size)


def track_llm_request(model: str, status: str, duration: float,
                      token_count: Optional[int] = None) -> None:
    """
    Track LLM request metrics.

    Args:
        model: LLM model name
        status: Request status (success, auth_error, rate_limited, ...)
        duration: Request duration in seconds
        token_count: Total tokens reported by the provider (optional)
    """
    llm_requests.labels(model=model, status=status).inc()
    llm_latency.labels(model=model).observe(duration)

    if token_count is not None:
        llm_tokens.labels(model=model).observe(token_count)


def track_usage_write(source_kind: str, outcome: str) -> None:
    usage_writes.labels(source_kind=source_kind, outcome=outcome).inc()


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus format.

    Returns:
        Prometheus-formatted metrics as bytes
    """
    return generate_latest()


def get_content_type() -> str:
    """
    Get Prometheus metrics content type.

    Returns:
        Content-Type header value
    """
    return CONTENT_TYPE_LATEST
