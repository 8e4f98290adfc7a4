"""Metrics collection for the search service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service consistently records HTTP, search, embedding and ingestion metrics.

Design notes
- Metrics and labels are predeclared to keep label cardinality bounded
- A single registry is kept per collector (can be injected for tests)
"""

from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'search_embedding_requests_total',
            'Total embedding generation requests',
            ['model_name', 'purpose'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'search_embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name', 'purpose'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'search_requests_total',
            'Total search requests',
            ['query_type', 'status'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'search_duration_seconds',
            'Search duration',
            ['query_type'],
            registry=self.registry
        )

        self.search_results = Histogram(
            'search_results_returned',
            'Number of ranked results returned per search',
            ['query_type'],
            buckets=(0, 1, 2, 5, 10, 20, 50, 100),
            registry=self.registry
        )

        self.documents_indexed = Counter(
            'search_documents_indexed_total',
            'Total documents chunked, embedded and stored',
            registry=self.registry
        )

        self.chunks_per_document = Histogram(
            'search_chunks_per_document',
            'Number of chunks produced per indexed document',
            buckets=(1, 2, 4, 8, 16, 32, 64, 128),
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_embedding(
        self,
        model_name: str,
        purpose: str,
        duration: float
    ) -> None:
        """Record embedding generation metrics."""
        self.embedding_requests.labels(model_name=model_name, purpose=purpose).inc()
        self.embedding_duration.labels(model_name=model_name, purpose=purpose).observe(duration)

    def record_search(
        self,
        query_type: str,
        duration: float,
        results_count: int = 0,
        status: str = "success"
    ) -> None:
        """Record search metrics."""
        self.search_requests.labels(query_type=query_type, status=status).inc()
        self.search_duration.labels(query_type=query_type).observe(duration)
        if status == "success":
            self.search_results.labels(query_type=query_type).observe(results_count)

    def record_document_indexed(self, chunk_count: int) -> None:
        """Record a successfully indexed document and its chunk count."""
        self.documents_indexed.inc()
        self.chunks_per_document.observe(chunk_count)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector.

    Returns a singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
