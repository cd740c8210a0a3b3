"""Metrics collection for provider search services.

Provides a thin convenience wrapper around ``prometheus_client`` so the query
handler, the projection synchronizer, and the store backends record metrics
with consistent names and label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- Each collector owns its registry; callers construct one per process and
  inject it where needed
"""

from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for provider search.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.search_requests = Counter(
            'provider_search_requests_total',
            'Total provider search requests',
            ['outcome'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'provider_search_duration_seconds',
            'Provider search duration',
            ['outcome'],
            registry=self.registry
        )

        self.search_results = Histogram(
            'provider_search_results_returned',
            'Providers returned per search page',
            buckets=(0, 1, 5, 10, 20, 50, 100),
            registry=self.registry
        )

        self.store_operations = Counter(
            'provider_store_operations_total',
            'Total provider store operations',
            ['operation', 'backend'],
            registry=self.registry
        )

        self.projection_events = Counter(
            'provider_projection_events_total',
            'Provider lifecycle events applied to the read model',
            ['event_type', 'status'],
            registry=self.registry
        )

        self.projection_duration = Histogram(
            'provider_projection_event_duration_seconds',
            'Time spent applying a lifecycle event',
            ['event_type'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'provider_search_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'provider_search_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

    def record_search(self, outcome: str, duration: float, returned: int = 0) -> None:
        """Record search metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.search_requests.labels(outcome=outcome).inc()
        self.search_duration.labels(outcome=outcome).observe(duration)
        if outcome == "success":
            self.search_results.observe(returned)

    def record_store_operation(self, operation: str, backend: str) -> None:
        """Record a store operation."""
        self.store_operations.labels(operation=operation, backend=backend).inc()

    def record_projection_event(
        self,
        event_type: str,
        status: str,
        duration: Optional[float] = None
    ) -> None:
        """Record the outcome of applying a lifecycle event."""
        self.projection_events.labels(event_type=event_type, status=status).inc()
        if duration is not None:
            self.projection_duration.labels(event_type=event_type).observe(duration)

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


def create_metrics_collector(service_name: str) -> MetricsCollector:
    """Create a metrics collector with a private registry."""
    logger.debug("Creating metrics collector", service_name=service_name)
    return MetricsCollector(service_name)
