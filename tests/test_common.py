"""Tests for common utilities."""

import pytest
from opentelemetry.trace import StatusCode
from prometheus_client import CollectorRegistry

from provider_search.common.config import (
    BaseConfig,
    ProjectionWorkerConfig,
    SearchConfig,
    config_to_env,
    get_config,
)
from provider_search.common.logging import configure_logging, log_performance
from provider_search.common.metrics import MetricsCollector
from provider_search.common.tracing import SearchTracer, TracingContext


def test_config_loading():
    """Test configuration loading."""
    config = BaseConfig()
    assert config.search_env == "local"
    assert config.search_log_level == "INFO"
    assert config.search_store_backend == "postgis"
    assert config.search_max_radius_km == 500.0
    assert config.search_max_page_size == 100


def test_projection_worker_config():
    """Test projection worker configuration."""
    config = ProjectionWorkerConfig()
    assert config.search_worker_listener_retries == 5
    assert config.search_worker_retry_base_delay == 1.0


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("SEARCH_MAX_RADIUS_KM", "250")
    monkeypatch.setenv("SEARCH_CACHE_ENABLED", "true")
    config = SearchConfig()
    assert config.search_max_radius_km == 250.0
    assert config.search_cache_enabled is True


def test_get_config_selects_service_class():
    assert isinstance(get_config("search"), SearchConfig)
    assert isinstance(get_config("projection-worker"), ProjectionWorkerConfig)
    assert type(get_config("unknown")) is BaseConfig


def test_config_to_env_flattens_settings():
    env = config_to_env(SearchConfig(search_cache_enabled=True, search_db_pool_size=3))
    assert env["SEARCH_CACHE_ENABLED"] == "true"
    assert env["SEARCH_DB_POOL_SIZE"] == "3"
    assert env["SEARCH_STORE_BACKEND"] == "postgis"


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json", env="test")
    log_performance("unit_of_work", 1.5, backend="memory")


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service", registry=CollectorRegistry())
    assert collector.service_name == "test-service"

    collector.record_search("success", 0.02, returned=3)
    collector.record_store_operation("search", "memory")
    collector.record_projection_event("providers.provider.searchable.v1", "success", 0.01)
    collector.record_cache_hit("search_results")
    collector.record_cache_miss("search_results")

    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "provider_search_requests_total" in metrics
    assert "provider_store_operations_total" in metrics
    assert "provider_projection_events_total" in metrics


def test_collectors_do_not_share_state():
    first = MetricsCollector("a")
    second = MetricsCollector("b")
    first.record_store_operation("search", "memory")
    assert second.registry.get_sample_value(
        "provider_store_operations_total", {"operation": "search", "backend": "memory"}
    ) is None


def test_tracing_context_closes_span_on_error():
    tracer = SearchTracer("test-service")

    with tracer.trace_search_query(10.0, 0, 20, term="maria"):
        pass

    with pytest.raises(RuntimeError):
        with tracer.trace_projection_event("providers.provider.searchable.v1", "abc") as span:
            raise RuntimeError("boom")
    assert span is not None


def test_tracing_context_records_status():
    class RecordingSpan:
        def __init__(self):
            self.attributes = {}
            self.status = None
            self.ended = False

        def set_attribute(self, key, value):
            self.attributes[key] = value

        def set_status(self, status):
            self.status = status

        def end(self):
            self.ended = True

    class RecordingTracer:
        def __init__(self):
            self.span = RecordingSpan()

        def start_span(self, name):
            return self.span

    tracer = RecordingTracer()
    with TracingContext(tracer, "op", radius_km=5, term=None):
        pass

    assert tracer.span.ended
    assert tracer.span.status.status_code == StatusCode.OK
    assert tracer.span.attributes == {"radius_km": "5"}
