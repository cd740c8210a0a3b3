"""Common utilities shared by the search service and the projection worker.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``tracing``: OpenTelemetry tracer setup and span helpers.
- ``events``: provider lifecycle events, Redis publisher, and subscriber.

Import pattern:
- from provider_search.common.config import BaseConfig
- from provider_search.common.logging import configure_logging
"""
