"""Projection worker: keeps the search read model in sync with provider events.

Subscribes the ``ProjectionSynchronizer`` to every provider lifecycle event on
Redis pub/sub and runs the listener until cancelled. Messages are handled one
at a time, so the store sees a single writer.
"""

import asyncio
import sys
from contextlib import suppress
from typing import Optional

import structlog

from ..common.config import ProjectionWorkerConfig
from ..common.events import EventSubscriber, EventType, ProviderEvent, create_event_subscriber
from ..common.logging import configure_logging
from ..common.metrics import MetricsCollector, create_metrics_collector
from ..common.tracing import SearchTracer, configure_tracing, get_search_tracer
from ..projection.synchronizer import ProjectionSynchronizer
from ..provider_store.base import SearchableProviderRepository, StorageUnavailableError
from ..provider_store.factory import create_provider_store
from ..queries.search_providers import SearchProvidersQueryHandler

logger = structlog.get_logger("projection_worker")

SERVICE_NAME = "provider-search-worker"


class ProjectionWorker:
    """Applies provider lifecycle events to the searchable provider store."""

    def __init__(
        self,
        config: ProjectionWorkerConfig,
        repository: Optional[SearchableProviderRepository] = None,
        subscriber: Optional[EventSubscriber] = None,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        self.config = config
        self.metrics = metrics or create_metrics_collector(SERVICE_NAME)
        self.repository = repository or create_provider_store(config, metrics=self.metrics)
        self.event_subscriber = subscriber or create_event_subscriber(
            config.search_redis_url,
            channel_prefix=config.search_event_channel_prefix,
        )
        self.synchronizer = ProjectionSynchronizer(self.repository, metrics=self.metrics, tracer=tracer)
        self.query_handler = SearchProvidersQueryHandler(self.repository, config, metrics=self.metrics)
        self._event_listener_task: Optional[asyncio.Task] = None

        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        """Route every provider lifecycle event to the synchronizer."""
        for event_type in EventType:
            self.event_subscriber.subscribe(event_type, self.handle_event)

    async def handle_event(self, event: ProviderEvent) -> None:
        """Apply ``event``, retrying while the store is unavailable.

        Pub/sub never redelivers, so a transient storage failure is retried
        here with exponential backoff. The last failure is re-raised.
        """
        max_retries = self.config.search_worker_event_retries
        base_delay = self.config.search_worker_retry_base_delay

        for attempt in range(max_retries):
            try:
                await self.synchronizer.handle(event)
                return
            except StorageUnavailableError as e:
                if attempt == max_retries - 1:
                    logger.error(
                        "Event not applied after all retries",
                        event_type=event.event_type,
                        provider_id=event.provider_id,
                        error=str(e)
                    )
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "Store unavailable, retrying event",
                    event_type=event.event_type,
                    provider_id=event.provider_id,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay
                )
                await asyncio.sleep(delay)

    async def initialize(self) -> None:
        """Verify the store is reachable before listening."""
        healthy = await self.repository.health_check()
        if not healthy:
            logger.warning("Provider store not reachable at startup", backend=self.repository.backend_name)
        logger.info("Projection worker initialized", backend=self.repository.backend_name)

    async def run(self) -> None:
        """Listen for events until cancelled; raises once out of retries."""
        self._event_listener_task = asyncio.create_task(self._run_event_listener_with_retry())
        await self._event_listener_task

    async def _run_event_listener_with_retry(self) -> None:
        """Run event listener with retry logic."""
        max_retries = self.config.search_worker_listener_retries
        base_delay = self.config.search_worker_retry_base_delay

        for attempt in range(max_retries):
            try:
                await self.event_subscriber.start_listening()
                break
            except asyncio.CancelledError:
                logger.info("Event listener cancelled")
                raise
            except Exception as e:
                if attempt == max_retries - 1:
                    logger.error("Event listener failed after all retries", error=str(e))
                    raise

                delay = base_delay * (2 ** attempt)  # Exponential backoff
                logger.warning(
                    "Event listener failed, retrying",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def health_check(self) -> bool:
        """Check that searches can be served from the store."""
        return await self.query_handler.is_available()

    async def cleanup(self) -> None:
        """Stop listening and release the subscriber and store.

        Safe to call multiple times.
        """
        if self._event_listener_task and not self._event_listener_task.done():
            self._event_listener_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._event_listener_task

        with suppress(Exception):
            await self.event_subscriber.close()

        await self.repository.close()
        logger.info("Projection worker stopped")


async def run_worker(config: ProjectionWorkerConfig) -> None:
    """Build, run and clean up a worker for ``config``."""
    tracer = None
    if config.search_tracing_enabled:
        if configure_tracing(SERVICE_NAME, config.search_otel_exporter, config.search_env):
            tracer = get_search_tracer(SERVICE_NAME)
            logger.info("OpenTelemetry tracing enabled", exporter=config.search_otel_exporter)
        else:
            logger.warning("Tracing initialization failed")

    worker = ProjectionWorker(config, tracer=tracer)
    try:
        await worker.initialize()
        await worker.run()
    finally:
        await worker.cleanup()


def main() -> None:
    """Console entry point."""
    config = ProjectionWorkerConfig()
    configure_logging(SERVICE_NAME, config.search_log_level, config.search_log_format, env=config.search_env)
    logger.info("Starting projection worker", backend=config.search_store_backend)

    try:
        asyncio.run(run_worker(config))
    except KeyboardInterrupt:
        logger.info("Projection worker interrupted")
    except Exception as e:
        logger.error("Projection worker failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
