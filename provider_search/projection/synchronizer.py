"""Projection synchronizer: applies provider lifecycle events to the read model.

Every handler is idempotent. Each event carries the provider id and a full
snapshot of the fields it changes, so replaying an event, or receiving two
events for the same provider out of order, converges on a valid record.
Handlers commit with ``save_changes``; on failure nothing is committed and the
error propagates so the delivery mechanism can retry.
"""

import time
from typing import Optional
from uuid import UUID

import structlog

from ..common.events import (
    ProviderBecameSearchable,
    ProviderEvent,
    ProviderProfileChanged,
    ProviderServicesChanged,
    ProviderUnsearchable,
    UnknownEventError,
)
from ..common.metrics import MetricsCollector
from ..common.tracing import SearchTracer
from ..domain.models import SearchableProvider, SearchableProviderId, SubscriptionTier
from ..provider_store.base import SearchableProviderRepository

logger = structlog.get_logger("projection.synchronizer")


class ProjectionSynchronizer:
    """Keeps searchable providers in step with the Provider aggregate."""

    def __init__(
        self,
        repository: SearchableProviderRepository,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        self.repository = repository
        self.metrics = metrics
        self.tracer = tracer

    async def handle(self, event: ProviderEvent) -> None:
        """Apply one event, recording metrics and a span around it."""
        if isinstance(event, ProviderBecameSearchable):
            apply = self.on_provider_became_searchable
        elif isinstance(event, ProviderProfileChanged):
            apply = self.on_provider_profile_changed
        elif isinstance(event, ProviderServicesChanged):
            apply = self.on_provider_services_changed
        elif isinstance(event, ProviderUnsearchable):
            apply = self.on_provider_unsearchable
        else:
            raise UnknownEventError(f"Unsupported event: {type(event).__name__}")

        start_time = time.time()
        try:
            if self.tracer:
                with self.tracer.trace_projection_event(event.event_type, event.provider_id):
                    await apply(event)
            else:
                await apply(event)
        except Exception as e:
            logger.error(
                "Failed to apply provider event",
                event_type=event.event_type,
                provider_id=event.provider_id,
                error=str(e)
            )
            if self.metrics:
                self.metrics.record_projection_event(event.event_type, "error", time.time() - start_time)
            raise

        if self.metrics:
            self.metrics.record_projection_event(event.event_type, "success", time.time() - start_time)

    async def on_provider_became_searchable(self, event: ProviderBecameSearchable) -> None:
        """Create the record, or overwrite it with the full snapshot."""
        provider_id = SearchableProviderId.of(event.provider_id)
        existing = await self.repository.get_by_id(provider_id)

        if existing is None:
            provider = SearchableProvider.create(
                id=provider_id,
                name=event.name,
                location=event.location,
                tier=SubscriptionTier.parse(event.subscription_tier),
                rating=event.rating,
                service_ids=[UUID(s) for s in event.service_ids],
                total_reviews=event.total_reviews,
                description=event.description,
                city=event.city,
                state=event.state,
            )
            await self.repository.add(provider)
            action = "created"
        else:
            existing.update_profile(
                name=event.name,
                location=event.location,
                tier=SubscriptionTier.parse(event.subscription_tier),
                rating=event.rating,
                total_reviews=event.total_reviews,
                description=event.description,
                city=event.city,
                state=event.state,
            )
            existing.update_services(UUID(s) for s in event.service_ids)
            existing.activate()
            await self.repository.update(existing)
            action = "updated"

        await self.repository.save_changes()
        logger.info("Provider indexed for search", provider_id=str(provider_id), action=action)

    async def on_provider_profile_changed(self, event: ProviderProfileChanged) -> None:
        """Overwrite provided fields; no-op when the record does not exist."""
        provider_id = SearchableProviderId.of(event.provider_id)
        existing = await self.repository.get_by_id(provider_id)

        if existing is None:
            logger.info(
                "Ignoring profile change for unindexed provider",
                provider_id=str(provider_id)
            )
            return

        existing.update_profile(
            name=event.name,
            location=event.location,
            tier=SubscriptionTier.parse(event.subscription_tier) if event.subscription_tier is not None else None,
            rating=event.rating,
            total_reviews=event.total_reviews,
            description=event.description,
            city=event.city,
            state=event.state,
        )
        await self.repository.update(existing)
        await self.repository.save_changes()
        logger.info("Provider profile synchronized", provider_id=str(provider_id))

    async def on_provider_services_changed(self, event: ProviderServicesChanged) -> None:
        """Replace the service set; no-op when the record does not exist."""
        provider_id = SearchableProviderId.of(event.provider_id)
        existing = await self.repository.get_by_id(provider_id)

        if existing is None:
            logger.info(
                "Ignoring services change for unindexed provider",
                provider_id=str(provider_id)
            )
            return

        existing.update_services(UUID(s) for s in event.service_ids)
        await self.repository.update(existing)
        await self.repository.save_changes()
        logger.info(
            "Provider services synchronized",
            provider_id=str(provider_id),
            service_count=len(existing.service_ids)
        )

    async def on_provider_unsearchable(self, event: ProviderUnsearchable) -> None:
        """Hard-delete the record; deleting a missing record is a no-op."""
        provider_id = SearchableProviderId.of(event.provider_id)
        existing = await self.repository.get_by_id(provider_id)

        if existing is None:
            logger.debug("Provider already absent from search", provider_id=str(provider_id))
            return

        await self.repository.delete(existing)
        await self.repository.save_changes()
        logger.info(
            "Provider removed from search",
            provider_id=str(provider_id),
            reason=event.reason
        )
