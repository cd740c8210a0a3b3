"""SearchProviders query: request validation, paging and response mapping.

The handler is a thin adapter. It validates the request against the
configured limits, turns ``page_number``/``page_size`` into ``skip``/``take``,
runs the repository search and maps the ranked page to a response model.
"""

import math
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationInfo, field_validator
import structlog

from ..common.config import BaseConfig
from ..common.logging import log_performance
from ..common.metrics import MetricsCollector
from ..common.tracing import SearchTracer
from ..domain.geo import GeoPoint
from ..domain.models import SearchQuery, SubscriptionTier
from ..provider_store.base import SearchableProviderRepository

logger = structlog.get_logger("queries.search_providers")

# Avenida Paulista, São Paulo; any fixed valid point works for the probe.
AVAILABILITY_PROBE_POINT = GeoPoint(-23.561414, -46.656559)


class SearchProvidersRequest(BaseModel):
    """Request model for a provider search.

    Static bounds are checked on construction. Configured limits are checked
    when validating with a ``max_radius_km``/``max_page_size`` context, which
    ``SearchProvidersQueryHandler`` always does.
    """
    latitude: float = Field(..., ge=-90, le=90, description="Search origin latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Search origin longitude")
    radius_km: float = Field(..., gt=0, description="Search radius in kilometres")
    term: Optional[str] = Field(None, max_length=200, description="Name substring")
    service_ids: Optional[List[UUID]] = Field(None, description="Offered service ids, any match")
    min_rating: Optional[float] = Field(None, ge=0, le=5, description="Minimum average rating")
    subscription_tiers: Optional[List[SubscriptionTier]] = Field(None, description="Allowed tiers")
    page_number: int = Field(1, ge=1, description="1-based page number")
    page_size: int = Field(20, ge=1, description="Results per page")

    @field_validator("subscription_tiers", mode="before")
    @classmethod
    def parse_tiers(cls, value: Any) -> Any:
        if value is None:
            return None
        return [SubscriptionTier.parse(tier) for tier in value]

    @field_validator("radius_km")
    @classmethod
    def radius_within_limit(cls, value: float, info: ValidationInfo) -> float:
        max_radius_km = (info.context or {}).get("max_radius_km")
        if max_radius_km is not None and value > max_radius_km:
            raise ValueError(f"radius_km must be <= {max_radius_km}")
        return value

    @field_validator("page_size")
    @classmethod
    def page_size_within_limit(cls, value: int, info: ValidationInfo) -> int:
        max_page_size = (info.context or {}).get("max_page_size")
        if max_page_size is not None and value > max_page_size:
            raise ValueError(f"page_size must be <= {max_page_size}")
        return value

    def to_query(self) -> SearchQuery:
        """Map to the repository query; empty collections mean no filter."""
        return SearchQuery(
            origin=GeoPoint(self.latitude, self.longitude),
            radius_km=self.radius_km,
            term=self.term,
            service_ids=frozenset(self.service_ids) if self.service_ids else None,
            min_rating=self.min_rating,
            subscription_tiers=frozenset(self.subscription_tiers) if self.subscription_tiers else None,
            skip=(self.page_number - 1) * self.page_size,
            take=self.page_size,
        )


class ProviderSearchItem(BaseModel):
    """One ranked provider in a search response."""
    provider_id: UUID = Field(..., description="Provider ID")
    name: str = Field(..., description="Provider name")
    description: Optional[str] = Field(None, description="Provider description")
    latitude: float = Field(..., description="Provider latitude")
    longitude: float = Field(..., description="Provider longitude")
    distance_km: float = Field(..., description="Distance from the search origin")
    rating: float = Field(..., description="Average rating")
    total_reviews: int = Field(..., description="Number of reviews")
    subscription_tier: SubscriptionTier = Field(..., description="Subscription tier")
    service_ids: List[UUID] = Field(default_factory=list, description="Offered service ids")
    city: Optional[str] = Field(None, description="City")
    state: Optional[str] = Field(None, description="State")


class PagedSearchResponse(BaseModel):
    """Response model for a provider search."""
    items: List[ProviderSearchItem] = Field(..., description="Ranked providers on this page")
    total_count: int = Field(..., description="Matches across all pages")
    page_number: int = Field(..., description="1-based page number")
    page_size: int = Field(..., description="Requested page size")
    total_pages: int = Field(..., description="Number of pages")

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


class SearchProvidersQueryHandler:
    """Runs provider searches against the read model."""

    def __init__(
        self,
        repository: SearchableProviderRepository,
        config: BaseConfig,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[SearchTracer] = None,
    ):
        self.repository = repository
        self.config = config
        self.metrics = metrics
        self.tracer = tracer

    @property
    def limits(self) -> Dict[str, Any]:
        return {
            "max_radius_km": self.config.search_max_radius_km,
            "max_page_size": self.config.search_max_page_size,
        }

    def parse_request(self, data: Dict[str, Any]) -> SearchProvidersRequest:
        """Validate raw parameters against the configured limits.

        Raises ``pydantic.ValidationError`` on invalid input.
        """
        data = dict(data)
        data.setdefault("page_size", self.config.search_default_page_size)
        return SearchProvidersRequest.model_validate(data, context=self.limits)

    async def handle(self, request: SearchProvidersRequest) -> PagedSearchResponse:
        """Run one search and map the ranked page."""
        request = SearchProvidersRequest.model_validate(request.model_dump(), context=self.limits)
        query = request.to_query()

        start_time = time.time()
        try:
            if self.tracer:
                with self.tracer.trace_search_query(query.radius_km, query.skip, query.take):
                    result = await self.repository.search(query)
            else:
                result = await self.repository.search(query)
        except Exception as e:
            if self.metrics:
                self.metrics.record_search("error", time.time() - start_time)
            logger.error("Provider search failed", radius_km=query.radius_km, error=str(e))
            raise

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_search("success", duration, len(result.providers))
        log_performance(
            "search_providers",
            duration * 1000,
            backend=self.repository.backend_name,
            total_count=result.total_count,
            returned=len(result.providers)
        )

        items = [
            ProviderSearchItem(
                provider_id=provider.id.value,
                name=provider.name,
                description=provider.description,
                latitude=provider.location.latitude,
                longitude=provider.location.longitude,
                distance_km=round(distance, 3),
                rating=provider.rating,
                total_reviews=provider.total_reviews,
                subscription_tier=provider.subscription_tier,
                service_ids=sorted(provider.service_ids),
                city=provider.city,
                state=provider.state,
            )
            for provider, distance in zip(result.providers, result.distances_km)
        ]

        return PagedSearchResponse(
            items=items,
            total_count=result.total_count,
            page_number=request.page_number,
            page_size=request.page_size,
            total_pages=math.ceil(result.total_count / request.page_size),
        )

    async def is_available(self) -> bool:
        """Probe the search path with a one-result query."""
        try:
            await self.repository.search(
                SearchQuery(origin=AVAILABILITY_PROBE_POINT, radius_km=1, skip=0, take=1)
            )
            return True
        except Exception as e:
            logger.warning("Provider search unavailable", error=str(e))
            return False
