"""Tests for the SearchProviders query handler."""

from uuid import uuid4

import pytest
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from provider_search.common.config import SearchConfig
from provider_search.common.metrics import MetricsCollector
from provider_search.domain import SubscriptionTier
from provider_search.provider_store.base import StorageUnavailableError
from provider_search.provider_store.memory import InMemoryProviderRepository
from provider_search.queries.search_providers import SearchProvidersQueryHandler, SearchProvidersRequest
from tests.factories import make_provider


class UnavailableRepository(InMemoryProviderRepository):
    async def search(self, query):
        raise StorageUnavailableError("database unreachable")


async def seeded_handler(*providers, **kwargs):
    repository = InMemoryProviderRepository(providers)
    return SearchProvidersQueryHandler(repository, SearchConfig(), **kwargs)


def request(**overrides):
    params = dict(latitude=-23.5505, longitude=-46.6333, radius_km=10)
    params.update(overrides)
    return SearchProvidersRequest(**params)


@pytest.mark.asyncio
async def test_pages_map_to_skip_and_take():
    providers = [make_provider(f"P{i}") for i in range(15)]
    handler = await seeded_handler(*providers)

    first = await handler.handle(request(page_number=1, page_size=10))
    second = await handler.handle(request(page_number=2, page_size=10))

    assert len(first.items) == 10
    assert len(second.items) == 5
    assert first.total_count == second.total_count == 15
    assert first.total_pages == second.total_pages == 2
    assert first.has_next_page and not first.has_previous_page
    assert second.has_previous_page and not second.has_next_page
    assert {i.provider_id for i in first.items}.isdisjoint({i.provider_id for i in second.items})


@pytest.mark.asyncio
async def test_items_carry_provider_fields_and_distance():
    service_id = uuid4()
    provider = make_provider("Maria Limpeza", tier=SubscriptionTier.GOLD, rating=4.7, service_ids={service_id})
    handler = await seeded_handler(provider)

    response = await handler.handle(request(term="maria", service_ids=[service_id], subscription_tiers=["gold"]))

    assert response.total_count == 1
    item = response.items[0]
    assert item.provider_id == provider.id.value
    assert item.name == "Maria Limpeza"
    assert item.subscription_tier == SubscriptionTier.GOLD
    assert item.distance_km == 0.0
    assert item.service_ids == [service_id]


@pytest.mark.asyncio
async def test_empty_result_has_zero_pages():
    handler = await seeded_handler()
    response = await handler.handle(request())
    assert response.items == []
    assert response.total_count == 0
    assert response.total_pages == 0


@pytest.mark.parametrize("overrides", [
    {"latitude": 91},
    {"longitude": -181},
    {"radius_km": 0},
    {"radius_km": -5},
    {"min_rating": 5.5},
    {"min_rating": -1},
    {"page_number": 0},
    {"page_size": 0},
    {"subscription_tiers": ["diamond"]},
])
def test_invalid_requests_rejected(overrides):
    with pytest.raises(ValidationError):
        request(**overrides)


@pytest.mark.asyncio
async def test_configured_limits_enforced():
    handler = await seeded_handler()

    with pytest.raises(ValidationError):
        await handler.handle(request(radius_km=501))
    with pytest.raises(ValidationError):
        await handler.handle(request(page_size=101))

    response = await handler.handle(request(radius_km=500, page_size=100))
    assert response.page_size == 100


def test_parse_request_applies_default_page_size():
    handler = SearchProvidersQueryHandler(InMemoryProviderRepository(), SearchConfig())

    parsed = handler.parse_request({"latitude": 0, "longitude": 0, "radius_km": 5})

    assert parsed.page_size == 20
    assert parsed.page_number == 1
    with pytest.raises(ValidationError):
        handler.parse_request({"latitude": 0, "longitude": 0, "radius_km": 900})


@pytest.mark.asyncio
async def test_empty_filter_lists_are_ignored():
    handler = await seeded_handler(make_provider(), make_provider())
    response = await handler.handle(request(service_ids=[], subscription_tiers=[]))
    assert response.total_count == 2


@pytest.mark.asyncio
async def test_storage_failure_propagates_and_is_counted():
    registry = CollectorRegistry()
    handler = SearchProvidersQueryHandler(
        UnavailableRepository(), SearchConfig(), metrics=MetricsCollector("test", registry=registry)
    )

    with pytest.raises(StorageUnavailableError):
        await handler.handle(request())

    assert registry.get_sample_value("provider_search_requests_total", {"outcome": "error"}) == 1.0


@pytest.mark.asyncio
async def test_success_is_counted():
    registry = CollectorRegistry()
    handler = await seeded_handler(make_provider(), metrics=MetricsCollector("test", registry=registry))

    await handler.handle(request())

    assert registry.get_sample_value("provider_search_requests_total", {"outcome": "success"}) == 1.0


@pytest.mark.asyncio
async def test_is_available_reports_health():
    assert await (await seeded_handler()).is_available() is True

    unavailable = SearchProvidersQueryHandler(UnavailableRepository(), SearchConfig())
    assert await unavailable.is_available() is False
