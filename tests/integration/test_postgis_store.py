"""Integration tests for the PostGIS provider store."""

from uuid import uuid4

import pytest

from provider_search.common.config import BaseConfig
from provider_search.domain import SubscriptionTier, distance_km
from provider_search.provider_store.postgis import TABLE, PostGisProviderRepository
from tests.factories import BELO_HORIZONTE, RIO_DE_JANEIRO, SAO_PAULO, make_provider, make_query


async def connected_store():
    store = PostGisProviderRepository(BaseConfig().search_db_dsn, pool_size=2)
    if not await store.health_check():
        await store.close()
        pytest.skip("PostGIS not available")
    await store.ensure_schema()
    pool = await store._get_pool()
    async with pool.acquire() as conn:
        await conn.execute(f"TRUNCATE {TABLE}")
    return store


async def seed(store, *providers):
    for provider in providers:
        await store.add(provider)
    await store.save_changes()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_city_scenario_matches_in_memory_contract():
    store = await connected_store()
    try:
        sp = make_provider("SP", SAO_PAULO)
        rj = make_provider("RJ", RIO_DE_JANEIRO)
        bh = make_provider("BH", BELO_HORIZONTE)
        await seed(store, sp, rj, bh)

        wide = await store.search(make_query(radius_km=1000))
        narrow = await store.search(make_query(radius_km=50))
        empty = await store.search(make_query(radius_km=0))

        assert {p.id for p in wide.providers} == {sp.id, rj.id, bh.id}
        assert [p.id for p in narrow.providers] == [sp.id]
        assert empty.total_count == 0
        for provider, distance in zip(wide.providers, wide.distances_km):
            assert distance == pytest.approx(distance_km(SAO_PAULO, provider.location), rel=1e-5)
    finally:
        await store.close()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ranking_filters_and_paging():
    store = await connected_store()
    try:
        service_id = uuid4()
        gold = make_provider("Gold 100%", tier=SubscriptionTier.GOLD, rating=3.0, service_ids={service_id})
        colocated = [make_provider(f"Standard {i}") for i in range(14)]
        await seed(store, gold, *colocated)

        first = await store.search(make_query(skip=0, take=10))
        second = await store.search(make_query(skip=10, take=10))
        assert first.providers[0].id == gold.id
        assert first.total_count == second.total_count == 15
        assert len(second.providers) == 5
        assert {p.id for p in first.providers}.isdisjoint({p.id for p in second.providers})

        assert (await store.search(make_query(term="100%"))).total_count == 1
        assert (await store.search(make_query(term="_"))).total_count == 0
        assert (await store.search(make_query(service_ids={service_id}))).total_count == 1
        assert (await store.search(make_query(service_ids={uuid4()}))).total_count == 0
        assert (await store.search(make_query(subscription_tiers={SubscriptionTier.GOLD}))).total_count == 1
        assert (await store.search(make_query(min_rating=3.5))).total_count == 14
    finally:
        await store.close()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_upsert_update_and_delete():
    store = await connected_store()
    try:
        provider = make_provider("Before")
        await seed(store, provider)

        await store.add(make_provider("Upserted", provider_id=provider.id.value))
        await store.save_changes()
        loaded = await store.get_by_id(provider.id)
        assert loaded.name == "Upserted"

        loaded.update_services({uuid4()})
        await store.update(loaded)
        await store.save_changes()
        assert (await store.get_by_id(provider.id)).service_ids == loaded.service_ids

        await store.delete(loaded)
        await store.delete(loaded)
        await store.save_changes()
        assert await store.get_by_id(provider.id) is None
    finally:
        await store.close()
