"""Redis result cache in front of a provider store."""

import hashlib
import json
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis
import structlog

from ..common.metrics import MetricsCollector
from ..domain.models import SearchableProvider, SearchableProviderId, SearchQuery, SearchResult
from .base import SearchableProviderRepository

logger = structlog.get_logger("provider_store.cached")


class CachedProviderRepository(SearchableProviderRepository):
    """Caches search pages in Redis, keyed by query and write generation.

    Every successful ``save_changes`` bumps a generation counter, so a cached
    page is never served after a commit it predates. Cache failures are
    logged and the inner store answers instead.
    """

    def __init__(
        self,
        inner: SearchableProviderRepository,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 300,
        metrics: Optional[MetricsCollector] = None,
        redis_client: Optional[Any] = None,
        key_prefix: str = "provider_search",
    ):
        if redis_client is None and not redis_url:
            raise ValueError("CachedProviderRepository requires redis_url or redis_client")

        self.inner = inner
        self.redis_client = redis_client if redis_client is not None else redis.from_url(redis_url)
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics

        self.result_prefix = f"{key_prefix}:result:"
        self.generation_key = f"{key_prefix}:generation"
        self.backend_name = f"cached-{inner.backend_name}"

    def _generate_cache_key(self, generation: int, data: Dict[str, Any]) -> str:
        """Generate cache key from query data."""
        sorted_data = json.dumps(data, sort_keys=True)
        hash_obj = hashlib.md5(sorted_data.encode())
        return f"{self.result_prefix}{generation}:{hash_obj.hexdigest()}"

    async def _current_generation(self) -> int:
        value = await self.redis_client.get(self.generation_key)
        return int(value) if value else 0

    async def _get_cached(self, cache_key: str) -> Optional[SearchResult]:
        try:
            cached_data = await self.redis_client.get(cache_key)
            if not cached_data:
                return None
            data = json.loads(cached_data)
            return SearchResult(
                providers=[SearchableProvider.from_dict(p) for p in data["providers"]],
                total_count=int(data["total_count"]),
                distances_km=[float(d) for d in data["distances_km"]],
            )
        except Exception as e:
            logger.warning("Failed to read cached search results", error=str(e))
            return None

    async def _cache(self, cache_key: str, result: SearchResult) -> None:
        try:
            result_data = {
                "providers": [p.to_dict() for p in result.providers],
                "total_count": result.total_count,
                "distances_km": result.distances_km,
                "cached_at": time.time(),
            }
            await self.redis_client.setex(cache_key, self.ttl_seconds, json.dumps(result_data))
        except Exception as e:
            logger.warning("Failed to cache search results", error=str(e))

    async def get_by_id(self, provider_id: SearchableProviderId) -> Optional[SearchableProvider]:
        return await self.inner.get_by_id(provider_id)

    async def search(self, query: SearchQuery) -> SearchResult:
        """Serve a cached page or delegate and cache the result."""
        try:
            generation = await self._current_generation()
        except Exception as e:
            logger.warning("Result cache unavailable, searching directly", error=str(e))
            return await self.inner.search(query)

        cache_key = self._generate_cache_key(generation, query.cache_key_data())
        cached = await self._get_cached(cache_key)
        if cached is not None:
            if self.metrics:
                self.metrics.record_cache_hit("search_results")
            logger.debug("Search results cache hit", generation=generation)
            return cached

        if self.metrics:
            self.metrics.record_cache_miss("search_results")

        result = await self.inner.search(query)
        await self._cache(cache_key, result)
        return result

    async def add(self, provider: SearchableProvider) -> None:
        await self.inner.add(provider)

    async def update(self, provider: SearchableProvider) -> None:
        await self.inner.update(provider)

    async def delete(self, provider: SearchableProvider) -> None:
        await self.inner.delete(provider)

    async def save_changes(self) -> int:
        """Commit through the inner store, then retire every cached page."""
        applied = await self.inner.save_changes()
        if applied:
            try:
                await self.redis_client.incr(self.generation_key)
            except Exception as e:
                logger.warning("Failed to bump result cache generation", error=str(e))
        return applied

    async def health_check(self) -> bool:
        return await self.inner.health_check()

    async def close(self) -> None:
        await self.inner.close()
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.warning("Failed to close result cache client", error=str(e))
