"""In-memory implementation of the provider store.

Computes ``distance_km`` directly over every committed record, so it needs no
spatial index. It is the reference engine for the filter/ranking/paging
contract and backs unit tests and local runs without PostGIS.

Isolation
- Committed records are copied in and out, so callers mutating returned
  entities never change committed state without ``save_changes``
- ``save_changes`` applies staged operations without awaiting, so no reader
  can observe a half-applied commit
"""

import copy
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ..common.metrics import MetricsCollector
from ..domain.geo import distance_km
from ..domain.models import SearchableProvider, SearchableProviderId, SearchQuery, SearchResult
from .base import SearchableProviderRepository

logger = structlog.get_logger("provider_store.memory")


def ranking_key(provider: SearchableProvider, distance: float) -> Tuple[int, float, float, object]:
    """Sort key: tier desc, rating desc, distance asc, id asc."""
    return (-int(provider.subscription_tier), -provider.rating, distance, provider.id.value)


def matches_filters(provider: SearchableProvider, query: SearchQuery) -> bool:
    """Apply the non-spatial filters of ``query`` to ``provider``."""
    term = query.normalized_term
    if term is not None and term.casefold() not in provider.name.casefold():
        return False

    if query.service_ids and provider.service_ids.isdisjoint(query.service_ids):
        return False

    if query.min_rating is not None and provider.rating < query.min_rating:
        return False

    if query.subscription_tiers and provider.subscription_tier not in query.subscription_tiers:
        return False

    return True


class InMemoryProviderRepository(SearchableProviderRepository):
    """Provider store held in a dict keyed by id."""

    backend_name = "memory"

    def __init__(
        self,
        providers: Optional[Iterable[SearchableProvider]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._committed: Dict[SearchableProviderId, SearchableProvider] = {}
        self._pending: List[Tuple[str, SearchableProvider]] = []
        self.metrics = metrics
        for provider in providers or ():
            self._committed[provider.id] = self._snapshot(provider)

    @staticmethod
    def _snapshot(provider: SearchableProvider) -> SearchableProvider:
        stored = copy.copy(provider)
        stored.is_dirty = False
        return stored

    def _record(self, operation: str) -> None:
        if self.metrics:
            self.metrics.record_store_operation(operation, self.backend_name)

    async def get_by_id(self, provider_id: SearchableProviderId) -> Optional[SearchableProvider]:
        """Get a committed provider."""
        self._record("get_by_id")
        stored = self._committed.get(SearchableProviderId.of(provider_id))
        return copy.copy(stored) if stored is not None else None

    async def search(self, query: SearchQuery) -> SearchResult:
        """Filter, rank and page committed providers."""
        self._record("search")
        if query.radius_km <= 0:
            return SearchResult.empty()

        # Snapshot the committed view; nothing below awaits.
        candidates = list(self._committed.values())

        matches: List[Tuple[SearchableProvider, float]] = []
        for provider in candidates:
            if not provider.is_active:
                continue
            distance = distance_km(query.origin, provider.location)
            if not distance < query.radius_km:
                continue
            if not matches_filters(provider, query):
                continue
            matches.append((provider, distance))

        matches.sort(key=lambda match: ranking_key(*match))
        page = matches[query.skip:query.skip + query.take]

        logger.debug(
            "In-memory search completed",
            candidates=len(candidates),
            total_count=len(matches),
            returned=len(page)
        )

        return SearchResult(
            providers=[copy.copy(provider) for provider, _ in page],
            total_count=len(matches),
            distances_km=[distance for _, distance in page],
        )

    async def add(self, provider: SearchableProvider) -> None:
        self._pending.append(("add", self._snapshot(provider)))

    async def update(self, provider: SearchableProvider) -> None:
        self._pending.append(("update", self._snapshot(provider)))

    async def delete(self, provider: SearchableProvider) -> None:
        self._pending.append(("delete", self._snapshot(provider)))

    async def save_changes(self) -> int:
        """Apply staged operations in order."""
        pending, self._pending = self._pending, []
        committed = dict(self._committed)

        for operation, provider in pending:
            if operation == "add":
                committed[provider.id] = provider
            elif operation == "update":
                if provider.id in committed:
                    committed[provider.id] = provider
            elif operation == "delete":
                committed.pop(provider.id, None)

        self._committed = committed
        self._record("save_changes")
        if pending:
            logger.debug("In-memory changes committed", operations=len(pending))
        return len(pending)

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._committed)
