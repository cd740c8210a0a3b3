"""Base provider store interface.

Defines the abstract contract the projection synchronizer and the query
handler depend on, independent of the backing implementation (in-memory,
PostGIS, cached).

All methods are asynchronous. Writes are staged by ``add``/``update``/``delete``
and become visible to ``search`` and ``get_by_id`` only after ``save_changes``
commits them as one unit. Cancelling ``save_changes`` leaves the store either
fully updated or unchanged.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..domain.models import SearchableProvider, SearchableProviderId, SearchQuery, SearchResult


class SearchableProviderRepository(ABC):
    """Abstract base class for searchable provider stores.

    Implementations must filter, rank and page exactly as follows:

    - keep records with ``distance_km(origin, location) < radius_km`` (strict)
    - optional filters: case-insensitive name substring, service id
      intersection, ``rating >= min_rating``, tier membership
    - order by tier desc, rating desc, distance asc, id asc
    - ``total_count`` counts every match before ``skip``/``take``
    """

    backend_name = "abstract"

    @abstractmethod
    async def get_by_id(self, provider_id: SearchableProviderId) -> Optional[SearchableProvider]:
        """Get a committed provider.

        Returns
        - ``SearchableProvider`` when found, else ``None``
        """
        pass

    @abstractmethod
    async def search(self, query: SearchQuery) -> SearchResult:
        """Filter, rank and page committed providers."""
        pass

    @abstractmethod
    async def add(self, provider: SearchableProvider) -> None:
        """Stage an insert; an existing row with the same id is overwritten."""
        pass

    @abstractmethod
    async def update(self, provider: SearchableProvider) -> None:
        """Stage a full-row update; updating a missing row is a no-op."""
        pass

    @abstractmethod
    async def delete(self, provider: SearchableProvider) -> None:
        """Stage a delete; deleting a missing row is a no-op."""
        pass

    @abstractmethod
    async def save_changes(self) -> int:
        """Commit staged writes atomically.

        Returns the number of staged operations applied.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class ProviderStoreError(Exception):
    """Base exception for provider store operations."""
    pass


class StorageUnavailableError(ProviderStoreError):
    """The backing store cannot be reached."""
    pass


class ProviderStoreQueryError(ProviderStoreError):
    """A store statement failed for a reason other than connectivity."""
    pass
