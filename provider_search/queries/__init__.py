"""Read-side queries over the searchable provider model."""

from .search_providers import (
    PagedSearchResponse,
    ProviderSearchItem,
    SearchProvidersQueryHandler,
    SearchProvidersRequest,
)

__all__ = [
    "PagedSearchResponse",
    "ProviderSearchItem",
    "SearchProvidersQueryHandler",
    "SearchProvidersRequest",
]
