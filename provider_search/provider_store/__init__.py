"""Provider store abstraction and implementations.

Backends share the ``SearchableProviderRepository`` contract so the projection
synchronizer and the query handler can run against PostGIS in production and
the in-memory engine in tests, optionally behind a Redis result cache.
"""

from .base import (
    SearchableProviderRepository,
    ProviderStoreError,
    ProviderStoreQueryError,
    StorageUnavailableError,
)
from .cached import CachedProviderRepository
from .factory import (
    ProviderStoreFactory,
    ProviderStoreType,
    create_provider_store,
    create_provider_store_from_env,
)
from .memory import InMemoryProviderRepository
from .postgis import PostGisProviderRepository

__all__ = [
    "SearchableProviderRepository",
    "ProviderStoreError",
    "ProviderStoreQueryError",
    "StorageUnavailableError",
    "CachedProviderRepository",
    "InMemoryProviderRepository",
    "PostGisProviderRepository",
    "ProviderStoreFactory",
    "ProviderStoreType",
    "create_provider_store",
    "create_provider_store_from_env",
]
