"""Geospatial provider search for the marketplace platform.

Subpackages:
- ``provider_search.common``: configuration, logging, metrics, tracing, and events.
- ``provider_search.domain``: ``GeoPoint`` and the ``SearchableProvider`` read model.
- ``provider_search.provider_store``: repository interface and concrete backends.
- ``provider_search.projection``: keeps the read model in sync with provider events.
- ``provider_search.queries``: request validation and paging for provider search.
- ``provider_search.workers``: the projection worker process.

Notes:
- The read model is owned by the projection; query code never mutates it.
"""

__version__ = "0.1.0"
