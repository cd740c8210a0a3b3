"""Domain types for provider search.

- ``geo``: ``GeoPoint`` and ``distance_km``.
- ``models``: ``SubscriptionTier``, ``SearchableProvider``, ``SearchQuery``, ``SearchResult``.
"""

from .geo import EARTH_RADIUS_KM, GeoPoint, InvalidCoordinatesError, distance_km
from .models import (
    SearchableProvider,
    SearchableProviderId,
    SearchQuery,
    SearchResult,
    SubscriptionTier,
)

__all__ = [
    "EARTH_RADIUS_KM",
    "GeoPoint",
    "InvalidCoordinatesError",
    "distance_km",
    "SearchableProvider",
    "SearchableProviderId",
    "SearchQuery",
    "SearchResult",
    "SubscriptionTier",
]
