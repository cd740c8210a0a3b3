"""GeoPoint value object and great-circle distance.

Distances use the haversine formula on a sphere with the IUGG mean Earth
radius. PostGIS ``ST_DistanceSphere`` uses the same sphere, so the in-memory
engine and the database agree on radius boundaries and proximity ordering.
"""

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0088


class InvalidCoordinatesError(ValueError):
    """Latitude or longitude outside the valid range."""


@dataclass(frozen=True)
class GeoPoint:
    """Immutable (latitude, longitude) pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self):
        try:
            latitude = float(self.latitude)
            longitude = float(self.longitude)
        except (TypeError, ValueError) as e:
            raise InvalidCoordinatesError(f"Coordinates must be numeric: {e}") from e

        if math.isnan(latitude) or not -90.0 <= latitude <= 90.0:
            raise InvalidCoordinatesError(f"Latitude must be between -90 and 90, got {self.latitude}")
        if math.isnan(longitude) or not -180.0 <= longitude <= 180.0:
            raise InvalidCoordinatesError(f"Longitude must be between -180 and 180, got {self.longitude}")

        object.__setattr__(self, "latitude", latitude)
        object.__setattr__(self, "longitude", longitude)

    def distance_to(self, other: "GeoPoint") -> float:
        """Distance to ``other`` in kilometres."""
        return distance_km(self, other)


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in kilometres."""
    if a == b:
        return 0.0

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points.
    h = min(1.0, max(0.0, h))

    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))
