"""Read model for provider search.

``SearchableProvider`` is a denormalized projection of a Provider owned by the
providers module. It exists only while the provider is searchable and is
mutated exclusively by the projection synchronizer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union
from uuid import UUID

from .geo import GeoPoint, distance_km


class SubscriptionTier(IntEnum):
    """Subscription level; higher values rank first in search."""
    FREE = 0
    STANDARD = 1
    GOLD = 2
    PLATINUM = 3

    @classmethod
    def parse(cls, value: Union[int, str, "SubscriptionTier"]) -> "SubscriptionTier":
        """Parse a tier from its integer value or case-insensitive name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            if name.isdigit():
                return cls(int(name))
            try:
                return cls[name]
            except KeyError:
                raise ValueError(f"Unknown subscription tier: {value}") from None
        return cls(int(value))


@dataclass(frozen=True, order=True)
class SearchableProviderId:
    """Identity of a searchable provider; equals the source Provider id."""
    value: UUID

    @classmethod
    def of(cls, value: Union[UUID, str, "SearchableProviderId"]) -> "SearchableProviderId":
        if isinstance(value, cls):
            return value
        if isinstance(value, UUID):
            return cls(value)
        return cls(UUID(str(value)))

    def __str__(self) -> str:
        return str(self.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text.strip()


MAX_RATING = 5.0


def validate_rating(rating: float, total_reviews: int) -> None:
    """Raise ``ValueError`` unless rating is in [0, 5] and reviews are non-negative."""
    if not 0.0 <= float(rating) <= MAX_RATING:
        raise ValueError(f"Rating must be between 0 and {MAX_RATING:g}, got {rating}.")
    if int(total_reviews) < 0:
        raise ValueError(f"Total reviews cannot be negative, got {total_reviews}.")


@dataclass
class SearchableProvider:
    """Searchable projection of a provider.

    ``service_ids`` is replaced wholesale on every update. Every mutator sets
    ``is_dirty`` and ``updated_at``; stores clear the flag on commit.
    """

    id: SearchableProviderId
    name: str
    location: GeoPoint
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    rating: float = 0.0
    total_reviews: int = 0
    service_ids: FrozenSet[UUID] = frozenset()
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    is_dirty: bool = field(default=False, compare=False)

    @classmethod
    def create(
        cls,
        id: Union[SearchableProviderId, UUID, str],
        name: str,
        location: GeoPoint,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        rating: float = 0.0,
        service_ids: Optional[Iterable[UUID]] = None,
        total_reviews: int = 0,
        description: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> "SearchableProvider":
        """Create a new searchable provider entry."""
        if not name or not name.strip():
            raise ValueError("Provider name cannot be empty.")
        if location is None:
            raise ValueError("Provider location is required.")
        validate_rating(rating, total_reviews)

        return cls(
            id=SearchableProviderId.of(id),
            name=name.strip(),
            location=location,
            subscription_tier=SubscriptionTier.parse(tier),
            rating=float(rating),
            total_reviews=int(total_reviews),
            service_ids=frozenset(service_ids or ()),
            description=_clean(description),
            city=_clean(city),
            state=_clean(state),
            is_dirty=True,
        )

    def _mark_updated(self) -> None:
        self.updated_at = _utcnow()
        self.is_dirty = True

    def update_services(self, service_ids: Optional[Iterable[UUID]]) -> None:
        """Replace the offered services with ``service_ids``."""
        self.service_ids = frozenset(service_ids or ())
        self._mark_updated()

    def update_profile(
        self,
        name: Optional[str] = None,
        location: Optional[GeoPoint] = None,
        tier: Optional[SubscriptionTier] = None,
        rating: Optional[float] = None,
        total_reviews: Optional[int] = None,
        description: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        """Overwrite every provided field with the source aggregate's value.

        ``None`` means the field was not part of the change; it is never merged.
        """
        validate_rating(
            self.rating if rating is None else rating,
            self.total_reviews if total_reviews is None else total_reviews,
        )
        if name is not None:
            if not name.strip():
                raise ValueError("Provider name cannot be empty.")
            self.name = name.strip()
        if location is not None:
            self.location = location
        if tier is not None:
            self.subscription_tier = SubscriptionTier.parse(tier)
        if rating is not None:
            self.rating = float(rating)
        if total_reviews is not None:
            self.total_reviews = int(total_reviews)
        if description is not None:
            self.description = _clean(description)
        if city is not None:
            self.city = _clean(city)
        if state is not None:
            self.state = _clean(state)
        self._mark_updated()

    def update_rating(self, rating: float, total_reviews: int) -> None:
        validate_rating(rating, total_reviews)
        self.rating = float(rating)
        self.total_reviews = int(total_reviews)
        self._mark_updated()

    def activate(self) -> None:
        if self.is_active:
            return
        self.is_active = True
        self._mark_updated()

    def deactivate(self) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self._mark_updated()

    def distance_to_km(self, point: GeoPoint) -> float:
        return distance_km(point, self.location)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation used by caches and snapshots."""
        return {
            "id": str(self.id),
            "name": self.name,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "subscription_tier": int(self.subscription_tier),
            "rating": self.rating,
            "total_reviews": self.total_reviews,
            "service_ids": sorted(str(s) for s in self.service_ids),
            "description": self.description,
            "city": self.city,
            "state": self.state,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchableProvider":
        """Rebuild a stored provider without marking it dirty."""
        updated_at = data.get("updated_at")
        created_at = data.get("created_at")
        return cls(
            id=SearchableProviderId.of(data["id"]),
            name=data["name"],
            location=GeoPoint(data["latitude"], data["longitude"]),
            subscription_tier=SubscriptionTier.parse(data.get("subscription_tier", 0)),
            rating=float(data.get("rating", 0.0)),
            total_reviews=int(data.get("total_reviews", 0)),
            service_ids=frozenset(UUID(str(s)) for s in data.get("service_ids", ())),
            description=data.get("description"),
            city=data.get("city"),
            state=data.get("state"),
            is_active=bool(data.get("is_active", True)),
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class SearchQuery:
    """Input of a provider search.

    Optional filters are inactive when ``None``; empty sets and blank terms
    are treated the same way.
    """
    origin: GeoPoint
    radius_km: float
    term: Optional[str] = None
    service_ids: Optional[FrozenSet[UUID]] = None
    min_rating: Optional[float] = None
    subscription_tiers: Optional[FrozenSet[SubscriptionTier]] = None
    skip: int = 0
    take: int = 20

    def __post_init__(self):
        if self.skip < 0:
            raise ValueError("skip must be >= 0")
        if self.take <= 0:
            raise ValueError("take must be > 0")
        if self.service_ids is not None:
            object.__setattr__(self, "service_ids", frozenset(self.service_ids))
        if self.subscription_tiers is not None:
            object.__setattr__(
                self,
                "subscription_tiers",
                frozenset(SubscriptionTier.parse(t) for t in self.subscription_tiers),
            )

    @property
    def normalized_term(self) -> Optional[str]:
        if self.term is None or not self.term.strip():
            return None
        return self.term.strip()

    def cache_key_data(self) -> Dict[str, Any]:
        """Canonical, order-independent description of the query."""
        return {
            "lat": self.origin.latitude,
            "lon": self.origin.longitude,
            "radius_km": self.radius_km,
            "term": self.normalized_term,
            "service_ids": sorted(str(s) for s in self.service_ids) if self.service_ids else None,
            "min_rating": self.min_rating,
            "tiers": sorted(int(t) for t in self.subscription_tiers) if self.subscription_tiers else None,
            "skip": self.skip,
            "take": self.take,
        }


@dataclass(frozen=True)
class SearchResult:
    """One page of ranked providers plus the unpaged match count."""
    providers: List[SearchableProvider]
    total_count: int
    distances_km: List[float] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "SearchResult":
        return cls(providers=[], total_count=0, distances_km=[])
