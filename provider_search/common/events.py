"""Provider lifecycle events consumed by the search projection.

The providers module owns the Provider aggregate and announces its lifecycle
on Redis pub/sub. Each notification carries the provider id and a full current
snapshot of the fields it changes, so consumers never call back into the
providers module.

Key concepts
- "EventType" stable identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
- ``EventSubscriber`` decodes messages into typed events and awaits the
  registered async handlers
- ``parse_event`` is the validation boundary for coordinates, tiers and ids
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union
from dataclasses import MISSING, dataclass, asdict, field, fields
from enum import Enum
from uuid import UUID
import redis
import redis.asyncio as redis_async
import structlog

from ..domain.geo import GeoPoint
from ..domain.models import SubscriptionTier, validate_rating

logger = structlog.get_logger("events")


class EventType(Enum):
    """Provider lifecycle event types."""
    PROVIDER_BECAME_SEARCHABLE = "providers.provider.searchable.v1"
    PROVIDER_PROFILE_CHANGED = "providers.provider.profile_changed.v1"
    PROVIDER_SERVICES_CHANGED = "providers.provider.services_changed.v1"
    PROVIDER_UNSEARCHABLE = "providers.provider.unsearchable.v1"


class UnknownEventError(ValueError):
    """Payload names an unknown event type or lacks required fields."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _normalize_id(value: Any) -> str:
    return str(UUID(str(value)))


def _normalize_service_ids(values: Optional[List[Any]]) -> List[str]:
    return [_normalize_id(v) for v in values or ()]


@dataclass
class BaseEvent:
    """Base event class.

    Child events declare their payload fields followed by ``timestamp`` and
    ``event_type``, and set ``event_type`` in ``__post_init__``.
    """

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class ProviderBecameSearchable(BaseEvent):
    """A provider was approved and activated; carries the full snapshot."""
    provider_id: str
    name: str
    latitude: float
    longitude: float
    subscription_tier: Union[int, str] = 0
    service_ids: List[str] = field(default_factory=list)
    rating: float = 0.0
    total_reviews: int = 0
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    timestamp: int = 0
    event_type: str = ""

    def __post_init__(self):
        self.event_type = EventType.PROVIDER_BECAME_SEARCHABLE.value
        if not self.timestamp:
            self.timestamp = _now_ms()
        self.provider_id = _normalize_id(self.provider_id)
        self.subscription_tier = int(SubscriptionTier.parse(self.subscription_tier))
        self.service_ids = _normalize_service_ids(self.service_ids)
        GeoPoint(self.latitude, self.longitude)
        validate_rating(self.rating, self.total_reviews)

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


@dataclass
class ProviderProfileChanged(BaseEvent):
    """Profile fields changed; ``None`` fields were not part of the change."""
    provider_id: str
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    subscription_tier: Optional[Union[int, str]] = None
    rating: Optional[float] = None
    total_reviews: Optional[int] = None
    description: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    timestamp: int = 0
    event_type: str = ""

    def __post_init__(self):
        self.event_type = EventType.PROVIDER_PROFILE_CHANGED.value
        if not self.timestamp:
            self.timestamp = _now_ms()
        self.provider_id = _normalize_id(self.provider_id)
        if self.subscription_tier is not None:
            self.subscription_tier = int(SubscriptionTier.parse(self.subscription_tier))
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.latitude is not None:
            GeoPoint(self.latitude, self.longitude)
        validate_rating(
            0.0 if self.rating is None else self.rating,
            0 if self.total_reviews is None else self.total_reviews,
        )

    @property
    def location(self) -> Optional[GeoPoint]:
        if self.latitude is None:
            return None
        return GeoPoint(self.latitude, self.longitude)


@dataclass
class ProviderServicesChanged(BaseEvent):
    """The provider's offered services were replaced."""
    provider_id: str
    service_ids: List[str] = field(default_factory=list)
    timestamp: int = 0
    event_type: str = ""

    def __post_init__(self):
        self.event_type = EventType.PROVIDER_SERVICES_CHANGED.value
        if not self.timestamp:
            self.timestamp = _now_ms()
        self.provider_id = _normalize_id(self.provider_id)
        self.service_ids = _normalize_service_ids(self.service_ids)


@dataclass
class ProviderUnsearchable(BaseEvent):
    """The provider was deactivated, rejected or deleted."""
    provider_id: str
    reason: Optional[str] = None
    timestamp: int = 0
    event_type: str = ""

    def __post_init__(self):
        self.event_type = EventType.PROVIDER_UNSEARCHABLE.value
        if not self.timestamp:
            self.timestamp = _now_ms()
        self.provider_id = _normalize_id(self.provider_id)


ProviderEvent = Union[
    ProviderBecameSearchable,
    ProviderProfileChanged,
    ProviderServicesChanged,
    ProviderUnsearchable,
]

EVENT_CLASSES: Dict[str, Type[BaseEvent]] = {
    EventType.PROVIDER_BECAME_SEARCHABLE.value: ProviderBecameSearchable,
    EventType.PROVIDER_PROFILE_CHANGED.value: ProviderProfileChanged,
    EventType.PROVIDER_SERVICES_CHANGED.value: ProviderServicesChanged,
    EventType.PROVIDER_UNSEARCHABLE.value: ProviderUnsearchable,
}


def parse_event(event_type: str, payload: Dict[str, Any]) -> ProviderEvent:
    """Build a typed event from a decoded payload.

    Unknown payload keys are ignored so publishers can add fields first.

    Raises
    - ``UnknownEventError`` for an unrecognized ``event_type`` or a missing
      required field
    - ``ValueError`` (including ``InvalidCoordinatesError``) for bad values
    """
    event_class = EVENT_CLASSES.get(event_type)
    if event_class is None:
        raise UnknownEventError(f"Unknown event type: {event_type}")

    known = {f.name for f in fields(event_class)} - {"event_type"}
    missing = [
        f.name for f in fields(event_class)
        if f.name in known and f.name not in payload
        and f.default is MISSING and f.default_factory is MISSING
    ]
    if missing:
        raise UnknownEventError(f"{event_type} payload is missing: {', '.join(missing)}")

    return event_class(**{k: v for k, v in payload.items() if k in known})


EventHandler = Callable[[ProviderEvent], Awaitable[Any]]


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with exponential backoff, then logged and re-raised.
    - Messages are serialized as JSON to keep consumers language-agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "provider_events",
        redis_client: Optional[Any] = None,
        max_retries: int = 3,
        base_delay: float = 0.5,
    ):
        self.redis_client = redis_client if redis_client is not None else redis.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    def channel_for(self, event_type: str) -> str:
        return f"{self.channel_prefix}:{event_type}"

    def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type to allow subscribers to
        filter efficiently without payload inspection.
        """
        for attempt in range(self.max_retries):
            try:
                channel = self.channel_for(event.event_type)
                self.redis_client.publish(channel, event.to_json())
                logger.info(
                    "Event published",
                    event_type=event.event_type,
                    channel=channel
                )
                return
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                time.sleep(delay)

    def close(self) -> None:
        self.redis_client.close()


class EventSubscriber:
    """Subscribes to provider events from Redis.

    Maintains a mapping of ``event_type -> List[async callables]``. Handlers
    for one message are awaited in registration order, and messages are
    processed one at a time, so a handler never races another for the same
    provider.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "provider_events",
        redis_client: Optional[Any] = None,
    ):
        self.redis_client = (
            redis_client if redis_client is not None
            else redis_async.from_url(redis_url, decode_responses=False)
        )
        self.channel_prefix = channel_prefix
        self.handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to an event type."""
        if event_type.value not in self.handlers:
            self.handlers[event_type.value] = []
        self.handlers[event_type.value].append(handler)
        logger.info(
            "Subscribed to event",
            event_type=event_type.value,
            handler=getattr(handler, "__name__", repr(handler))
        )

    async def start_listening(self) -> None:
        """Listen for events until cancelled.

        Transient errors inside the loop are logged and listening continues;
        failing to subscribe at all is raised to the caller.
        """
        pubsub = self.redis_client.pubsub()

        try:
            channels = [
                f"{self.channel_prefix}:{event_type.value}"
                for event_type in EventType
            ]
            await pubsub.subscribe(*channels)

            logger.info("Started listening for events", channels=len(channels))

            while True:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=1.0
                    )
                    if message and message.get("type") == "message":
                        await self.handle_message(message)

                    await asyncio.sleep(0.01)

                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Error in event listener loop", error=str(e))
                    await asyncio.sleep(1.0)

        except asyncio.CancelledError:
            logger.info("Event listener cancelled")
            raise
        except Exception as e:
            logger.error("Event listener failed", error=str(e))
            raise
        finally:
            try:
                await pubsub.aclose()
                logger.info("Event listener stopped")
            except Exception as e:
                logger.warning("Error closing pubsub", error=str(e))

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """Decode, parse and dispatch one pub/sub message.

        Malformed messages and handler errors are logged; they never stop the
        listener. Cancellation propagates.
        """
        channel_raw = message.get("channel")
        data_raw = message.get("data")

        if isinstance(channel_raw, (bytes, bytearray)):
            channel = channel_raw.decode("utf-8")
        else:
            channel = str(channel_raw)

        # Extract event type from channel
        event_type = channel.split(":")[-1]

        try:
            if isinstance(data_raw, (bytes, bytearray)):
                payload = json.loads(data_raw.decode("utf-8"))
            else:
                payload = json.loads(data_raw)
            event = parse_event(event_type, payload)
        except Exception as e:
            logger.error(
                "Error processing event message",
                event_type=event_type,
                error=str(e)
            )
            return

        handlers = self.handlers.get(event_type)
        if not handlers:
            logger.warning("No handlers for event type", event_type=event_type)
            return

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Error handling event",
                    event_type=event_type,
                    provider_id=event.provider_id,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )

    async def close(self) -> None:
        """Close the Redis client used by the subscriber."""
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.warning("Error closing redis client", error=str(e))


def create_event_publisher(redis_url: str, channel_prefix: str = "provider_events") -> EventPublisher:
    """Create an event publisher."""
    return EventPublisher(redis_url, channel_prefix=channel_prefix)


def create_event_subscriber(redis_url: str, channel_prefix: str = "provider_events") -> EventSubscriber:
    """Create an event subscriber."""
    return EventSubscriber(redis_url, channel_prefix=channel_prefix)
