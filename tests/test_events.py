"""Tests for provider lifecycle events, publisher and subscriber."""

import json
from uuid import uuid4

import pytest

from provider_search.common.events import (
    EventPublisher,
    EventSubscriber,
    EventType,
    ProviderBecameSearchable,
    ProviderProfileChanged,
    ProviderServicesChanged,
    ProviderUnsearchable,
    UnknownEventError,
    parse_event,
)
from provider_search.domain import GeoPoint, InvalidCoordinatesError


class RecordingRedis:
    """Sync Redis stand-in that records publishes and can fail a few times."""

    def __init__(self, failures=0):
        self.failures = failures
        self.published = []

    def publish(self, channel, message):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1

    def close(self):
        pass


def message(event_type, payload):
    return {
        "type": "message",
        "channel": f"provider_events:{event_type}".encode(),
        "data": json.dumps(payload).encode(),
    }


def searchable_payload(**overrides):
    payload = {
        "provider_id": str(uuid4()),
        "name": "Maria Limpeza",
        "latitude": -23.5505,
        "longitude": -46.6333,
        "subscription_tier": 2,
        "service_ids": [str(uuid4())],
    }
    payload.update(overrides)
    return payload


def test_event_types_are_versioned():
    for event_type in EventType:
        assert event_type.value.startswith("providers.provider.")
        assert event_type.value.endswith(".v1")


def test_became_searchable_sets_type_timestamp_and_location():
    event = ProviderBecameSearchable(**searchable_payload())
    assert event.event_type == EventType.PROVIDER_BECAME_SEARCHABLE.value
    assert event.timestamp > 0
    assert event.location == GeoPoint(-23.5505, -46.6333)


def test_parse_event_round_trips_json():
    event = ProviderBecameSearchable(**searchable_payload(subscription_tier="platinum"))
    parsed = parse_event(event.event_type, json.loads(event.to_json()))
    assert parsed == event
    assert parsed.subscription_tier == 3


def test_parse_event_ignores_unknown_keys():
    payload = {"provider_id": str(uuid4()), "service_ids": [], "added_later": True}
    event = parse_event(EventType.PROVIDER_SERVICES_CHANGED.value, payload)
    assert isinstance(event, ProviderServicesChanged)


def test_parse_event_rejects_unknown_type():
    with pytest.raises(UnknownEventError):
        parse_event("providers.provider.renamed.v1", {"provider_id": str(uuid4())})


def test_parse_event_rejects_invalid_coordinates():
    with pytest.raises(InvalidCoordinatesError):
        parse_event(EventType.PROVIDER_BECAME_SEARCHABLE.value, searchable_payload(latitude=123))


def test_parse_event_rejects_bad_ids_and_missing_fields():
    with pytest.raises(ValueError):
        parse_event(EventType.PROVIDER_UNSEARCHABLE.value, {"provider_id": "not-a-uuid"})
    with pytest.raises(UnknownEventError, match="name, latitude, longitude"):
        parse_event(EventType.PROVIDER_BECAME_SEARCHABLE.value, {"provider_id": str(uuid4())})
    with pytest.raises(UnknownEventError, match="provider_id"):
        parse_event(EventType.PROVIDER_UNSEARCHABLE.value, {"reason": "deleted"})


@pytest.mark.parametrize("overrides", [
    {"rating": -4.0},
    {"rating": 5.1},
    {"total_reviews": -9},
])
def test_parse_event_rejects_out_of_range_ratings(overrides):
    with pytest.raises(ValueError):
        parse_event(EventType.PROVIDER_BECAME_SEARCHABLE.value, searchable_payload(**overrides))
    with pytest.raises(ValueError):
        parse_event(
            EventType.PROVIDER_PROFILE_CHANGED.value,
            {"provider_id": str(uuid4()), **overrides},
        )


def test_profile_change_requires_both_coordinates():
    with pytest.raises(ValueError):
        ProviderProfileChanged(provider_id=str(uuid4()), latitude=10.0)
    assert ProviderProfileChanged(provider_id=str(uuid4())).location is None


def test_publisher_uses_prefixed_channel():
    client = RecordingRedis()
    publisher = EventPublisher("redis://unused", redis_client=client)
    event = ProviderUnsearchable(provider_id=str(uuid4()), reason="deleted")

    publisher.publish(event)

    channel, body = client.published[0]
    assert channel == "provider_events:providers.provider.unsearchable.v1"
    assert json.loads(body)["provider_id"] == event.provider_id


def test_publisher_retries_then_succeeds():
    client = RecordingRedis(failures=2)
    publisher = EventPublisher("redis://unused", redis_client=client, base_delay=0)

    publisher.publish(ProviderUnsearchable(provider_id=str(uuid4())))

    assert len(client.published) == 1


def test_publisher_raises_after_all_retries():
    client = RecordingRedis(failures=5)
    publisher = EventPublisher("redis://unused", redis_client=client, max_retries=2, base_delay=0)

    with pytest.raises(ConnectionError):
        publisher.publish(ProviderUnsearchable(provider_id=str(uuid4())))


@pytest.mark.asyncio
async def test_subscriber_dispatches_typed_events():
    subscriber = EventSubscriber("redis://unused", redis_client=object())
    received = []

    async def on_searchable(event):
        received.append(event)

    subscriber.subscribe(EventType.PROVIDER_BECAME_SEARCHABLE, on_searchable)
    payload = searchable_payload()

    await subscriber.handle_message(message(EventType.PROVIDER_BECAME_SEARCHABLE.value, payload))

    assert len(received) == 1
    assert isinstance(received[0], ProviderBecameSearchable)
    assert received[0].provider_id == payload["provider_id"]


@pytest.mark.asyncio
async def test_subscriber_survives_handler_errors_and_bad_messages():
    subscriber = EventSubscriber("redis://unused", redis_client=object())
    calls = []

    async def failing(event):
        calls.append("failing")
        raise RuntimeError("boom")

    async def succeeding(event):
        calls.append("succeeding")

    subscriber.subscribe(EventType.PROVIDER_UNSEARCHABLE, failing)
    subscriber.subscribe(EventType.PROVIDER_UNSEARCHABLE, succeeding)

    await subscriber.handle_message(
        message(EventType.PROVIDER_UNSEARCHABLE.value, {"provider_id": str(uuid4())})
    )
    await subscriber.handle_message(
        message(EventType.PROVIDER_UNSEARCHABLE.value, {"provider_id": "garbage"})
    )
    await subscriber.handle_message({
        "type": "message",
        "channel": "provider_events:providers.provider.unsearchable.v1",
        "data": "{not json",
    })

    assert calls == ["failing", "succeeding"]
