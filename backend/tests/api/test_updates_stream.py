"""Tests for the SSE update stream endpoint."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pledgerank.api.routes.updates import _validate_topic, stream_updates
from pledgerank.core.exceptions import ValidationError
from pledgerank.schemas.updates import UpdateEvent, UpdateType
from pledgerank.services.notifier import UpdateBus

pytestmark = pytest.mark.unit


def disconnecting_request(after_checks: int) -> MagicMock:
    """Request whose client goes away after ``after_checks`` polls."""
    request = MagicMock()
    request.is_disconnected = AsyncMock(side_effect=[False] * after_checks + [True])
    return request


@pytest.mark.parametrize("topic", ["global", "event:evt-1"])
def test_valid_topics(topic):
    assert _validate_topic(topic) == topic


@pytest.mark.parametrize("topic", ["", "event:", "events:evt-1", "evt-1"])
def test_invalid_topics(topic):
    with pytest.raises(ValidationError):
        _validate_topic(topic)


async def test_stream_headers_and_connected_frame():
    bus = UpdateBus(queue_size=5)
    response = await stream_updates(disconnecting_request(0), topic="event:evt-1", bus=bus)

    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"

    frames = [frame async for frame in response.body_iterator]
    assert frames == ['event: connected\ndata: {"topic": "event:evt-1"}\n\n']
    assert bus.subscriber_count() == 0


async def test_stream_forwards_published_updates():
    bus = UpdateBus(queue_size=5)
    response = await stream_updates(disconnecting_request(1), topic="event:evt-1", bus=bus)
    frames = response.body_iterator

    connected = await frames.__anext__()
    assert connected.startswith("event: connected")
    assert bus.subscriber_count("event:evt-1") == 1

    update = UpdateEvent(type=UpdateType.MILESTONE, topic="event:evt-1", payload={"title": "Milestone reached: 2"})
    bus.publish(update)

    assert await frames.__anext__() == update.to_sse()
    with pytest.raises(StopAsyncIteration):
        await frames.__anext__()
    assert bus.subscriber_count() == 0


def test_stream_rejects_bad_topic_over_http(api_client):
    response = api_client.get("/api/updates/stream", params={"topic": "nope"})

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
