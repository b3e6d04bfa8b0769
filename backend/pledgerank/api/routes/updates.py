"""Live update stream over Server-Sent Events."""

import json
import time

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from pledgerank.api.deps import get_update_bus
from pledgerank.core.config import get_settings
from pledgerank.core.exceptions import ValidationError
from pledgerank.domain.ranking import GLOBAL_SCOPE_KEY
from pledgerank.services.notifier import UpdateBus

logger = structlog.get_logger(__name__)

router = APIRouter()


def _validate_topic(topic: str) -> str:
    if topic == GLOBAL_SCOPE_KEY:
        return topic
    prefix, _, event_id = topic.partition(":")
    if prefix != "event" or not event_id:
        raise ValidationError("topic must be 'global' or 'event:<eventId>'")
    return topic


@router.get("/stream")
async def stream_updates(
    request: Request,
    topic: str = Query(GLOBAL_SCOPE_KEY),
    bus: UpdateBus = Depends(get_update_bus),
):
    """Stream commitment, milestone and achievement updates for a topic.

    Emits ``event: connected`` once subscribed, then one frame per update
    and a heartbeat whenever the stream has been idle for
    ``sse_heartbeat_seconds``. The subscription is released when the client
    goes away.
    """
    topic = _validate_topic(topic)
    heartbeat_interval = get_settings().sse_heartbeat_seconds

    async def event_generator():
        async with bus.subscribe(topic) as subscription:
            yield f"event: connected\ndata: {json.dumps({'topic': topic})}\n\n"
            last_heartbeat = time.monotonic()

            while True:
                if await request.is_disconnected():
                    logger.debug("update_stream_disconnected", topic=topic, dropped=subscription.dropped)
                    return

                now = time.monotonic()
                if now - last_heartbeat >= heartbeat_interval:
                    yield "event: heartbeat\ndata: {}\n\n"
                    last_heartbeat = now

                update = await subscription.get(timeout=1.0)
                if update is not None:
                    yield update.to_sse()
                    last_heartbeat = time.monotonic()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
