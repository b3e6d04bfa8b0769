"""Real-time update fan-out.

UpdateBus is the in-process hub: every subscriber owns a bounded queue, a
slow subscriber loses its oldest updates instead of stalling publishers.
Notifier puts the bus behind a Redis pub/sub relay so updates reach
subscribers connected to other instances.

Delivery is at-least-once to connected subscribers only. A client that
reconnects may have missed updates in between.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from pledgerank.core.config import get_settings
from pledgerank.db.redis import redis_key
from pledgerank.schemas.updates import UpdateEvent

logger = structlog.get_logger(__name__)

RELAY_CHANNEL = redis_key("updates")


class Subscription:
    """One subscriber's bounded mailbox on a topic."""

    def __init__(self, topic: str, maxsize: int):
        self.topic = topic
        self.dropped = 0
        self._queue: asyncio.Queue[UpdateEvent] = asyncio.Queue(maxsize=maxsize)

    def deliver(self, event: UpdateEvent) -> None:
        """Enqueue without blocking, evicting the oldest update when full."""
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> UpdateEvent | None:
        """Next update, or None if nothing arrived within timeout."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> UpdateEvent:
        return await self._queue.get()


class UpdateBus:
    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or get_settings().subscriber_queue_size
        self._subscribers: dict[str, set[Subscription]] = {}

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncGenerator[Subscription, None]:
        """Register for a topic for the duration of the block.

        Leaving the block (normally, by error, or by cancellation) always
        unregisters.
        """
        subscription = Subscription(topic, self.queue_size)
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug("update_subscribed", topic=topic, subscribers=len(self._subscribers[topic]))
        try:
            yield subscription
        finally:
            subscribers = self._subscribers.get(topic)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[topic]
            if subscription.dropped:
                logger.info("update_subscriber_dropped", topic=topic, dropped=subscription.dropped)

    def publish(self, event: UpdateEvent) -> int:
        """Deliver to every local subscriber of the event's topic.

        Returns:
            Number of subscribers the event was handed to
        """
        subscribers = list(self._subscribers.get(event.topic, ()))
        for subscription in subscribers:
            subscription.deliver(event)
        return len(subscribers)

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, ()))
        return sum(len(s) for s in self._subscribers.values())


class Notifier:
    """Publishes to the local bus and relays through Redis to other instances.

    Publishing never raises: a broken relay is logged and local subscribers
    still get the update.
    """

    def __init__(self, bus: UpdateBus, redis: Redis | None = None, relay_enabled: bool | None = None):
        self.bus = bus
        self.redis = redis
        if relay_enabled is None:
            relay_enabled = get_settings().redis_relay_enabled
        self.relay_enabled = relay_enabled and redis is not None
        self.instance_id = uuid.uuid4().hex
        self._relay_task: asyncio.Task | None = None

    async def publish(self, event: UpdateEvent) -> None:
        delivered = self.bus.publish(event)
        logger.debug("update_published", topic=event.topic, type=event.type.value, local_subscribers=delivered)

        if not self.relay_enabled:
            return
        message = json.dumps({"origin": self.instance_id, "event": event.model_dump(mode="json")})
        try:
            await self.redis.publish(RELAY_CHANNEL, message)
        except RedisError as exc:
            logger.warning("update_relay_publish_failed", topic=event.topic, error=str(exc))

    def _dispatch_remote(self, raw: str) -> None:
        try:
            message = json.loads(raw)
            if message.get("origin") == self.instance_id:
                return
            event = UpdateEvent.model_validate(message["event"])
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, PydanticValidationError) as exc:
            logger.warning("update_relay_bad_message", error=str(exc))
            return
        self.bus.publish(event)

    async def run_relay(self) -> None:
        """Forward relay messages from other instances into the local bus."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(RELAY_CHANNEL)
        logger.info("update_relay_started", channel=RELAY_CHANNEL, instance_id=self.instance_id)
        try:
            while True:
                try:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except RedisError as exc:
                    logger.warning("update_relay_receive_failed", error=str(exc))
                    await asyncio.sleep(1.0)
                    continue
                if message and message["type"] == "message":
                    self._dispatch_remote(message["data"])
        finally:
            await pubsub.unsubscribe(RELAY_CHANNEL)
            await pubsub.aclose()

    def start_relay(self) -> asyncio.Task | None:
        if not self.relay_enabled or self._relay_task is not None:
            return self._relay_task
        self._relay_task = asyncio.create_task(self.run_relay(), name="update-relay")
        return self._relay_task

    async def stop_relay(self) -> None:
        task, self._relay_task = self._relay_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
