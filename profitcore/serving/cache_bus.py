"""
Redis Invalidation Bus

Broadcasts cache invalidation events between engine instances with:
- Redis pub/sub on a single configurable channel
- JSON event payloads tagged with the publishing instance
- A listener task applying remote events to the local dispatcher

Only invalidations travel over the bus; cached values stay process-local.
"""

import asyncio
import json
import uuid
from typing import Optional, Set

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from profitcore.config.settings import RedisSettings
from profitcore.serving.invalidation import InvalidationEvent, ProfitCacheInvalidationService

logger = structlog.get_logger(__name__)


class RedisInvalidationBus:
    """
    Pub/sub fan-out of invalidation events.

    Example:
        bus = RedisInvalidationBus.from_settings(settings.redis)
        invalidation = ProfitCacheInvalidationService(cache, bus=bus)
        await bus.start(invalidation)
    """

    def __init__(self, client: Redis, channel: str, instance_id: Optional[str] = None):
        self.client = client
        self.channel = channel
        self.instance_id = instance_id or uuid.uuid4().hex
        self._listener: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisInvalidationBus":
        client = Redis.from_url(
            settings.get_url(),
            socket_timeout=settings.socket_timeout,
            decode_responses=True,
        )
        return cls(client, settings.invalidation_channel)

    def _encode(self, event: InvalidationEvent) -> str:
        payload = json.loads(event.to_json())
        payload["origin"] = self.instance_id
        return json.dumps(payload)

    async def publish(self, event: InvalidationEvent) -> int:
        """Publish an event; returns the number of subscribers that received it"""
        try:
            receivers = await self.client.publish(self.channel, self._encode(event))
            logger.debug("Invalidation published", event_type=event.type.value, tenant_id=event.tenant_id)
            return receivers
        except RedisError as e:
            # Local invalidation already happened; remote instances fall back to TTL
            logger.error("Failed to publish invalidation", event_type=event.type.value, error=str(e))
            return 0

    def publish_nowait(self, event: InvalidationEvent) -> None:
        """Schedule publish() on the running loop; dropped with a warning outside one"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, invalidation not broadcast", event_type=event.type.value)
            return
        task = loop.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def handle_message(self, raw: str, dispatcher: ProfitCacheInvalidationService) -> bool:
        """
        Apply one received message to the local dispatcher.

        Returns:
            True if the event was applied; own and malformed messages are skipped
        """
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Malformed invalidation message", error=str(e))
            return False
        if payload.get("origin") == self.instance_id:
            return False
        try:
            event = InvalidationEvent.from_dict(payload)
        except (KeyError, ValueError) as e:
            logger.warning("Unknown invalidation event", error=str(e), payload=payload)
            return False
        dispatcher.apply(event)
        return True

    async def listen(self, dispatcher: ProfitCacheInvalidationService) -> None:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Listening for invalidations", channel=self.channel, instance_id=self.instance_id)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.handle_message(message["data"], dispatcher)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def start(self, dispatcher: ProfitCacheInvalidationService) -> None:
        await self.client.ping()
        self._listener = asyncio.create_task(self.listen(dispatcher))

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.client.aclose()
        logger.info("Invalidation bus stopped")
