"""Cross-process escalation signals via Redis pub/sub.

When several API processes share a database, an acknowledgment or a
resolution handled by one process must wake the escalation run that
lives in another. Each process publishes those events on one channel
and dispatches what it hears to its local engine.

Graceful degradation: if Redis is unavailable, publishing logs a warning
and the waiters still observe the change on their next store poll.
"""

import asyncio
import json
import uuid
from collections.abc import Callable

import redis.asyncio as aioredis

from service_monitor.config import settings
from service_monitor.logging_config import get_logger

logger = get_logger(__name__)

RECONNECT_DELAY_SECONDS = 5.0

MESSAGE_ACKNOWLEDGED = "acknowledged"
MESSAGE_RESOLVED = "resolved"


def create_redis_client() -> aioredis.Redis:
    """Create the Redis client used for escalation signals."""
    return aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
    )


class RedisSignalRelay:
    """Publishes and receives escalation signals on a Redis channel."""

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        on_acknowledged: Callable[[uuid.UUID, uuid.UUID], object],
        on_resolved: Callable[[uuid.UUID], object],
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._on_acknowledged = on_acknowledged
        self._on_resolved = on_resolved
        # Messages from this process were already applied locally
        self._origin = uuid.uuid4().hex
        self._listener: asyncio.Task | None = None

    async def _publish(self, payload: dict) -> None:
        payload["origin"] = self._origin
        try:
            await self._redis.publish(self._channel, json.dumps(payload))
        except aioredis.RedisError as e:
            logger.warning(
                "Failed to publish escalation signal",
                signal=payload.get("type"),
                error=str(e),
            )

    async def publish_acknowledged(
        self,
        alert_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        await self._publish(
            {
                "type": MESSAGE_ACKNOWLEDGED,
                "alert_id": str(alert_id),
                "user_id": str(user_id),
            }
        )

    async def publish_resolved(self, alert_id: uuid.UUID) -> None:
        await self._publish({"type": MESSAGE_RESOLVED, "alert_id": str(alert_id)})

    def handle_message(self, data: str) -> bool:
        """Dispatch one raw pub/sub payload.

        Returns:
            True if the message was applied, False if it was ignored.
        """
        try:
            payload = json.loads(data)
            message_type = payload["type"]
            alert_id = uuid.UUID(payload["alert_id"])
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed escalation signal", data=str(data)[:200])
            return False

        if payload.get("origin") == self._origin:
            return False

        if message_type == MESSAGE_ACKNOWLEDGED:
            try:
                user_id = uuid.UUID(payload["user_id"])
            except (ValueError, KeyError, TypeError):
                logger.warning("Ignoring acknowledgment signal without user")
                return False
            self._on_acknowledged(alert_id, user_id)
            return True

        if message_type == MESSAGE_RESOLVED:
            self._on_resolved(alert_id)
            return True

        logger.debug("Ignoring unknown escalation signal", signal=message_type)
        return False

    async def _listen(self) -> None:
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self._channel)
                logger.info("Listening for escalation signals", channel=self._channel)
                async for message in pubsub.listen():
                    if message.get("type") == "message":
                        self.handle_message(message["data"])
            except aioredis.RedisError as e:
                logger.warning(
                    "Escalation signal listener lost Redis connection",
                    error=str(e),
                    retry_in_seconds=RECONNECT_DELAY_SECONDS,
                )
            finally:
                await pubsub.aclose()
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)

    def start(self) -> None:
        """Start the background listener task."""
        if self._listener is None:
            self._listener = asyncio.create_task(
                self._listen(), name="escalation-signal-listener"
            )

    async def stop(self) -> None:
        """Stop the listener and close the Redis client."""
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._redis.aclose()
