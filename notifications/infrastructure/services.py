import json
from datetime import UTC, datetime, timedelta
from typing import Any, AsyncIterator, Dict, List

from loguru import logger
from redis.asyncio.client import PubSub

from core.infrastructure.services import RedisService

from ..application.ports import (
    NotificationChannelManager,
    NotificationPublisher,
    Subscription,
)
from ..domain.entities import NotificationChannel

CHANNEL_PREFIX = "notifications"
CHANNEL_TTL_SECONDS = 3600
LAST_SEEN_TTL = timedelta(days=30)


class RedisNotificationChannelManager(NotificationChannelManager):
    """Redis-based registry of open SSE connections.

    Each connection is a hash expiring after an hour without heartbeat; each
    recipient has a set of connection ids and a last-seen timestamp written
    when a connection closes, even if its hash already expired.
    """

    def __init__(self, redis_service: RedisService):
        self.redis_service = redis_service
        self._channel_prefix = "notification_channels"

    def _channel_key(self, channel_id: str) -> str:
        return f"{self._channel_prefix}:{channel_id}"

    def _user_channels_key(self, recipient_id: str) -> str:
        return f"{self._channel_prefix}:user:{recipient_id}"

    def _last_seen_key(self, recipient_id: str) -> str:
        return f"{self._channel_prefix}:last_seen:{recipient_id}"

    async def register_channel(
        self, recipient_id: str, channel_id: str
    ) -> NotificationChannel:
        """Register a new connection in Redis.

        Parameters
        ----------
        recipient_id : str
            Recipient the connection streams for
        channel_id : str
            Unique connection identifier

        Returns
        -------
        NotificationChannel
            Registered channel
        """
        redis_client = await self.redis_service._get_redis()
        now = datetime.now(tz=UTC)

        await redis_client.hset(
            self._channel_key(channel_id),
            mapping={
                "recipient_id": recipient_id,
                "channel_id": channel_id,
                "is_active": "true",
                "created_at": now.isoformat(),
                "last_ping": now.isoformat(),
            },
        )
        await redis_client.expire(self._channel_key(channel_id), CHANNEL_TTL_SECONDS)
        await redis_client.sadd(self._user_channels_key(recipient_id), channel_id)

        logger.debug(f"Registered channel {channel_id} for {recipient_id}")
        return NotificationChannel(
            recipient_id=recipient_id, channel_id=channel_id, created_at=now
        )

    async def unregister_channel(self, recipient_id: str, channel_id: str) -> bool:
        redis_client = await self.redis_service._get_redis()

        await redis_client.srem(self._user_channels_key(recipient_id), channel_id)
        await redis_client.set(
            self._last_seen_key(recipient_id),
            datetime.now(tz=UTC).isoformat(),
            ex=LAST_SEEN_TTL,
        )
        removed = await redis_client.delete(self._channel_key(channel_id))

        logger.debug(f"Unregistered channel {channel_id}")
        return bool(removed)

    async def update_channel_heartbeat(self, channel_id: str) -> bool:
        redis_client = await self.redis_service._get_redis()

        channel_key = self._channel_key(channel_id)
        if not await redis_client.exists(channel_key):
            return False

        await redis_client.hset(channel_key, "last_ping", datetime.now(tz=UTC).isoformat())
        await redis_client.expire(channel_key, CHANNEL_TTL_SECONDS)
        return True

    async def get_user_last_seen(self, recipient_id: str) -> datetime | None:
        redis_client = await self.redis_service._get_redis()

        last_seen = await redis_client.get(self._last_seen_key(recipient_id))
        return datetime.fromisoformat(last_seen) if last_seen else None


class RedisSubscription(Subscription):
    """Subscription handle over a Redis pub/sub connection."""

    def __init__(self, pubsub: PubSub, channels: List[str]) -> None:
        self._pubsub = pubsub
        self._channels = channels
        self._closed = False

    async def _messages(self) -> AsyncIterator[str]:
        async for message in self._pubsub.listen():
            if self._closed:
                break
            if message["type"] == "message":
                yield message["data"]

    def __aiter__(self) -> AsyncIterator[str]:
        return self._messages()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pubsub.unsubscribe(*self._channels)
        await self._pubsub.aclose()


class RedisNotificationPublisher(NotificationPublisher):
    """Redis-based implementation of notification publishing using pub/sub."""

    def __init__(self, redis_service: RedisService):
        self.redis_service = redis_service

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        """Publish a payload to a Redis channel.

        Parameters
        ----------
        channel : str
            Channel name (e.g., "user:pharmacist-1" or "broadcast")
        payload : Dict[str, Any]
            Event to publish, stamped with a timestamp if it has none
        """
        redis_client = await self.redis_service._get_redis()

        message = {"timestamp": datetime.now(tz=UTC).isoformat(), **payload}
        await redis_client.publish(f"{CHANNEL_PREFIX}:{channel}", json.dumps(message, default=str))

    async def subscribe(self, channels: List[str]) -> RedisSubscription:
        """Subscribe to notification channels.

        Parameters
        ----------
        channels : List[str]
            List of channel names to subscribe to

        Returns
        -------
        RedisSubscription
            Handle yielding JSON-encoded messages until closed
        """
        redis_client = await self.redis_service._get_redis()
        pubsub = redis_client.pubsub()

        prefixed_channels = [f"{CHANNEL_PREFIX}:{channel}" for channel in channels]
        await pubsub.subscribe(*prefixed_channels)

        return RedisSubscription(pubsub, prefixed_channels)
