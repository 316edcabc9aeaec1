"""
Tests for the Redis registry of open SSE connections.
"""

import pytest

from notifications.infrastructure.services import RedisNotificationChannelManager


class InMemoryRedis:
    """The handful of Redis commands the channel registry issues."""

    def __init__(self):
        self.values = {}
        self.hashes = {}
        self.sets = {}

    async def hset(self, key, field=None, value=None, mapping=None):
        bucket = self.hashes.setdefault(key, {})
        if mapping:
            bucket.update(mapping)
        if field is not None:
            bucket[field] = value

    async def expire(self, key, seconds):
        return key in self.hashes

    async def exists(self, key):
        return int(key in self.hashes or key in self.values)

    async def delete(self, key):
        removed = self.hashes.pop(key, None) or self.values.pop(key, None)
        return int(removed is not None)

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)

    async def srem(self, key, member):
        self.sets.get(key, set()).discard(member)

    async def set(self, key, value, ex=None):
        self.values[key] = value

    async def get(self, key):
        return self.values.get(key)


class _RedisService:
    def __init__(self, client):
        self.client = client

    async def _get_redis(self):
        return self.client


@pytest.fixture
def redis_client():
    return InMemoryRedis()


@pytest.fixture
def manager(redis_client):
    return RedisNotificationChannelManager(_RedisService(redis_client))


class TestRedisNotificationChannelManager:
    async def test_unregister_records_last_seen(self, manager, redis_client):
        await manager.register_channel("pharmacist-1", "abc")

        assert await manager.unregister_channel("pharmacist-1", "abc") is True

        assert await manager.get_user_last_seen("pharmacist-1") is not None
        assert redis_client.sets["notification_channels:user:pharmacist-1"] == set()

    async def test_expired_channel_still_records_last_seen(self, manager, redis_client):
        await manager.register_channel("pharmacist-1", "abc")
        del redis_client.hashes["notification_channels:abc"]

        assert await manager.update_channel_heartbeat("abc") is False
        assert await manager.unregister_channel("pharmacist-1", "abc") is False

        assert await manager.get_user_last_seen("pharmacist-1") is not None
        assert redis_client.sets["notification_channels:user:pharmacist-1"] == set()

    async def test_heartbeat_refreshes_last_ping(self, manager, redis_client):
        await manager.register_channel("pharmacist-1", "abc")
        redis_client.hashes["notification_channels:abc"]["last_ping"] = "then"

        assert await manager.update_channel_heartbeat("abc") is True
        assert redis_client.hashes["notification_channels:abc"]["last_ping"] != "then"
