"""
In-memory adapters and a controllable clock for notification tests.

They implement the application ports so rules and the dispatcher can be
exercised without a database, Redis or SendGrid.
"""

import asyncio
import dataclasses
import uuid
from datetime import UTC, date, datetime, timedelta
from typing import Any, Dict, List

from redis.exceptions import ConnectionError as RedisConnectionError

from inventory.application.ports import InventorySource
from inventory.domain.entities import ProductSnapshot
from notifications.application.ports import (
    DeliveryChannel,
    NotificationChannelManager,
    NotificationPublisher,
    NotificationRepository,
    PreferenceRepository,
    Subscription,
)
from notifications.domain.entities import (
    DeliveryFrequency,
    NotificationChannel,
    NotificationPreference,
)
from notifications.domain.exceptions import ChannelDeliveryWarning, PersistenceError
from sales.application.ports import SalesSource
from sales.domain.entities import SalesTotals


class FixedClock:
    """Clock returning a fixed UTC time until advanced."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self, clock: FixedClock | None = None):
        self.clock = clock or FixedClock()
        self.notifications = {}

    async def create(self, notification):
        stored = dataclasses.replace(
            notification,
            id=notification.id or uuid.uuid4().hex,
            created_at=notification.created_at or self.clock(),
        )
        self.notifications[stored.id] = stored
        return stored

    def _of(self, recipient_id):
        return sorted(
            (n for n in self.notifications.values() if n.recipient_id == recipient_id),
            key=lambda n: n.created_at,
            reverse=True,
        )

    async def get_recent_notifications(self, recipient_id, since):
        return [n for n in self._of(recipient_id) if n.created_at >= since]

    async def get_user_notifications(
        self, recipient_id, limit=20, offset=0, unread_only=False, family=None
    ):
        notifications = [
            n
            for n in self._of(recipient_id)
            if (not unread_only or not n.is_read) and (family is None or n.family == family)
        ]
        return notifications[offset : offset + limit]

    async def count_unread(self, recipient_id):
        return sum(1 for n in self._of(recipient_id) if not n.is_read)

    async def mark_as_read(self, notification_id, recipient_id):
        notification = self.notifications.get(notification_id)
        if notification is None or notification.recipient_id != recipient_id:
            return False
        if not notification.is_read:
            self.notifications[notification_id] = dataclasses.replace(
                notification, is_read=True, read_at=self.clock()
            )
        return True

    async def mark_all_as_read(self, recipient_id):
        unread = [n for n in self._of(recipient_id) if not n.is_read]
        for notification in unread:
            await self.mark_as_read(notification.id, recipient_id)
        return len(unread)

    async def delete(self, notification_id, recipient_id):
        notification = self.notifications.get(notification_id)
        if notification is None or notification.recipient_id != recipient_id:
            return False
        del self.notifications[notification_id]
        return True

    async def delete_all(self, recipient_id):
        owned = [n.id for n in self._of(recipient_id)]
        for notification_id in owned:
            del self.notifications[notification_id]
        return len(owned)

    async def delete_older_than(self, cutoff):
        expired = [n.id for n in self.notifications.values() if n.created_at < cutoff]
        for notification_id in expired:
            del self.notifications[notification_id]
        return len(expired)

    async def get_for_summary(self, recipient_id, unread_only, since=None):
        return [
            n
            for n in self._of(recipient_id)
            if (not unread_only or not n.is_read)
            and (since is None or n.created_at >= since)
        ]

    async def get_missed_notifications(self, recipient_id, last_timestamp, limit=50):
        missed = [
            n
            for n in reversed(self._of(recipient_id))
            if n.created_at > last_timestamp and not n.is_read
        ]
        return missed[:limit]


class SlowNotificationRepository(InMemoryNotificationRepository):
    """Repository whose history read hangs, to exercise the dispatch timeout."""

    async def get_recent_notifications(self, recipient_id, since):
        await asyncio.sleep(5)
        return []


class FlakyNotificationRepository(InMemoryNotificationRepository):
    """Repository whose first `failures` inserts raise `PersistenceError`."""

    def __init__(self, clock=None, failures: int = 1):
        super().__init__(clock)
        self.failures = failures

    async def create(self, notification):
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("Could not store notification")
        return await super().create(notification)


class UnavailableNotificationRepository(InMemoryNotificationRepository):
    async def get_recent_notifications(self, recipient_id, since):
        raise PersistenceError("Could not read notification history")

    async def get_user_notifications(self, *args, **kwargs):
        raise PersistenceError("Could not list notifications")


class InMemoryPreferenceRepository(PreferenceRepository):
    def __init__(self, *preferences: NotificationPreference):
        self.preferences = {p.recipient_id: p for p in preferences}

    async def get(self, recipient_id):
        return self.preferences.get(
            recipient_id, NotificationPreference(recipient_id=recipient_id)
        )

    async def save(self, preference):
        self.preferences[preference.recipient_id] = preference
        return preference

    async def reset(self, recipient_id):
        self.preferences.pop(recipient_id, None)
        return NotificationPreference(recipient_id=recipient_id)

    async def list_by_frequency(self, frequency):
        return [
            p
            for p in self.preferences.values()
            if p.frequency == DeliveryFrequency(frequency)
        ]


class FakeSubscription(Subscription):
    """Yields the queued messages, then ends as if the client disconnected.

    A `delay` holds each message back, to simulate an idle stream.
    """

    def __init__(self, channels: List[str], messages: List[str], delay: float = 0):
        self.channels = channels
        self.messages = list(messages)
        self.delay = delay
        self.closed = False

    async def _messages(self):
        for message in self.messages:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.closed:
                break
            yield message

    def __aiter__(self):
        return self._messages()

    async def close(self):
        self.closed = True


class FakePublisher(NotificationPublisher):
    def __init__(
        self,
        live_messages: List[str] | None = None,
        fail: bool = False,
        message_delay: float = 0,
    ):
        self.published: List[tuple[str, Dict[str, Any]]] = []
        self.subscriptions: List[FakeSubscription] = []
        self.live_messages = live_messages or []
        self.message_delay = message_delay
        self.fail = fail
        self.events: List[str] = []

    async def publish(self, channel, payload):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self.published.append((channel, payload))

    async def subscribe(self, channels):
        self.events.append("subscribe")
        subscription = FakeSubscription(
            channels, self.live_messages, delay=self.message_delay
        )
        self.subscriptions.append(subscription)
        return subscription


class FakeChannelManager(NotificationChannelManager):
    def __init__(self, last_seen: Dict[str, datetime] | None = None, events=None):
        self.channels: Dict[str, NotificationChannel] = {}
        self.last_seen = dict(last_seen or {})
        self.heartbeats = 0
        self.unregistered: List[str] = []
        self.events = events if events is not None else []

    async def register_channel(self, recipient_id, channel_id):
        channel = NotificationChannel(recipient_id=recipient_id, channel_id=channel_id)
        self.channels[channel_id] = channel
        return channel

    async def unregister_channel(self, recipient_id, channel_id):
        self.unregistered.append(channel_id)
        self.last_seen[recipient_id] = datetime.now(tz=UTC)
        return self.channels.pop(channel_id, None) is not None

    async def update_channel_heartbeat(self, channel_id):
        self.heartbeats += 1
        return channel_id in self.channels

    async def get_user_last_seen(self, recipient_id):
        self.events.append("last_seen")
        return self.last_seen.get(recipient_id)


class FakeChannel(DeliveryChannel):
    """Delivery channel recording what it delivered."""

    def __init__(self, name: str, error: str | None = None, skip: str | None = None):
        self.name = name
        self.error = error
        self.skip = skip
        self.delivered = []

    def skip_reason(self, notification, preference):
        return self.skip

    async def deliver(self, notification, preference):
        if self.error:
            raise ChannelDeliveryWarning(self.name, self.error)
        self.delivered.append(notification)


class FakeEmailChannel:
    """Digest e-mail side of the SendGrid channel."""

    def __init__(self):
        self.digests = []

    def can_email(self, preference):
        return bool(preference.email_notifications and preference.email_address)

    async def deliver_digest(self, preference, notifications, frequency):
        self.digests.append((preference.recipient_id, list(notifications), frequency))


class FakeInventorySource(InventorySource):
    def __init__(self, *products: ProductSnapshot):
        self.products = list(products)

    async def get_stocked_products(self):
        return [p for p in self.products if p.stock > 0]

    async def get_expiring_products(self, today: date, within_days: int):
        horizon = today + timedelta(days=within_days)
        return sorted(
            (
                p
                for p in self.products
                if p.stock > 0 and p.expiry_date and today <= p.expiry_date <= horizon
            ),
            key=lambda p: p.expiry_date,
        )


class FakeSalesSource(SalesSource):
    """Sales source with fixed totals, recording the requested periods."""

    def __init__(self, transaction_count: int = 0, total_revenue: float = 0.0):
        self.transaction_count = transaction_count
        self.total_revenue = total_revenue
        self.periods = []

    async def get_sales_totals(self, first_day, last_day):
        self.periods.append((first_day, last_day))
        return SalesTotals(
            first_day=first_day,
            last_day=last_day,
            transaction_count=self.transaction_count,
            total_revenue=self.total_revenue,
        )
