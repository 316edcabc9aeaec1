import asyncio
import dataclasses
import json
import uuid
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Callable, Dict, List, Mapping, Tuple

from loguru import logger
from redis.exceptions import RedisError

from core.infrastructure.factory import get_data_sanitizer

from ..domain.builder import build_notification
from ..domain.entities import (
    DashboardSummary,
    DeliveryFrequency,
    DispatchResult,
    KindFamily,
    Notification,
    NotificationKind,
    NotificationPreference,
    NotificationPriority,
    SummaryWindow,
)
from ..domain.summary import summarize
from .dispatcher import NotificationDispatcher, utc_now
from .ports import (
    NotificationChannelManager,
    NotificationPublisher,
    NotificationRepository,
    PreferenceRepository,
)

DIGEST_WINDOWS = {
    DeliveryFrequency.HOURLY: timedelta(hours=1),
    DeliveryFrequency.DAILY: timedelta(days=1),
}
MISSED_NOTIFICATIONS_FALLBACK = timedelta(hours=24)
SSE_HEARTBEAT_INTERVAL = 30.0


def user_channel(recipient_id: str) -> str:
    return f"user:{recipient_id}"


class GenerateNotificationRule:
    """Business logic for the single pipeline entry point.

    Builds the notification for `kind`, loads the recipient's preferences and
    hands the candidate to the dispatcher.
    """

    def __init__(
        self,
        kind: NotificationKind | str,
        recipient_id: str,
        context: Mapping[str, Any] | None,
        dispatcher: NotificationDispatcher,
        preference_repository: PreferenceRepository,
    ) -> None:
        self.kind = kind
        self.recipient_id = recipient_id
        self.context = context or {}
        self.dispatcher = dispatcher
        self.preference_repository = preference_repository

    async def execute(self) -> DispatchResult:
        """Execute the notification pipeline.

        Returns
        -------
        DispatchResult
            Outcome of the dispatch.

        Raises
        ------
        UnknownKindError
            If `kind` has no catalog rule.
        PersistenceError
            If the notification could not be stored.
        """
        candidate = build_notification(self.kind, self.recipient_id, self.context)
        preference = await self.preference_repository.get(self.recipient_id)
        return await self.dispatcher.dispatch(candidate, preference)


class GetDashboardSummaryRule:
    """Business logic for the dashboard notification counts."""

    def __init__(
        self,
        recipient_id: str,
        notification_repository: NotificationRepository,
        window: SummaryWindow = SummaryWindow.UNREAD,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository
        self.window = SummaryWindow(window)
        self.retention_days = retention_days
        self.clock = clock

    async def execute(self) -> DashboardSummary:
        if self.window == SummaryWindow.UNREAD:
            notifications = await self.notification_repository.get_for_summary(
                self.recipient_id, unread_only=True
            )
        else:
            notifications = await self.notification_repository.get_for_summary(
                self.recipient_id,
                unread_only=False,
                since=self.clock() - timedelta(days=self.retention_days),
            )
        return summarize(notifications)


class GetActivePreferencesRule:
    def __init__(
        self, recipient_id: str, preference_repository: PreferenceRepository
    ) -> None:
        self.recipient_id = recipient_id
        self.preference_repository = preference_repository

    async def execute(self) -> NotificationPreference:
        return await self.preference_repository.get(self.recipient_id)


class UpdatePreferencesRule:
    """Business logic for a partial preference update by the owning recipient."""

    def __init__(
        self,
        recipient_id: str,
        changes: Dict[str, Any],
        preference_repository: PreferenceRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.recipient_id = recipient_id
        self.changes = {
            key: value
            for key, value in changes.items()
            if key not in ("recipient_id", "updated_at")
        }
        self.preference_repository = preference_repository
        self.clock = clock

    async def execute(self) -> NotificationPreference:
        """Apply the changes on top of the current preferences.

        Returns
        -------
        NotificationPreference
            Saved preferences.

        Raises
        ------
        ValidationError
            If a changed value is invalid (e.g. malformed quiet hours).
        """
        current = await self.preference_repository.get(self.recipient_id)
        updated = dataclasses.replace(current, **self.changes, updated_at=self.clock())
        saved = await self.preference_repository.save(updated)
        logger.info(
            f"⚙️ Updated notification preferences of {self.recipient_id}: "
            f"{sorted(self.changes)}"
        )
        return saved


class ResetPreferencesRule:
    def __init__(
        self, recipient_id: str, preference_repository: PreferenceRepository
    ) -> None:
        self.recipient_id = recipient_id
        self.preference_repository = preference_repository

    async def execute(self) -> NotificationPreference:
        logger.info(f"⚙️ Resetting notification preferences of {self.recipient_id}")
        return await self.preference_repository.reset(self.recipient_id)


class GetUserNotificationsRule:
    """Business logic for retrieving a recipient's notifications."""

    def __init__(
        self,
        recipient_id: str,
        notification_repository: NotificationRepository,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
        family: KindFamily | None = None,
    ) -> None:
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository
        self.limit = limit
        self.offset = offset
        self.unread_only = unread_only
        self.family = family

    async def execute(self) -> Tuple[List[Notification], int]:
        """Execute the notification retrieval process.

        Returns
        -------
        Tuple[List[Notification], int]
            The requested page and the recipient's total unread count.
        """
        notifications = await self.notification_repository.get_user_notifications(
            recipient_id=self.recipient_id,
            limit=self.limit,
            offset=self.offset,
            unread_only=self.unread_only,
            family=self.family,
        )
        unread_count = await self.notification_repository.count_unread(
            self.recipient_id
        )
        return notifications, unread_count


class MarkNotificationReadRule:
    """Business logic for marking one notification as read; idempotent."""

    def __init__(
        self,
        notification_id: str,
        recipient_id: str,
        notification_repository: NotificationRepository,
    ) -> None:
        self.notification_id = notification_id
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository

    async def execute(self) -> bool:
        return await self.notification_repository.mark_as_read(
            notification_id=self.notification_id,
            recipient_id=self.recipient_id,
        )


class MarkAllNotificationsReadRule:
    def __init__(
        self, recipient_id: str, notification_repository: NotificationRepository
    ) -> None:
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository

    async def execute(self) -> int:
        updated = await self.notification_repository.mark_all_as_read(
            self.recipient_id
        )
        logger.info(f"📬 Marked {updated} notification(s) read for {self.recipient_id}")
        return updated


class DeleteNotificationRule:
    def __init__(
        self,
        notification_id: str,
        recipient_id: str,
        notification_repository: NotificationRepository,
    ) -> None:
        self.notification_id = notification_id
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository

    async def execute(self) -> bool:
        return await self.notification_repository.delete(
            self.notification_id, self.recipient_id
        )


class ClearAllNotificationsRule:
    """Delete every notification of a recipient; clearing an empty inbox returns 0."""

    def __init__(
        self, recipient_id: str, notification_repository: NotificationRepository
    ) -> None:
        self.recipient_id = recipient_id
        self.notification_repository = notification_repository

    async def execute(self) -> int:
        cleared = await self.notification_repository.delete_all(self.recipient_id)
        logger.info(f"🗑️ Cleared {cleared} notification(s) of {self.recipient_id}")
        return cleared


class PurgeExpiredNotificationsRule:
    """Delete notifications older than the retention window, read or not."""

    def __init__(
        self,
        notification_repository: NotificationRepository,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.notification_repository = notification_repository
        self.retention_days = retention_days
        self.clock = clock

    async def execute(self) -> int:
        cutoff = self.clock() - timedelta(days=self.retention_days)
        purged = await self.notification_repository.delete_older_than(cutoff)
        logger.info(f"🧹 Purged {purged} notification(s) created before {cutoff:%Y-%m-%d %H:%M}")
        return purged


class DeliverDigestRule:
    """Deliver the periodic digest to recipients with a digest frequency.

    Non-critical notifications of those recipients were persisted without being
    pushed; the digest sums up the unread ones created during the last period.
    Critical notifications were already pushed and are left out.
    """

    def __init__(
        self,
        frequency: DeliveryFrequency,
        notification_repository: NotificationRepository,
        preference_repository: PreferenceRepository,
        publisher: NotificationPublisher,
        email_channel=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if frequency not in DIGEST_WINDOWS:
            raise ValueError(f"No digest for {frequency} delivery")
        self.frequency = DeliveryFrequency(frequency)
        self.notification_repository = notification_repository
        self.preference_repository = preference_repository
        self.publisher = publisher
        self.email_channel = email_channel
        self.clock = clock

    async def execute(self) -> int:
        """Deliver one digest per recipient with pending notifications.

        Returns
        -------
        int
            Number of recipients a digest was delivered to.
        """
        since = self.clock() - DIGEST_WINDOWS[self.frequency]
        preferences = await self.preference_repository.list_by_frequency(
            self.frequency
        )

        delivered = 0
        for preference in preferences:
            recent = await self.notification_repository.get_recent_notifications(
                preference.recipient_id, since
            )
            pending = [
                n
                for n in recent
                if not n.is_read
                and n.priority != NotificationPriority.CRITICAL
                and preference.allows_family(n.family)
            ]
            if not pending:
                continue

            await self._deliver(preference, pending)
            delivered += 1

        logger.info(f"📨 Delivered {self.frequency} digest to {delivered} recipient(s)")
        return delivered

    async def _deliver(
        self, preference: NotificationPreference, pending: List[Notification]
    ) -> None:
        if preference.in_app_notifications:
            try:
                await self.publisher.publish(
                    user_channel(preference.recipient_id),
                    {
                        "type": "digest",
                        "frequency": self.frequency.value,
                        "count": len(pending),
                        "notifications": [n.to_payload() for n in pending],
                    },
                )
            except RedisError as e:
                logger.warning(
                    f"⚠️ In-app {self.frequency.value} digest for {preference.recipient_id} "
                    f"failed: {type(e).__name__}"
                )

        if self.email_channel is not None and self.email_channel.can_email(preference):
            await self.email_channel.deliver_digest(preference, pending, self.frequency)


class EstablishSSEConnectionRule:
    """Business logic for a recipient's server-sent events stream.

    Subscribes before replaying missed notifications so nothing published in
    between is lost; the replay covers unread notifications created since the
    recipient's last connection (or the last 24 hours). An idle stream gets a
    comment frame every `heartbeat_interval` seconds, which also keeps the
    connection registered.
    """

    def __init__(
        self,
        recipient_id: str,
        publisher: NotificationPublisher,
        channel_manager: NotificationChannelManager,
        notification_repository: NotificationRepository,
        clock: Callable[[], datetime] = utc_now,
        heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
    ) -> None:
        self.recipient_id = recipient_id
        self.publisher = publisher
        self.channel_manager = channel_manager
        self.notification_repository = notification_repository
        self.clock = clock
        self.heartbeat_interval = heartbeat_interval
        self.channel_id = uuid.uuid4().hex

    async def execute(self) -> AsyncGenerator[str, None]:
        """Yield SSE-formatted events until the client disconnects.

        Yields
        ------
        str
            `data: ...` frames: a connection event, replayed notifications,
            then live events. `: ping` comments fill idle periods.
        """
        sanitizer = await get_data_sanitizer()

        await self.channel_manager.register_channel(
            recipient_id=self.recipient_id, channel_id=self.channel_id
        )
        logger.info(
            f"🔌 Established SSE connection for {self.recipient_id} on channel {self.channel_id}"
        )

        try:
            subscription = await self.publisher.subscribe(
                [user_channel(self.recipient_id), "broadcast"]
            )
            async with subscription:
                yield self._frame(
                    {
                        "type": "connection",
                        "status": "connected",
                        "channel_id": self.channel_id,
                    }
                )

                for notification in await self._missed_notifications():
                    yield self._frame(
                        {
                            **notification.to_payload(),
                            "type": "missed_notification",
                            "is_historical": True,
                        }
                    )

                messages = aiter(subscription)
                pending = None
                try:
                    while True:
                        if pending is None:
                            pending = asyncio.ensure_future(anext(messages))
                        done, _ = await asyncio.wait({pending}, timeout=self.heartbeat_interval)
                        if not done:
                            await self._keep_alive()
                            yield ": ping\n\n"
                            continue

                        try:
                            message = pending.result()
                        except StopAsyncIteration:
                            break
                        finally:
                            pending = None

                        logger.debug(f"SSE event: {sanitizer.sanitize_for_logging(message)}")
                        await self.channel_manager.update_channel_heartbeat(self.channel_id)
                        yield f"data: {message}\n\n"
                finally:
                    if pending is not None:
                        pending.cancel()

        finally:
            await self.channel_manager.unregister_channel(self.recipient_id, self.channel_id)
            logger.info(f"🔌 Closed SSE connection for {self.recipient_id}")

    async def _keep_alive(self) -> None:
        if not await self.channel_manager.update_channel_heartbeat(self.channel_id):
            logger.debug(f"Channel {self.channel_id} expired, registering it again")
            await self.channel_manager.register_channel(
                recipient_id=self.recipient_id, channel_id=self.channel_id
            )

    async def _missed_notifications(self) -> List[Notification]:
        last_seen = await self.channel_manager.get_user_last_seen(self.recipient_id)
        if last_seen is None:
            last_seen = self.clock() - MISSED_NOTIFICATIONS_FALLBACK
            logger.debug(
                f"No last-seen time for {self.recipient_id}, replaying the last 24 hours"
            )

        return await self.notification_repository.get_missed_notifications(
            recipient_id=self.recipient_id, last_timestamp=last_seen
        )

    def _frame(self, payload: Dict[str, Any]) -> str:
        return f"data: {json.dumps(payload, default=str)}\n\n"
