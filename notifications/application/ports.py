from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List

from ..domain.entities import (
    DeliveryFrequency,
    KindFamily,
    Notification,
    NotificationChannel,
    NotificationPreference,
)


class NotificationRepository(ABC):
    """Abstract base class for notification storage.

    Every method raises `PersistenceError` when the underlying store fails.
    """

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Store a new notification.

        Parameters
        ----------
        notification : Notification
            Notification to insert.

        Returns
        -------
        Notification
            Stored notification with `id` and `created_at` assigned.
        """
        pass

    @abstractmethod
    async def get_recent_notifications(
        self, recipient_id: str, since: datetime
    ) -> List[Notification]:
        """Notifications of a recipient created at or after `since`, newest first."""
        pass

    @abstractmethod
    async def get_user_notifications(
        self,
        recipient_id: str,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
        family: KindFamily | None = None,
    ) -> List[Notification]:
        """Retrieve a page of a recipient's notifications, newest first.

        Parameters
        ----------
        recipient_id : str
            Recipient whose notifications to list.
        limit : int
            Maximum number of notifications to return.
        offset : int
            Number of notifications to skip.
        unread_only : bool
            If True, return only unread notifications.
        family : KindFamily | None
            Restrict to one kind family.

        Returns
        -------
        List[Notification]
            Notifications matching the criteria.
        """
        pass

    @abstractmethod
    async def count_unread(self, recipient_id: str) -> int:
        pass

    @abstractmethod
    async def mark_as_read(self, notification_id: str, recipient_id: str) -> bool:
        """Mark a notification as read; `read_at` is only set the first time.

        Returns
        -------
        bool
            True if the notification exists and belongs to the recipient.
        """
        pass

    @abstractmethod
    async def mark_all_as_read(self, recipient_id: str) -> int:
        """Mark every unread notification of the recipient as read.

        Returns
        -------
        int
            Number of notifications that changed state.
        """
        pass

    @abstractmethod
    async def delete(self, notification_id: str, recipient_id: str) -> bool:
        """Delete a notification; deleting a missing one is not an error."""
        pass

    @abstractmethod
    async def delete_all(self, recipient_id: str) -> int:
        """Delete every notification of the recipient, returning how many."""
        pass

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete every notification created before `cutoff`, read or not."""
        pass

    @abstractmethod
    async def get_for_summary(
        self, recipient_id: str, unread_only: bool, since: datetime | None = None
    ) -> List[Notification]:
        pass

    @abstractmethod
    async def get_missed_notifications(
        self, recipient_id: str, last_timestamp: datetime, limit: int = 50
    ) -> List[Notification]:
        """Unread notifications created after `last_timestamp`, oldest first."""
        pass


class PreferenceRepository(ABC):
    """Abstract base class for per-recipient notification preferences."""

    @abstractmethod
    async def get(self, recipient_id: str) -> NotificationPreference:
        """Stored preferences, or the defaults when none were saved."""
        pass

    @abstractmethod
    async def save(self, preference: NotificationPreference) -> NotificationPreference:
        pass

    @abstractmethod
    async def reset(self, recipient_id: str) -> NotificationPreference:
        """Drop stored preferences so the defaults apply again."""
        pass

    @abstractmethod
    async def list_by_frequency(
        self, frequency: DeliveryFrequency
    ) -> List[NotificationPreference]:
        pass


class Subscription(ABC):
    """Cancellable handle on a realtime subscription.

    Messages are consumed with `async for`; `close()` ends the iteration and
    releases the underlying connection. Usable as an async context manager.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[str]:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class NotificationPublisher(ABC):
    """Abstract base class for realtime notification fan-out."""

    @abstractmethod
    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        """Publish a payload to a channel.

        Parameters
        ----------
        channel : str
            Channel identifier (e.g. "user:<recipient>").
        payload : Dict[str, Any]
            JSON-serializable event.
        """
        pass

    @abstractmethod
    async def subscribe(self, channels: List[str]) -> Subscription:
        """Subscribe to channels.

        Parameters
        ----------
        channels : List[str]
            Channel identifiers to listen to.

        Returns
        -------
        Subscription
            Handle yielding serialized events until closed.
        """
        pass


class NotificationChannelManager(ABC):
    """Abstract base class for the registry of open SSE connections."""

    @abstractmethod
    async def register_channel(
        self, recipient_id: str, channel_id: str
    ) -> NotificationChannel:
        pass

    @abstractmethod
    async def unregister_channel(self, recipient_id: str, channel_id: str) -> bool:
        """Remove a connection and record the recipient's last-seen time.

        The last-seen time is written even when the connection already expired.

        Returns
        -------
        bool
            True if the connection was still registered.
        """
        pass

    @abstractmethod
    async def update_channel_heartbeat(self, channel_id: str) -> bool:
        pass

    @abstractmethod
    async def get_user_last_seen(self, recipient_id: str) -> datetime | None:
        """When the recipient's last connection closed, if known."""
        pass


class DeliveryChannel(ABC):
    """One delivery medium of the dispatcher's fan-out.

    Implementations raise `ChannelDeliveryWarning` when delivery fails.
    """

    name: str

    def skip_reason(
        self, notification: Notification, preference: NotificationPreference
    ) -> str | None:
        """Return why this channel skips the notification, or None to deliver."""
        return None

    @abstractmethod
    async def deliver(
        self, notification: Notification, preference: NotificationPreference
    ) -> None:
        pass
