import asyncio
import dataclasses
from datetime import UTC, datetime, timedelta
from typing import Callable, List, Sequence

from loguru import logger

from ..domain.dedup import should_admit
from ..domain.entities import (
    ChannelOutcome,
    ChannelStatus,
    DeliveryFrequency,
    DispatchResult,
    Notification,
    NotificationPreference,
    NotificationPriority,
)
from ..domain.exceptions import ChannelDeliveryWarning, PersistenceError
from ..domain.scoring import score
from .ports import DeliveryChannel, NotificationRepository

DEDUPLICATED = "deduplicated"
CATEGORY_DISABLED = "category_disabled"
QUIET_HOURS = "quiet_hours"
DIGEST = "digest"


def utc_now() -> datetime:
    return datetime.now(UTC)


class NotificationDispatcher:
    """Run a candidate notification through dedup, scoring, persistence and fan-out.

    The steps of a dispatch are strictly sequential: the dedup decision is
    taken on freshly read history, persistence happens before any channel is
    tried, and a channel failure never undoes persistence.

    Parameters
    ----------
    notification_repository : NotificationRepository
        Store the history is read from and the notification is written to.
    channels : Sequence[DeliveryChannel]
        Delivery channels, tried in order.
    cooldown : timedelta, default=5 minutes
        Dedup cooldown window.
    profit_threshold : float, default=1000.0
        Monetary impact from which the urgency bonus applies.
    persist_timeout : float, default=5.0
        Seconds a history read or insert may take before failing.
    clock : Callable[[], datetime], optional
        Source of the current UTC time.
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        channels: Sequence[DeliveryChannel],
        cooldown: timedelta = timedelta(minutes=5),
        profit_threshold: float = 1000.0,
        persist_timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.notification_repository = notification_repository
        self.channels = list(channels)
        self.cooldown = cooldown
        self.profit_threshold = profit_threshold
        self.persist_timeout = persist_timeout
        self.clock = clock

    async def dispatch(
        self, candidate: Notification, preference: NotificationPreference
    ) -> DispatchResult:
        """Dispatch one candidate notification.

        Parameters
        ----------
        candidate : Notification
            Unsaved notification from the builder.
        preference : NotificationPreference
            Recipient's delivery preferences.

        Returns
        -------
        DispatchResult
            `persisted=False, reason="deduplicated"` when suppressed, otherwise
            the stored notification and the outcome of every channel.

        Raises
        ------
        PersistenceError
            If history cannot be read or the notification cannot be stored in time.
        """
        now = self.clock()

        history = await self._bounded(
            self.notification_repository.get_recent_notifications(
                candidate.recipient_id, now - self.cooldown
            ),
            "read notification history",
        )
        if not should_admit(candidate, history, self.cooldown, now):
            logger.info(
                f"🔕 Suppressed duplicate {candidate.dedup_key} for recipient {candidate.recipient_id}"
            )
            return DispatchResult(persisted=False, reason=DEDUPLICATED)

        assessment = score(candidate, self.profit_threshold)
        candidate = dataclasses.replace(
            candidate,
            urgency_score=assessment.urgency_score,
            action_required=assessment.action_required,
            created_at=candidate.created_at or now,
        )

        stored = await self._bounded(
            self.notification_repository.create(candidate), "store notification"
        )
        logger.info(
            f"📝 Stored {stored.kind} notification {stored.id} "
            f"(priority={stored.priority}, urgency={stored.urgency_score:.0f})"
        )

        outcomes = await self._fan_out(stored, preference, now)
        result = DispatchResult(persisted=True, notification=stored, channels=outcomes)
        logger.info(
            f"📤 Notification {stored.id} delivered via "
            f"{', '.join(result.delivered_channels) or 'no channel'}"
        )
        return result

    async def _bounded(self, operation, description: str):
        try:
            return await asyncio.wait_for(operation, timeout=self.persist_timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Timed out after {self.persist_timeout}s trying to {description}"
            ) from e

    def suppression_reason(
        self,
        notification: Notification,
        preference: NotificationPreference,
        now: datetime,
    ) -> str | None:
        """Why every push channel is skipped for this notification, if at all."""
        if not preference.allows_family(notification.family):
            return CATEGORY_DISABLED
        if notification.priority == NotificationPriority.CRITICAL:
            return None
        if preference.in_quiet_hours(now):
            return QUIET_HOURS
        if preference.frequency != DeliveryFrequency.IMMEDIATE:
            return DIGEST
        return None

    async def _fan_out(
        self,
        notification: Notification,
        preference: NotificationPreference,
        now: datetime,
    ) -> List[ChannelOutcome]:
        suppressed = self.suppression_reason(notification, preference, now)
        outcomes = []

        for channel in self.channels:
            reason = suppressed or channel.skip_reason(notification, preference)
            if reason:
                outcomes.append(
                    ChannelOutcome(channel.name, ChannelStatus.SKIPPED, reason)
                )
                continue

            try:
                await channel.deliver(notification, preference)
            except ChannelDeliveryWarning as warning:
                logger.warning(
                    f"⚠️ {warning} (notification {notification.id}, recipient {notification.recipient_id})"
                )
                outcomes.append(
                    ChannelOutcome(channel.name, ChannelStatus.FAILED, warning.reason)
                )
                continue

            outcomes.append(ChannelOutcome(channel.name, ChannelStatus.DELIVERED))

        if suppressed:
            logger.debug(
                f"Skipped push channels for notification {notification.id}: {suppressed}"
            )
        return outcomes
