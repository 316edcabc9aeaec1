"""
Tests for the dispatcher: dedup, scoring, persistence and channel fan-out.
"""

from datetime import timedelta

import pytest

from fakes import FakeChannel, SlowNotificationRepository
from notifications.application.dispatcher import (
    CATEGORY_DISABLED,
    DEDUPLICATED,
    DIGEST,
    QUIET_HOURS,
    NotificationDispatcher,
)
from notifications.domain.builder import build_notification
from notifications.domain.entities import (
    ChannelStatus,
    DeliveryFrequency,
    NotificationPreference,
    NotificationPriority,
)
from notifications.domain.exceptions import PersistenceError

RECIPIENT = "pharmacist-1"


def _low_stock(product_id=7, stock=8):
    return build_notification(
        "low_stock",
        RECIPIENT,
        {"productId": product_id, "productName": "Paracetamol", "currentStock": stock},
    )


def _critical_stock(product_id=7):
    return build_notification(
        "critical_stock",
        RECIPIENT,
        {"productId": product_id, "productName": "Insulin", "currentStock": 2},
    )


@pytest.fixture
def preference():
    return NotificationPreference(recipient_id=RECIPIENT)


class TestDeduplication:
    """A repeated unread notification within the cooldown is suppressed."""

    async def test_first_dispatch_is_persisted(
        self, dispatcher, preference, notification_repository
    ):
        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.persisted is True
        assert result.reason is None
        assert result.notification.id in notification_repository.notifications

    async def test_duplicate_within_cooldown_is_suppressed(
        self, dispatcher, preference, notification_repository, clock
    ):
        await dispatcher.dispatch(_low_stock(), preference)
        clock.advance(minutes=2)

        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.persisted is False
        assert result.reason == DEDUPLICATED
        assert result.notification is None
        assert result.channels == []
        assert len(notification_repository.notifications) == 1

    async def test_duplicate_after_cooldown_is_persisted(
        self, dispatcher, preference, notification_repository, clock
    ):
        await dispatcher.dispatch(_low_stock(), preference)
        clock.advance(minutes=5)

        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.persisted is True
        assert len(notification_repository.notifications) == 2

    async def test_duplicate_of_read_notification_is_persisted(
        self, dispatcher, preference, notification_repository, clock
    ):
        first = await dispatcher.dispatch(_low_stock(), preference)
        await notification_repository.mark_as_read(first.notification.id, RECIPIENT)
        clock.advance(seconds=30)

        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.persisted is True

    async def test_other_product_is_not_a_duplicate(self, dispatcher, preference):
        await dispatcher.dispatch(_low_stock(product_id=7), preference)
        result = await dispatcher.dispatch(_low_stock(product_id=8), preference)

        assert result.persisted is True

    async def test_cooldown_is_configurable(
        self, notification_repository, channels, clock, preference
    ):
        dispatcher = NotificationDispatcher(
            notification_repository, channels, cooldown=timedelta(minutes=30), clock=clock
        )
        await dispatcher.dispatch(_low_stock(), preference)
        clock.advance(minutes=10)

        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.reason == DEDUPLICATED


class TestStoredNotification:
    async def test_urgency_and_timestamp_are_attached(self, dispatcher, preference, clock):
        result = await dispatcher.dispatch(_critical_stock(), preference)

        assert result.notification.urgency_score == 90.0
        assert result.notification.action_required is True
        assert result.notification.created_at == clock.now
        assert result.notification.is_read is False


class TestFanOut:
    async def test_channels_are_tried_in_order(self, dispatcher, preference, channels):
        result = await dispatcher.dispatch(_low_stock(), preference)

        assert [o.channel for o in result.channels] == ["in_app", "desktop", "email"]
        assert result.delivered_channels == ["in_app", "desktop", "email"]
        assert all(len(channel.delivered) == 1 for channel in channels)

    async def test_channel_skip_reason_is_reported(
        self, notification_repository, clock, preference
    ):
        dispatcher = NotificationDispatcher(
            notification_repository,
            [FakeChannel("in_app"), FakeChannel("email", skip="priority_below_threshold")],
            clock=clock,
        )

        result = await dispatcher.dispatch(_low_stock(), preference)

        email = result.channels[1]
        assert email.status == ChannelStatus.SKIPPED
        assert email.reason == "priority_below_threshold"

    async def test_failed_channel_does_not_affect_others(
        self, notification_repository, clock, preference
    ):
        in_app = FakeChannel("in_app", error="ConnectionError")
        email = FakeChannel("email")
        dispatcher = NotificationDispatcher(
            notification_repository, [in_app, email], clock=clock
        )

        result = await dispatcher.dispatch(_critical_stock(), preference)

        assert result.persisted is True
        assert result.channels[0].status == ChannelStatus.FAILED
        assert result.channels[0].reason == "ConnectionError"
        assert result.channels[1].status == ChannelStatus.DELIVERED
        assert len(notification_repository.notifications) == 1


class TestSuppression:
    """Preferences can silence push channels; the notification is still stored."""

    async def test_disabled_category_skips_every_channel(
        self, dispatcher, notification_repository, channels
    ):
        preference = NotificationPreference(recipient_id=RECIPIENT, inventory_alerts=False)

        result = await dispatcher.dispatch(_critical_stock(), preference)

        assert result.persisted is True
        assert {o.reason for o in result.channels} == {CATEGORY_DISABLED}
        assert all(not channel.delivered for channel in channels)
        assert len(notification_repository.notifications) == 1

    async def test_quiet_hours_hold_back_non_critical(self, dispatcher, clock):
        preference = NotificationPreference(
            recipient_id=RECIPIENT,
            quiet_hours_enabled=True,
            quiet_hours_start="11:00",
            quiet_hours_end="13:00",
        )

        result = await dispatcher.dispatch(_low_stock(), preference)

        assert result.persisted is True
        assert {o.reason for o in result.channels} == {QUIET_HOURS}

    async def test_critical_bypasses_quiet_hours(self, dispatcher):
        preference = NotificationPreference(
            recipient_id=RECIPIENT,
            quiet_hours_enabled=True,
            quiet_hours_start="11:00",
            quiet_hours_end="13:00",
        )

        result = await dispatcher.dispatch(_critical_stock(), preference)

        assert result.notification.priority == NotificationPriority.CRITICAL
        assert result.delivered_channels == ["in_app", "desktop", "email"]

    async def test_digest_frequency_holds_back_non_critical(self, dispatcher):
        preference = NotificationPreference(
            recipient_id=RECIPIENT, frequency=DeliveryFrequency.DAILY
        )

        non_critical = await dispatcher.dispatch(_low_stock(), preference)
        critical = await dispatcher.dispatch(_critical_stock(), preference)

        assert {o.reason for o in non_critical.channels} == {DIGEST}
        assert critical.delivered_channels == ["in_app", "desktop", "email"]


class TestPersistenceFailure:
    async def test_history_timeout_raises_persistence_error(self, channels, clock, preference):
        repository = SlowNotificationRepository(clock)
        dispatcher = NotificationDispatcher(
            repository, channels, persist_timeout=0.01, clock=clock
        )

        with pytest.raises(PersistenceError):
            await dispatcher.dispatch(_low_stock(), preference)

        assert repository.notifications == {}
        assert all(not channel.delivered for channel in channels)
