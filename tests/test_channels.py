"""
Tests for the in-app, desktop and SendGrid e-mail delivery channels.
"""

import dataclasses
from types import SimpleNamespace

import pytest

from fakes import FakePublisher
from notifications.domain.builder import build_notification
from notifications.domain.entities import (
    DeliveryFrequency,
    DesktopPermission,
    NotificationPreference,
)
from notifications.domain.exceptions import ChannelDeliveryWarning
from notifications.infrastructure.channels import (
    DesktopChannel,
    InAppChannel,
    SendGridEmailChannel,
)

RECIPIENT = "pharmacist-1"


@pytest.fixture
def critical():
    notification = build_notification(
        "critical_stock",
        RECIPIENT,
        {"productId": 3, "productName": "Insulin <glargine>", "currentStock": 2},
    )
    return dataclasses.replace(notification, id="n-1", urgency_score=90.0)


@pytest.fixture
def low_stock():
    notification = build_notification(
        "low_stock", RECIPIENT, {"productId": 4, "productName": "Zinc", "currentStock": 9}
    )
    return dataclasses.replace(notification, id="n-2", urgency_score=40.0)


class TestInAppChannel:
    async def test_publishes_to_recipient_channel(self, critical):
        publisher = FakePublisher()
        preference = NotificationPreference(recipient_id=RECIPIENT)

        await InAppChannel(publisher).deliver(critical, preference)

        channel, payload = publisher.published[0]
        assert channel == f"user:{RECIPIENT}"
        assert payload["type"] == "notification"
        assert payload["id"] == "n-1"
        assert payload["priority"] == "critical"

    async def test_redis_failure_becomes_delivery_warning(self, critical):
        channel = InAppChannel(FakePublisher(fail=True))

        with pytest.raises(ChannelDeliveryWarning) as exc_info:
            await channel.deliver(critical, NotificationPreference(recipient_id=RECIPIENT))
        assert exc_info.value.channel == "in_app"

    def test_skipped_when_disabled(self, critical):
        preference = NotificationPreference(
            recipient_id=RECIPIENT, in_app_notifications=False
        )
        assert InAppChannel(FakePublisher()).skip_reason(critical, preference) == "disabled"


class TestDesktopChannel:
    def test_skipped_without_granted_permission(self, critical):
        preference = NotificationPreference(recipient_id=RECIPIENT)
        reason = DesktopChannel(FakePublisher()).skip_reason(critical, preference)
        assert reason == "permission_not_granted"

    def test_skipped_when_browser_notifications_disabled(self, critical):
        preference = NotificationPreference(
            recipient_id=RECIPIENT,
            browser_notifications=False,
            desktop_permission=DesktopPermission.GRANTED,
        )
        assert DesktopChannel(FakePublisher()).skip_reason(critical, preference) == "disabled"

    async def test_publishes_desktop_event_when_granted(self, critical):
        publisher = FakePublisher()
        preference = NotificationPreference(
            recipient_id=RECIPIENT, desktop_permission=DesktopPermission.GRANTED
        )
        channel = DesktopChannel(publisher)

        assert channel.skip_reason(critical, preference) is None
        await channel.deliver(critical, preference)

        _, payload = publisher.published[0]
        assert payload["type"] == "desktop"
        assert payload["title"] == "Critical Stock Alert"
        assert payload["requireInteraction"] is True


class TestSendGridEmailChannel:
    @pytest.fixture
    def preference(self):
        return NotificationPreference(
            recipient_id=RECIPIENT, email_address="ada@pharmacy.test"
        )

    @pytest.fixture
    def channel(self):
        return SendGridEmailChannel("SG.test-key", "alerts@pharmacy.test")

    def test_low_priority_is_not_emailed(self, channel, low_stock, preference):
        assert channel.skip_reason(low_stock, preference) == "priority_below_threshold"

    def test_skipped_when_not_configured(self, critical, preference):
        channel = SendGridEmailChannel(None, None)
        assert channel.skip_reason(critical, preference) == "not_configured"
        assert channel.can_email(preference) is False

    def test_skipped_without_address(self, channel, critical):
        preference = NotificationPreference(recipient_id=RECIPIENT)
        assert channel.skip_reason(critical, preference) == "no_address"

    def test_skipped_when_opted_out(self, channel, critical):
        preference = NotificationPreference(
            recipient_id=RECIPIENT,
            email_address="ada@pharmacy.test",
            email_notifications=False,
        )
        assert channel.skip_reason(critical, preference) == "disabled"

    async def test_sends_escaped_mail(self, channel, critical, preference):
        sent = []

        def fake_send(message):
            sent.append(message.get())
            return SimpleNamespace(status_code=202)

        channel._client_send = fake_send

        assert channel.skip_reason(critical, preference) is None
        await channel.deliver(critical, preference)

        mail = sent[0]
        assert mail["subject"] == "[CRITICAL] Critical Stock Alert"
        assert mail["personalizations"][0]["to"][0]["email"] == "ada@pharmacy.test"
        assert "Insulin &lt;glargine&gt;" in mail["content"][0]["value"]

    async def test_rejected_send_becomes_delivery_warning(self, channel, critical, preference):
        channel._client_send = lambda message: SimpleNamespace(status_code=500)

        with pytest.raises(ChannelDeliveryWarning) as exc_info:
            await channel.deliver(critical, preference)
        assert exc_info.value.reason == "status 500"

    async def test_client_error_details_are_reported(self, channel, critical, preference):
        class Unauthorized(Exception):
            status_code = 401
            body = b'{"errors": [{"message": "The provided authorization grant is invalid"}]}'

        def fake_send(message):
            raise Unauthorized()

        channel._client_send = fake_send

        with pytest.raises(ChannelDeliveryWarning) as exc_info:
            await channel.deliver(critical, preference)
        assert exc_info.value.reason == (
            "status 401: The provided authorization grant is invalid"
        )

    async def test_failed_digest_is_logged_not_raised(self, channel, low_stock, preference):
        channel._client_send = lambda message: SimpleNamespace(status_code=503)

        await channel.deliver_digest(preference, [low_stock], DeliveryFrequency.DAILY)
