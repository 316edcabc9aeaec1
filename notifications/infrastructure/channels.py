import asyncio
import json
from html import escape
from typing import Any, List

from loguru import logger
from redis.exceptions import RedisError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.infrastructure.factory import get_data_sanitizer

from ..application.ports import DeliveryChannel, NotificationPublisher
from ..application.rules import user_channel
from ..domain.entities import (
    DeliveryFrequency,
    DesktopPermission,
    Notification,
    NotificationPreference,
    NotificationPriority,
)
from ..domain.exceptions import ChannelDeliveryWarning

EMAIL_PRIORITIES = {NotificationPriority.HIGH, NotificationPriority.CRITICAL}


class InAppChannel(DeliveryChannel):
    """Push the notification to the recipient's realtime channel."""

    name = "in_app"

    def __init__(self, publisher: NotificationPublisher) -> None:
        self.publisher = publisher

    def skip_reason(self, notification, preference) -> str | None:
        return None if preference.in_app_notifications else "disabled"

    async def deliver(
        self, notification: Notification, preference: NotificationPreference
    ) -> None:
        try:
            await self.publisher.publish(
                user_channel(notification.recipient_id),
                {"type": "notification", **notification.to_payload()},
            )
        except RedisError as e:
            raise ChannelDeliveryWarning(self.name, type(e).__name__) from e


class DesktopChannel(DeliveryChannel):
    """Ask connected clients to raise a platform (browser) notification.

    Skipped unless the recipient enabled browser notifications and the client
    platform reported the permission as granted.
    """

    name = "desktop"

    def __init__(self, publisher: NotificationPublisher) -> None:
        self.publisher = publisher

    def skip_reason(self, notification, preference) -> str | None:
        if not preference.browser_notifications:
            return "disabled"
        if preference.desktop_permission != DesktopPermission.GRANTED:
            return "permission_not_granted"
        return None

    async def deliver(
        self, notification: Notification, preference: NotificationPreference
    ) -> None:
        try:
            await self.publisher.publish(
                user_channel(notification.recipient_id),
                {
                    "type": "desktop",
                    "notification_id": notification.id,
                    "title": notification.title,
                    "body": notification.message,
                    "icon": notification.icon,
                    "tag": notification.dedup_key,
                    "requireInteraction": notification.persistent,
                },
            )
        except RedisError as e:
            raise ChannelDeliveryWarning(self.name, type(e).__name__) from e


def _sendgrid_error_details(exc: Exception) -> str:
    status_code = getattr(exc, "status_code", None)
    body = getattr(exc, "body", None)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="ignore")

    details = None
    if body:
        try:
            errors = json.loads(body).get("errors", [])
            details = "; ".join(str(item.get("message")) for item in errors) or None
        except (ValueError, AttributeError):
            details = str(body)[:200]

    if status_code and details:
        return f"status {status_code}: {details}"
    if status_code:
        return f"status {status_code}"
    return details or type(exc).__name__


class SendGridEmailChannel(DeliveryChannel):
    """E-mail high and critical notifications through SendGrid.

    The SendGrid client is blocking, so sends run in a worker thread.
    """

    name = "email"

    def __init__(self, api_key: str | None, sender: str | None) -> None:
        self.api_key = api_key
        self.sender = sender

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    def can_email(self, preference: NotificationPreference) -> bool:
        return bool(
            self.configured and preference.email_notifications and preference.email_address
        )

    def skip_reason(self, notification, preference) -> str | None:
        if notification.priority not in EMAIL_PRIORITIES:
            return "priority_below_threshold"
        if not preference.email_notifications:
            return "disabled"
        if not self.configured:
            return "not_configured"
        if not preference.email_address:
            return "no_address"
        return None

    async def deliver(
        self, notification: Notification, preference: NotificationPreference
    ) -> None:
        subject = f"[{notification.priority.upper()}] {notification.title}"
        html_content = (
            f"<h2>{escape(notification.title)}</h2>"
            f"<p>{escape(notification.message)}</p>"
            f"<p><small>Priority: {notification.priority} · "
            f"Urgency: {notification.urgency_score:.0f}/100</small></p>"
        )
        await self._send(preference.email_address, subject, html_content)

    async def deliver_digest(
        self,
        preference: NotificationPreference,
        notifications: List[Notification],
        frequency: DeliveryFrequency,
    ) -> None:
        """E-mail a digest; failures are logged, digests are not retried."""
        items = "".join(
            f"<li><strong>{escape(n.title)}</strong>: {escape(n.message)}</li>"
            for n in notifications
        )
        subject = f"Your {frequency} notification digest ({len(notifications)})"
        try:
            await self._send(preference.email_address, subject, f"<ul>{items}</ul>")
        except ChannelDeliveryWarning as warning:
            logger.warning(f"⚠️ Digest e-mail to {preference.recipient_id} failed: {warning}")

    async def _send(self, recipient: str, subject: str, html_content: str) -> None:
        message = Mail(
            from_email=self.sender,
            to_emails=recipient,
            subject=subject,
            html_content=html_content,
        )
        sanitizer = await get_data_sanitizer()

        try:
            response = await asyncio.to_thread(self._client_send, message)
        except Exception as e:
            raise ChannelDeliveryWarning(self.name, _sendgrid_error_details(e)) from e

        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int) or not 200 <= status_code < 300:
            raise ChannelDeliveryWarning(self.name, f"status {status_code}")

        logger.info(f"📧 Sent e-mail to {sanitizer.mask_email(recipient)}")

    def _client_send(self, message: Mail) -> Any:
        return SendGridAPIClient(self.api_key).send(message)
