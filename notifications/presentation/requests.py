from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from ..domain.entities import DeliveryFrequency, DesktopPermission


class GenerateNotificationRequest(BaseModel):
    """Request model for running the notification pipeline.

    Attributes
    ----------
    kind : str
        Notification kind, e.g. "low_stock"
    recipient_id : str | None
        Recipient, defaults to the caller
    context : Dict[str, Any]
        Triggering payload, camelCase or snake_case keys
    """

    kind: str = Field(min_length=1)
    recipient_id: str | None = Field(default=None, max_length=128)
    context: Dict[str, Any] = Field(default_factory=dict)


class UpdatePreferencesRequest(BaseModel):
    """Partial update of notification preferences; only sent fields change."""

    model_config = ConfigDict(extra="forbid")

    email_notifications: bool | None = None
    in_app_notifications: bool | None = None
    browser_notifications: bool | None = None
    desktop_permission: DesktopPermission | None = None
    email_address: str | None = Field(default=None, max_length=254)
    inventory_alerts: bool | None = None
    expiry_alerts: bool | None = None
    sales_alerts: bool | None = None
    report_alerts: bool | None = None
    system_alerts: bool | None = None
    ml_alerts: bool | None = None
    frequency: DeliveryFrequency | None = None
    quiet_hours_enabled: bool | None = None
    quiet_hours_start: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    quiet_hours_end: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    timezone: str | None = None

    def changes(self) -> Dict[str, Any]:
        """Fields the client sent; `email_address` may be cleared with null."""
        changes = self.model_dump(exclude_unset=True)
        return {
            key: value
            for key, value in changes.items()
            if value is not None or key == "email_address"
        }
