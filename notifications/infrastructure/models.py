import uuid
from datetime import UTC, datetime
from typing import Any, Dict

from sqlmodel import JSON, Column, Field, SQLModel

from ..domain.entities import DeliveryFrequency, DesktopPermission


class Notification(SQLModel, table=True):
    """SQLModel table representation for the Notification entity.

    Attributes
    ----------
    id : str
        Primary key, uuid4 hex string
    recipient_id : str
        Recipient of the notification
    kind : str
        Notification kind (stored as string)
    family : str
        Kind family (stored as string)
    title : str
        Rendered title
    message : str
        Rendered message
    priority : str
        Priority (stored as string)
    urgency_score : float
        Urgency in [0, 100] at creation time
    action_required : bool
        Whether the recipient is expected to act
    context : Dict[str, Any]
        Triggering payload as JSON
    dedup_key : str
        Cooldown filter key
    icon : str
        UI icon reference
    color : str
        UI color reference
    persistent : bool
        Whether the UI keeps the notification until dismissed
    is_read : bool
        Whether the notification has been read
    read_at : datetime | None
        First time the notification was read
    created_at : datetime
        Timestamp of notification creation
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    recipient_id: str = Field(nullable=False, index=True)
    kind: str = Field(nullable=False, index=True)
    family: str = Field(nullable=False, index=True)
    title: str = Field(nullable=False)
    message: str = Field(nullable=False)
    priority: str = Field(nullable=False, index=True)
    urgency_score: float = Field(default=0.0)
    action_required: bool = Field(default=False)
    context: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    dedup_key: str = Field(nullable=False, index=True)
    icon: str = Field(default="Bell")
    color: str = Field(default="blue")
    persistent: bool = Field(default=False)
    is_read: bool = Field(default=False, index=True)
    read_at: datetime | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC), index=True
    )


class NotificationPreference(SQLModel, table=True):
    """SQLModel table of per-recipient delivery preferences.

    A recipient without a row gets the domain defaults.
    """

    __tablename__ = "notification_preference"

    recipient_id: str = Field(primary_key=True)
    email_notifications: bool = Field(default=True)
    in_app_notifications: bool = Field(default=True)
    browser_notifications: bool = Field(default=True)
    desktop_permission: str = Field(default=DesktopPermission.DEFAULT.value)
    email_address: str | None = Field(default=None)
    inventory_alerts: bool = Field(default=True)
    expiry_alerts: bool = Field(default=True)
    sales_alerts: bool = Field(default=True)
    report_alerts: bool = Field(default=True)
    system_alerts: bool = Field(default=True)
    ml_alerts: bool = Field(default=True)
    frequency: str = Field(default=DeliveryFrequency.IMMEDIATE.value, index=True)
    quiet_hours_enabled: bool = Field(default=False)
    quiet_hours_start: str = Field(default="22:00")
    quiet_hours_end: str = Field(default="08:00")
    timezone: str = Field(default="UTC")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
