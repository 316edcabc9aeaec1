from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel

from ..domain.entities import (
    DashboardSummary,
    DispatchResult,
    Notification,
    NotificationPreference,
    ScanReport,
)


class NotificationResponse(BaseModel):
    """Response model for a notification.

    Attributes
    ----------
    id : str
        Unique identifier of the notification
    kind : str
        Notification kind
    family : str
        Kind family
    title : str
        Rendered title
    message : str
        Rendered message
    priority : str
        Priority level
    urgency_score : float
        Urgency in [0, 100], used for sort order
    action_required : bool
        Whether the recipient is expected to act
    context : Dict[str, Any]
        Triggering payload
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

    id: str
    kind: str
    family: str
    title: str
    message: str
    priority: str
    urgency_score: float
    action_required: bool
    context: Dict[str, Any]
    icon: str
    color: str
    persistent: bool
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            kind=notification.kind.value,
            family=notification.family.value,
            title=notification.title,
            message=notification.message,
            priority=notification.priority.value,
            urgency_score=notification.urgency_score,
            action_required=notification.action_required,
            context=notification.context,
            icon=notification.icon,
            color=notification.color,
            persistent=notification.persistent,
            is_read=notification.is_read,
            read_at=notification.read_at,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    """Response model for a page of notifications.

    Attributes
    ----------
    notifications : List[NotificationResponse]
        The requested page
    total : int
        Number of notifications in the page
    unread_count : int
        Recipient's total number of unread notifications
    """

    notifications: List[NotificationResponse]
    total: int
    unread_count: int


class ChannelOutcomeResponse(BaseModel):
    channel: str
    status: str
    reason: str | None = None


class DispatchResultResponse(BaseModel):
    persisted: bool
    reason: str | None = None
    notification: NotificationResponse | None = None
    channels: List[ChannelOutcomeResponse]

    @classmethod
    def from_domain(cls, result: DispatchResult) -> "DispatchResultResponse":
        return cls(
            persisted=result.persisted,
            reason=result.reason,
            notification=(
                NotificationResponse.from_domain(result.notification)
                if result.notification
                else None
            ),
            channels=[
                ChannelOutcomeResponse(
                    channel=outcome.channel,
                    status=outcome.status.value,
                    reason=outcome.reason,
                )
                for outcome in result.channels
            ],
        )


class DashboardSummaryResponse(BaseModel):
    total_active: int
    by_priority: Dict[str, int]
    action_required_count: int
    ml_generated_count: int

    @classmethod
    def from_domain(cls, summary: DashboardSummary) -> "DashboardSummaryResponse":
        return cls(
            total_active=summary.total_active,
            by_priority={
                priority.value: count for priority, count in summary.by_priority.items()
            },
            action_required_count=summary.action_required_count,
            ml_generated_count=summary.ml_generated_count,
        )


class PreferenceResponse(BaseModel):
    recipient_id: str
    email_notifications: bool
    in_app_notifications: bool
    browser_notifications: bool
    desktop_permission: str
    email_address: str | None = None
    inventory_alerts: bool
    expiry_alerts: bool
    sales_alerts: bool
    report_alerts: bool
    system_alerts: bool
    ml_alerts: bool
    frequency: str
    quiet_hours_enabled: bool
    quiet_hours_start: str
    quiet_hours_end: str
    timezone: str
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, preference: NotificationPreference) -> "PreferenceResponse":
        return cls.model_validate(preference, from_attributes=True)


class ScanReportResponse(BaseModel):
    scan: str
    examined: int
    dispatched: int
    deduplicated: int
    failed: int

    @classmethod
    def from_domain(cls, report: ScanReport) -> "ScanReportResponse":
        return cls.model_validate(report, from_attributes=True)
