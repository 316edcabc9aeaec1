from datetime import datetime, time
from enum import StrEnum
from typing import Any, Dict, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, dataclasses, field_validator


class KindFamily(StrEnum):
    """Category a notification kind belongs to; the unit of category opt-in."""

    INVENTORY = "inventory"
    EXPIRY = "expiry"
    SALES = "sales"
    REPORTS = "reports"
    SYSTEM = "system"
    ML = "ml"


class NotificationKind(StrEnum):
    """Closed enumeration of notification kinds known to the rule catalog."""

    LOW_STOCK = "low_stock"
    CRITICAL_STOCK = "critical_stock"
    EXPIRY_WARNING = "expiry_warning"
    EXPIRY_CRITICAL = "expiry_critical"
    REORDER_SUGGESTION = "reorder_suggestion"
    STOCK_ADJUSTMENT = "stock_adjustment"
    PRODUCT_ADDED = "product_added"
    SALE_COMPLETED = "sale_completed"
    SALES_TARGET = "sales_target"
    DAILY_REPORT = "daily_report"
    WEEKLY_REPORT = "weekly_report"
    SYSTEM_ALERT = "system_alert"
    ERROR_ALERT = "error_alert"
    ML_DEMAND_SPIKE = "ml_demand_spike"
    ML_PRICE_OPTIMIZATION = "ml_price_optimization"
    ML_ANOMALY = "ml_anomaly"


class NotificationPriority(StrEnum):
    """Priority levels, ordered from least to most urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(NotificationPriority).index(self)

    def raised_to(self, other: "NotificationPriority") -> "NotificationPriority":
        """Return the more urgent of `self` and `other`."""
        return other if other.rank > self.rank else self


class DeliveryFrequency(StrEnum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"


class DesktopPermission(StrEnum):
    """Browser notification permission as reported by the client platform."""

    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class ChannelStatus(StrEnum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


class SummaryWindow(StrEnum):
    """Aggregation window of the dashboard summary."""

    UNREAD = "unread"
    RECENT = "recent"


@dataclasses.dataclass(frozen=True)
class Notification:
    """Core domain entity representing a notification.

    Instances are immutable; reading a notification or attaching its urgency
    produces a new instance through `dataclasses.replace`.

    Attributes
    ----------
    recipient_id : str
        Opaque identifier of the recipient.
    kind : NotificationKind
        Kind the notification was built from.
    family : KindFamily
        Category of `kind`, used for category opt-in and filtering.
    title : str
        Rendered title, fixed at creation.
    message : str
        Rendered message, fixed at creation.
    priority : NotificationPriority
        Priority, fixed at creation.
    dedup_key : str
        `kind:subject` key used by the cooldown filter.
    urgency_score : float, default=0.0
        Urgency in [0, 100], attached by the scorer.
    action_required : bool, default=False
        Whether the recipient is expected to act.
    context : Dict[str, Any]
        Normalized triggering payload (camelCase keys).
    icon : str
        Icon reference for UI rendering.
    color : str
        Color reference for UI rendering.
    persistent : bool, default=False
        Whether the UI keeps the notification on screen until dismissed.
    is_read : bool, default=False
        Read flag, monotonic.
    read_at : datetime | None, optional
        First time the notification was read.
    created_at : datetime | None, optional
        Creation timestamp, assigned on insert when unset.
    id : str | None, optional
        Unique identifier, assigned on insert.
    """

    recipient_id: str
    kind: NotificationKind
    family: KindFamily
    title: str
    message: str
    priority: NotificationPriority
    dedup_key: str
    urgency_score: float = 0.0
    action_required: bool = False
    context: Dict[str, Any] = Field(default_factory=dict)
    icon: str = "Bell"
    color: str = "blue"
    persistent: bool = False
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None
    id: str | None = None

    @property
    def is_ml_generated(self) -> bool:
        return self.family == KindFamily.ML

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the JSON-compatible shape pushed to realtime clients."""
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "kind": self.kind.value,
            "family": self.family.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "urgency_score": self.urgency_score,
            "action_required": self.action_required,
            "context": self.context,
            "icon": self.icon,
            "color": self.color,
            "persistent": self.persistent,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _parse_clock(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


@dataclasses.dataclass(frozen=True)
class NotificationPreference:
    """Per-recipient delivery preferences.

    Defaults apply to recipients who never saved preferences: every channel
    and category enabled, immediate delivery, quiet hours off.
    """

    recipient_id: str
    email_notifications: bool = True
    in_app_notifications: bool = True
    browser_notifications: bool = True
    desktop_permission: DesktopPermission = DesktopPermission.DEFAULT
    email_address: str | None = None
    inventory_alerts: bool = True
    expiry_alerts: bool = True
    sales_alerts: bool = True
    report_alerts: bool = True
    system_alerts: bool = True
    ml_alerts: bool = True
    frequency: DeliveryFrequency = DeliveryFrequency.IMMEDIATE
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    timezone: str = "UTC"
    updated_at: datetime | None = None

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        try:
            parsed = _parse_clock(value)
        except ValueError as e:
            raise ValueError(f"Quiet hours must use HH:MM, got {value!r}") from e
        return parsed.strftime("%H:%M")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {value!r}") from e
        return value

    def allows_family(self, family: KindFamily) -> bool:
        return {
            KindFamily.INVENTORY: self.inventory_alerts,
            KindFamily.EXPIRY: self.expiry_alerts,
            KindFamily.SALES: self.sales_alerts,
            KindFamily.REPORTS: self.report_alerts,
            KindFamily.SYSTEM: self.system_alerts,
            KindFamily.ML: self.ml_alerts,
        }[family]

    def in_quiet_hours(self, moment: datetime) -> bool:
        """Whether `moment` falls inside the quiet window in the recipient's timezone.

        The window is start-inclusive and end-exclusive and may wrap past
        midnight (e.g. 22:00-08:00). Equal start and end means an empty window.
        """
        if not self.quiet_hours_enabled:
            return False

        local = moment.astimezone(ZoneInfo(self.timezone)).time()
        start = _parse_clock(self.quiet_hours_start)
        end = _parse_clock(self.quiet_hours_end)

        if start == end:
            return False
        if start < end:
            return start <= local < end
        return local >= start or local < end


@dataclasses.dataclass(frozen=True)
class NotificationChannel:
    """A registered server-sent events connection.

    Attributes
    ----------
    recipient_id : str
        Recipient the connection streams for.
    channel_id : str
        Unique identifier of the connection.
    is_active : bool, default=True
        Whether the connection is open.
    created_at : datetime | None, optional
        When the connection was registered.
    """

    recipient_id: str
    channel_id: str
    is_active: bool = True
    created_at: datetime | None = None


@dataclasses.dataclass(frozen=True)
class UrgencyAssessment:
    urgency_score: float
    action_required: bool


@dataclasses.dataclass(frozen=True)
class ChannelOutcome:
    """Result of one delivery channel for one dispatch."""

    channel: str
    status: ChannelStatus
    reason: str | None = None


@dataclasses.dataclass(frozen=True)
class DispatchResult:
    """Outcome of a single dispatch.

    Attributes
    ----------
    persisted : bool
        Whether the notification was stored.
    reason : str | None, optional
        Why it was not stored (`"deduplicated"`), None otherwise.
    notification : Notification | None, optional
        The stored notification, with id, timestamps and urgency attached.
    channels : List[ChannelOutcome]
        Per-channel outcomes, in fan-out order.
    """

    persisted: bool
    reason: str | None = None
    notification: Notification | None = None
    channels: List[ChannelOutcome] = Field(default_factory=list)

    @property
    def delivered_channels(self) -> List[str]:
        return [o.channel for o in self.channels if o.status == ChannelStatus.DELIVERED]


@dataclasses.dataclass(frozen=True)
class DashboardSummary:
    """Counts displayed on the dashboard notification widget."""

    total_active: int = 0
    by_priority: Dict[NotificationPriority, int] = Field(
        default_factory=lambda: {priority: 0 for priority in NotificationPriority}
    )
    action_required_count: int = 0
    ml_generated_count: int = 0


@dataclasses.dataclass(frozen=True)
class ScanReport:
    """Tally of one stock or expiry scan run."""

    scan: str
    examined: int = 0
    dispatched: int = 0
    deduplicated: int = 0
    failed: int = 0
