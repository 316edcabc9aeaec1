from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Type

from pydantic import dataclasses

from .contexts import (
    ExpiryContext,
    InventoryContext,
    MlContext,
    NotificationContext,
    ReportContext,
    SalesContext,
    SystemContext,
)
from .entities import KindFamily, NotificationKind, NotificationPriority
from .exceptions import UnknownKindError

Escalation = Callable[[Dict[str, Any]], NotificationPriority | None]

DEFAULT_CRITICAL_LEVEL = 5
EXPIRY_ESCALATION_DAYS = 14


def _number(context: Dict[str, Any], key: str) -> float | None:
    try:
        return float(context[key])
    except (KeyError, TypeError, ValueError):
        return None


def _escalate_low_stock(context: Dict[str, Any]) -> NotificationPriority | None:
    stock = _number(context, "currentStock")
    critical_level = _number(context, "criticalLevel")
    if critical_level is None:
        critical_level = DEFAULT_CRITICAL_LEVEL
    if stock is not None and stock <= critical_level:
        return NotificationPriority.HIGH
    return None


def _escalate_expiry_warning(context: Dict[str, Any]) -> NotificationPriority | None:
    days = _number(context, "daysUntilExpiry")
    if days is not None and days <= EXPIRY_ESCALATION_DAYS:
        return NotificationPriority.HIGH
    return None


def _escalate_ml_anomaly(context: Dict[str, Any]) -> NotificationPriority | None:
    if str(context.get("severity", "")).lower() == "critical":
        return NotificationPriority.CRITICAL
    return None


@dataclasses.dataclass(frozen=True)
class KindRule:
    """Static rendering and priority rule of one notification kind.

    Attributes
    ----------
    title_template : str
        `str.format` template of the title.
    message_template : str
        `str.format` template of the message.
    icon : str
        Icon reference for UI rendering.
    color : str
        Color reference for UI rendering.
    base_priority : NotificationPriority
        Priority before context escalation.
    persistent : bool
        Whether the UI keeps the notification until dismissed.
    family : KindFamily
        Category of the kind.
    context_model : Type[NotificationContext]
        Model the context payload is validated against.
    escalation : Escalation | None, optional
        Hook that may raise the priority from context signals.
    """

    title_template: str
    message_template: str
    icon: str
    color: str
    base_priority: NotificationPriority
    persistent: bool
    family: KindFamily
    context_model: Type[NotificationContext]
    escalation: Escalation | None = None


_CATALOG: Dict[NotificationKind, KindRule] = {
    NotificationKind.LOW_STOCK: KindRule(
        title_template="Low Stock Warning",
        message_template=(
            "{productName} is running low: {currentStock} units remaining "
            "(reorder at {reorderLevel})"
        ),
        icon="Package",
        color="orange",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.INVENTORY,
        context_model=InventoryContext,
        escalation=_escalate_low_stock,
    ),
    NotificationKind.CRITICAL_STOCK: KindRule(
        title_template="Critical Stock Alert",
        message_template="{productName} is critically low: only {currentStock} units left",
        icon="AlertTriangle",
        color="red",
        base_priority=NotificationPriority.CRITICAL,
        persistent=True,
        family=KindFamily.INVENTORY,
        context_model=InventoryContext,
    ),
    NotificationKind.EXPIRY_WARNING: KindRule(
        title_template="Product Expiry Warning",
        message_template="{productName} expires in {daysUntilExpiry} days ({expiryDate})",
        icon="Calendar",
        color="yellow",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.EXPIRY,
        context_model=ExpiryContext,
        escalation=_escalate_expiry_warning,
    ),
    NotificationKind.EXPIRY_CRITICAL: KindRule(
        title_template="Urgent: Product Expiring Soon",
        message_template="{productName} expires in {daysUntilExpiry} days ({expiryDate})",
        icon="Clock",
        color="red",
        base_priority=NotificationPriority.CRITICAL,
        persistent=True,
        family=KindFamily.EXPIRY,
        context_model=ExpiryContext,
    ),
    NotificationKind.REORDER_SUGGESTION: KindRule(
        title_template="Reorder Suggestion",
        message_template="Consider reordering {suggestedQuantity} units of {productName}",
        icon="ShoppingCart",
        color="blue",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.INVENTORY,
        context_model=InventoryContext,
    ),
    NotificationKind.STOCK_ADJUSTMENT: KindRule(
        title_template="Stock Adjusted",
        message_template="{productName} stock adjusted by {adjustment} ({reason})",
        icon="RefreshCw",
        color="gray",
        base_priority=NotificationPriority.LOW,
        persistent=False,
        family=KindFamily.INVENTORY,
        context_model=InventoryContext,
    ),
    NotificationKind.PRODUCT_ADDED: KindRule(
        title_template="Product Added",
        message_template="{productName} has been added to inventory",
        icon="PlusCircle",
        color="green",
        base_priority=NotificationPriority.LOW,
        persistent=False,
        family=KindFamily.INVENTORY,
        context_model=InventoryContext,
    ),
    NotificationKind.SALE_COMPLETED: KindRule(
        title_template="Sale Completed",
        message_template="Processed sale of {itemCount} items for {totalAmount}",
        icon="CheckCircle",
        color="green",
        base_priority=NotificationPriority.LOW,
        persistent=False,
        family=KindFamily.SALES,
        context_model=SalesContext,
    ),
    NotificationKind.SALES_TARGET: KindRule(
        title_template="Sales Target Reached",
        message_template="{period} sales reached {achieved} against a target of {target}",
        icon="Target",
        color="green",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.SALES,
        context_model=SalesContext,
    ),
    NotificationKind.DAILY_REPORT: KindRule(
        title_template="Daily Sales Report",
        message_template=(
            "{reportDate}: {transactionCount} transactions totalling {totalRevenue}"
        ),
        icon="FileText",
        color="blue",
        base_priority=NotificationPriority.LOW,
        persistent=False,
        family=KindFamily.REPORTS,
        context_model=ReportContext,
    ),
    NotificationKind.WEEKLY_REPORT: KindRule(
        title_template="Weekly Sales Report",
        message_template=(
            "Week ending {reportDate}: {transactionCount} transactions "
            "totalling {totalRevenue}"
        ),
        icon="BarChart",
        color="blue",
        base_priority=NotificationPriority.LOW,
        persistent=False,
        family=KindFamily.REPORTS,
        context_model=ReportContext,
    ),
    NotificationKind.SYSTEM_ALERT: KindRule(
        title_template="System Alert",
        message_template="{message}",
        icon="Info",
        color="blue",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.SYSTEM,
        context_model=SystemContext,
    ),
    NotificationKind.ERROR_ALERT: KindRule(
        title_template="System Error",
        message_template="An error occurred: {errorMessage}",
        icon="XCircle",
        color="red",
        base_priority=NotificationPriority.CRITICAL,
        persistent=True,
        family=KindFamily.SYSTEM,
        context_model=SystemContext,
    ),
    NotificationKind.ML_DEMAND_SPIKE: KindRule(
        title_template="Demand Surge Predicted",
        message_template=(
            "Demand for {productName} is expected to rise by {demandIncrease}% "
            "(confidence {confidence})"
        ),
        icon="TrendingUp",
        color="purple",
        base_priority=NotificationPriority.HIGH,
        persistent=False,
        family=KindFamily.ML,
        context_model=MlContext,
    ),
    NotificationKind.ML_PRICE_OPTIMIZATION: KindRule(
        title_template="Price Optimization Opportunity",
        message_template=(
            "Moving {productName} from {currentPrice} to {suggestedPrice} "
            "could add {additionalProfit} in profit"
        ),
        icon="DollarSign",
        color="green",
        base_priority=NotificationPriority.MEDIUM,
        persistent=False,
        family=KindFamily.ML,
        context_model=MlContext,
    ),
    NotificationKind.ML_ANOMALY: KindRule(
        title_template="Anomaly Detected",
        message_template="Unusual {metric} detected for {productName}: {description}",
        icon="Activity",
        color="orange",
        base_priority=NotificationPriority.HIGH,
        persistent=False,
        family=KindFamily.ML,
        context_model=MlContext,
        escalation=_escalate_ml_anomaly,
    ),
}

_unmapped = set(NotificationKind) - _CATALOG.keys()
if _unmapped:
    raise RuntimeError(f"Notification kinds without a catalog rule: {sorted(_unmapped)}")

CATALOG: Mapping[NotificationKind, KindRule] = MappingProxyType(_CATALOG)


def lookup(kind: NotificationKind | str) -> KindRule:
    """Return the catalog rule of `kind`.

    Parameters
    ----------
    kind : NotificationKind | str
        Kind enum member or its string value.

    Returns
    -------
    KindRule
        Rule used to build notifications of this kind.

    Raises
    ------
    UnknownKindError
        If `kind` is not a registered notification kind.
    """
    try:
        return CATALOG[NotificationKind(kind)]
    except (ValueError, KeyError) as e:
        raise UnknownKindError(kind) from e
