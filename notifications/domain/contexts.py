from datetime import date
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class NotificationContext(BaseModel):
    """Base of the per-family context payloads.

    Keys are accepted in camelCase or snake_case and normalized to camelCase.
    Fields are optional because triggers supply what they know; unknown keys
    are kept so nothing a trigger sends is lost.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def normalized(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InventoryContext(NotificationContext):
    product_id: int | str | None = None
    product_name: str | None = None
    current_stock: int | None = None
    reorder_level: int | None = None
    critical_level: int | None = None
    suggested_quantity: int | None = None
    adjustment: int | None = None
    reason: str | None = None
    category: str | None = None


class ExpiryContext(NotificationContext):
    product_id: int | str | None = None
    product_name: str | None = None
    expiry_date: date | None = None
    days_until_expiry: int | None = None
    batch_number: str | None = None
    current_stock: int | None = None


class SalesContext(NotificationContext):
    sale_id: int | str | None = None
    total_amount: float | None = None
    item_count: int | None = None
    payment_method: str | None = None
    period: str | None = None
    target: float | None = None
    achieved: float | None = None


class ReportContext(NotificationContext):
    report_date: date | None = None
    period_start: date | None = None
    transaction_count: int | None = None
    total_revenue: float | None = None
    top_product: str | None = None


class SystemContext(NotificationContext):
    subject_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    message: str | None = None
    component: str | None = None


class MlContext(NotificationContext):
    product_id: int | str | None = None
    product_name: str | None = None
    confidence: float | None = None
    additional_profit: float | None = None
    potential_revenue: float | None = None
    revenue_impact: float | None = None
    demand_increase: float | None = None
    current_price: float | None = None
    suggested_price: float | None = None
    metric: str | None = None
    description: str | None = None
    severity: str | None = None
