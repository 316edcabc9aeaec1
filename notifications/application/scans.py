import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Sequence

from loguru import logger

from inventory.application.ports import InventorySource
from inventory.domain.entities import ProductSnapshot
from sales.application.ports import SalesSource

from ..domain.builder import build_notification
from ..domain.entities import NotificationKind, ScanReport
from ..domain.exceptions import PersistenceError, UnknownKindError
from .dispatcher import DEDUPLICATED, NotificationDispatcher, utc_now
from .ports import PreferenceRepository

MIN_CRITICAL_LEVEL = 5


def critical_level_for(reorder_level: int) -> int:
    """Stock level at or below which a product is critically low."""
    return max(math.floor(reorder_level * 0.5), MIN_CRITICAL_LEVEL)


class _ScanRule:
    """Shared fan-out of scan findings to every alert recipient.

    One failing subject or recipient never aborts the sweep: unknown kinds and
    persistence failures are logged, counted and skipped.
    """

    scan_name = "scan"

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        preference_repository: PreferenceRepository,
        recipient_ids: Sequence[str],
    ) -> None:
        self.dispatcher = dispatcher
        self.preference_repository = preference_repository
        self.recipient_ids = list(recipient_ids)
        self._tally = {"examined": 0, "dispatched": 0, "deduplicated": 0, "failed": 0}

    async def _notify(self, kind: NotificationKind, context: Dict[str, Any]) -> None:
        for recipient_id in self.recipient_ids:
            try:
                candidate = build_notification(kind, recipient_id, context)
                preference = await self.preference_repository.get(recipient_id)
                result = await self.dispatcher.dispatch(candidate, preference)
            except UnknownKindError as e:
                logger.error(f"🔴 {self.scan_name}: {e}, skipping")
                self._tally["failed"] += 1
                continue
            except PersistenceError as e:
                logger.error(
                    f"🔴 {self.scan_name}: could not dispatch {kind} to {recipient_id}: {e}"
                )
                self._tally["failed"] += 1
                continue

            if result.persisted:
                self._tally["dispatched"] += 1
            elif result.reason == DEDUPLICATED:
                self._tally["deduplicated"] += 1

    def _report(self) -> ScanReport:
        report = ScanReport(scan=self.scan_name, **self._tally)
        logger.info(
            f"🔎 {self.scan_name} finished: examined={report.examined} "
            f"dispatched={report.dispatched} deduplicated={report.deduplicated} "
            f"failed={report.failed}"
        )
        return report


class StockLevelScanRule(_ScanRule):
    """Notify alert recipients about products at or below their reorder level.

    A product at or below its critical level (half the reorder level, never
    less than 5) yields `critical_stock`, otherwise `low_stock`. Out-of-stock
    products are not scanned.
    """

    scan_name = "stock_scan"

    def __init__(
        self,
        inventory_source: InventorySource,
        dispatcher: NotificationDispatcher,
        preference_repository: PreferenceRepository,
        recipient_ids: Sequence[str],
        default_reorder_level: int = 10,
    ) -> None:
        super().__init__(dispatcher, preference_repository, recipient_ids)
        self.inventory_source = inventory_source
        self.default_reorder_level = default_reorder_level

    def classify(self, product: ProductSnapshot) -> NotificationKind | None:
        reorder_level = product.reorder_level or self.default_reorder_level
        if product.stock <= 0:
            return None
        if product.stock <= critical_level_for(reorder_level):
            return NotificationKind.CRITICAL_STOCK
        if product.stock <= reorder_level:
            return NotificationKind.LOW_STOCK
        return None

    async def execute(self) -> ScanReport:
        for product in await self.inventory_source.get_stocked_products():
            self._tally["examined"] += 1
            kind = self.classify(product)
            if kind is None:
                continue

            reorder_level = product.reorder_level or self.default_reorder_level
            await self._notify(
                kind,
                {
                    "productId": product.id,
                    "productName": product.name,
                    "currentStock": product.stock,
                    "reorderLevel": reorder_level,
                    "criticalLevel": critical_level_for(reorder_level),
                    "category": product.category,
                },
            )

        return self._report()


class ExpiryScanRule(_ScanRule):
    """Notify alert recipients about products approaching their expiry date.

    Products expiring within `critical_days` yield `expiry_critical`, those
    within `warning_days` yield `expiry_warning`. Expired products are skipped.
    """

    scan_name = "expiry_scan"

    def __init__(
        self,
        inventory_source: InventorySource,
        dispatcher: NotificationDispatcher,
        preference_repository: PreferenceRepository,
        recipient_ids: Sequence[str],
        warning_days: int = 30,
        critical_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(dispatcher, preference_repository, recipient_ids)
        self.inventory_source = inventory_source
        self.warning_days = warning_days
        self.critical_days = critical_days
        self.clock = clock

    async def execute(self) -> ScanReport:
        today = self.clock().date()
        products = await self.inventory_source.get_expiring_products(
            today=today, within_days=self.warning_days
        )

        for product in products:
            self._tally["examined"] += 1
            if product.expiry_date is None:
                continue

            days_left = (product.expiry_date - today).days
            if days_left < 0 or days_left > self.warning_days:
                continue

            kind = (
                NotificationKind.EXPIRY_CRITICAL
                if days_left <= self.critical_days
                else NotificationKind.EXPIRY_WARNING
            )
            await self._notify(
                kind,
                {
                    "productId": product.id,
                    "productName": product.name,
                    "expiryDate": product.expiry_date.isoformat(),
                    "daysUntilExpiry": days_left,
                    "currentStock": product.stock,
                },
            )

        return self._report()


class SalesReportRule(_ScanRule):
    """Send the sales report of the last complete period to alert recipients.

    The daily report covers yesterday (UTC); the weekly report covers the seven
    days ending yesterday. A period without sales still yields a report.
    """

    PERIODS = {
        NotificationKind.DAILY_REPORT: 1,
        NotificationKind.WEEKLY_REPORT: 7,
    }

    def __init__(
        self,
        sales_source: SalesSource,
        dispatcher: NotificationDispatcher,
        preference_repository: PreferenceRepository,
        recipient_ids: Sequence[str],
        kind: NotificationKind = NotificationKind.DAILY_REPORT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        kind = NotificationKind(kind)
        if kind not in self.PERIODS:
            raise ValueError(f"{kind} is not a sales report")

        super().__init__(dispatcher, preference_repository, recipient_ids)
        self.sales_source = sales_source
        self.kind = kind
        self.scan_name = kind.value
        self.clock = clock

    async def execute(self) -> ScanReport:
        last_day = self.clock().date() - timedelta(days=1)
        first_day = last_day - timedelta(days=self.PERIODS[self.kind] - 1)

        totals = await self.sales_source.get_sales_totals(first_day, last_day)
        self._tally["examined"] += 1
        await self._notify(
            self.kind,
            {
                "reportDate": last_day.isoformat(),
                "periodStart": first_day.isoformat(),
                "transactionCount": totals.transaction_count,
                "totalRevenue": totals.total_revenue,
            },
        )

        return self._report()
