import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, NamedTuple

from loguru import logger

from config.base import Settings
from config.database import database_session_scope
from core.infrastructure.factory import get_redis_service
from core.infrastructure.logging import RequestContextLogger
from inventory.infrastructure.repositories import ProductInventorySource
from sales.infrastructure.repositories import SaleSalesSource

from ..application.dispatcher import utc_now
from ..application.rules import DeliverDigestRule, PurgeExpiredNotificationsRule
from ..application.scans import ExpiryScanRule, SalesReportRule, StockLevelScanRule
from ..domain.entities import DeliveryFrequency, NotificationKind, ScanReport
from .channels import SendGridEmailChannel
from .factory import build_dispatcher
from .repositories import NotificationRepository, PreferenceRepository
from .services import RedisNotificationPublisher


async def run_stock_scan(settings: Settings) -> ScanReport:
    async with database_session_scope() as session:
        publisher = RedisNotificationPublisher(await get_redis_service())
        return await StockLevelScanRule(
            inventory_source=ProductInventorySource(session),
            dispatcher=build_dispatcher(NotificationRepository(session), publisher),
            preference_repository=PreferenceRepository(session),
            recipient_ids=settings.alert_recipient_ids,
            default_reorder_level=settings.default_reorder_level,
        ).execute()


async def run_expiry_scan(settings: Settings) -> ScanReport:
    async with database_session_scope() as session:
        publisher = RedisNotificationPublisher(await get_redis_service())
        return await ExpiryScanRule(
            inventory_source=ProductInventorySource(session),
            dispatcher=build_dispatcher(NotificationRepository(session), publisher),
            preference_repository=PreferenceRepository(session),
            recipient_ids=settings.alert_recipient_ids,
            warning_days=settings.expiry_warning_days,
            critical_days=settings.expiry_critical_days,
        ).execute()


async def run_scans(settings: Settings) -> List[ScanReport]:
    """Run the stock and expiry scans concurrently, each on its own session.

    A failing scan is logged and left out of the result; it never cancels or
    hides the other one.
    """
    outcomes = await asyncio.gather(
        run_stock_scan(settings), run_expiry_scan(settings), return_exceptions=True
    )

    reports = []
    for name, outcome in zip(("stock_scan", "expiry_scan"), outcomes):
        if isinstance(outcome, BaseException):
            logger.opt(exception=outcome).error(
                f"🔴 {name} failed: {type(outcome).__name__}: {outcome}"
            )
            continue
        reports.append(outcome)

    return reports


async def run_sales_report(settings: Settings, kind: NotificationKind) -> ScanReport:
    async with database_session_scope() as session:
        publisher = RedisNotificationPublisher(await get_redis_service())
        return await SalesReportRule(
            sales_source=SaleSalesSource(session),
            dispatcher=build_dispatcher(NotificationRepository(session), publisher),
            preference_repository=PreferenceRepository(session),
            recipient_ids=settings.alert_recipient_ids,
            kind=kind,
        ).execute()


async def run_purge(settings: Settings) -> int:
    async with database_session_scope() as session:
        return await PurgeExpiredNotificationsRule(
            notification_repository=NotificationRepository(session),
            retention_days=settings.notification_retention_days,
        ).execute()


async def run_digest(settings: Settings, frequency: DeliveryFrequency) -> int:
    async with database_session_scope() as session:
        return await DeliverDigestRule(
            frequency=frequency,
            notification_repository=NotificationRepository(session),
            preference_repository=PreferenceRepository(session),
            publisher=RedisNotificationPublisher(await get_redis_service()),
            email_channel=SendGridEmailChannel(
                settings.sendgrid_api_key, settings.sendgrid_sender
            ),
        ).execute()


def seconds_until_next_run(interval: timedelta, now: datetime) -> float:
    """Seconds from `now` to the next multiple of `interval` since the UTC epoch.

    Daily jobs therefore fire at midnight UTC and hourly ones on the hour,
    whenever the process was started. A `now` exactly on a boundary waits a
    full interval.
    """
    period = interval.total_seconds()
    return period - (now.timestamp() % period)


class ScheduledJob(NamedTuple):
    name: str
    interval: timedelta
    run: Callable[[], Awaitable]
    # Idempotent jobs run once at startup instead of waiting for a boundary.
    run_at_start: bool = False


class NotificationScheduler:
    """Periodic background jobs of the notification pipeline.

    Every job runs as its own asyncio task, aligned on wall-clock multiples of
    its interval. Scans and the retention purge also run once at startup, so a
    process restarted more often than daily still enforces retention. A
    failing run is logged and the job keeps its schedule.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self._tasks: List[asyncio.Task] = []

    def jobs(self) -> List[ScheduledJob]:
        settings = self.settings
        return [
            ScheduledJob(
                "scans",
                timedelta(minutes=settings.scan_interval_minutes),
                lambda: run_scans(settings),
                run_at_start=True,
            ),
            ScheduledJob(
                "purge", timedelta(days=1), lambda: run_purge(settings), run_at_start=True
            ),
            ScheduledJob(
                "hourly_digest",
                timedelta(hours=1),
                lambda: run_digest(settings, DeliveryFrequency.HOURLY),
            ),
            ScheduledJob(
                "daily_digest",
                timedelta(days=1),
                lambda: run_digest(settings, DeliveryFrequency.DAILY),
            ),
            ScheduledJob(
                "daily_report",
                timedelta(days=1),
                lambda: run_sales_report(settings, NotificationKind.DAILY_REPORT),
            ),
            ScheduledJob(
                "weekly_report",
                timedelta(days=7),
                lambda: run_sales_report(settings, NotificationKind.WEEKLY_REPORT),
            ),
        ]

    def start(self) -> None:
        if self._tasks:
            return

        if not self.settings.alert_recipient_ids:
            logger.warning(
                "🟠 No ALERT_RECIPIENT_IDS configured, scans and reports will notify nobody"
            )

        for job in self.jobs():
            self._tasks.append(
                asyncio.create_task(self._run_periodically(job), name=job.name)
            )
        logger.info(f"⏰ Started {len(self._tasks)} notification jobs")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("⏰ Stopped notification jobs")

    async def _run_periodically(self, job: ScheduledJob) -> None:
        if job.run_at_start:
            await run_job(job.name, job.run)

        while True:
            await self.sleep(seconds_until_next_run(job.interval, self.clock()))
            await run_job(job.name, job.run)


async def run_job(name: str, job: Callable[[], Awaitable]):
    """Run one job inside its own log context; failures are logged, not raised."""
    async with RequestContextLogger(job=name):
        try:
            result = await job()
        except Exception as e:
            logger.exception(f"🔴 Job {name} failed: {type(e).__name__}: {e}")
            return None

        logger.debug(f"Job {name} finished: {result}")
        return result
