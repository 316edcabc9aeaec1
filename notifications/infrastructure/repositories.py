import asyncio
import dataclasses
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import List

from loguru import logger
from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import and_, desc, select

from ..application.ports import NotificationRepository as DomainNotificationRepository
from ..application.ports import PreferenceRepository as DomainPreferenceRepository
from ..domain.entities import (
    DeliveryFrequency,
    DesktopPermission,
    KindFamily,
    NotificationKind,
    NotificationPriority,
)
from ..domain.entities import Notification as DomainNotification
from ..domain.entities import NotificationPreference as DomainNotificationPreference
from ..domain.exceptions import PersistenceError
from .models import Notification, NotificationPreference


def _as_utc(moment: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=UTC)


class _SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository with a database session.

        Parameters
        ----------
        session : AsyncSession
            Asynchronous SQLAlchemy database session
        """
        self._session = session

    @asynccontextmanager
    async def _guard(self, operation: str):
        """Roll back and raise `PersistenceError` on any database failure.

        A cancelled operation, such as one cut off by a timeout, is rolled back
        too so its pending changes never reach a later commit.
        """
        try:
            yield
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"📝 SQLAlchemyError while trying to {operation}: {type(e).__name__}")
            raise PersistenceError(f"Could not {operation}") from e
        except asyncio.CancelledError:
            await self._session.rollback()
            logger.warning(f"⏱️ Cancelled while trying to {operation}, rolled back")
            raise


class NotificationRepository(_SessionRepository, DomainNotificationRepository):
    """Concrete implementation of NotificationRepository for database-based notification management."""

    async def create(self, notification: DomainNotification) -> DomainNotification:
        """Create a new notification record in the database.

        Parameters
        ----------
        notification : DomainNotification
            Domain notification entity to be created

        Returns
        -------
        DomainNotification
            Created notification entity with database-assigned values

        Raises
        ------
        PersistenceError
            If the insert fails
        """
        table_notification = self._to_table_model(notification)

        async with self._guard("store notification"):
            self._session.add(table_notification)
            await self._session.commit()
            await self._session.refresh(table_notification)

        return self._to_domain_model(table_notification)

    async def get_recent_notifications(
        self, recipient_id: str, since: datetime
    ) -> List[DomainNotification]:
        query = (
            select(Notification)
            .where(
                and_(
                    Notification.recipient_id == recipient_id,
                    Notification.created_at >= since,
                )
            )
            .order_by(desc(Notification.created_at))
        )
        return await self._fetch(query, "read notification history")

    async def get_user_notifications(
        self,
        recipient_id: str,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
        family: KindFamily | None = None,
    ) -> List[DomainNotification]:
        """Retrieve notifications for a recipient with filtering options.

        Parameters
        ----------
        recipient_id : str
            Recipient whose notifications to list
        limit : int
            Maximum number of notifications to return
        offset : int
            Number of notifications to skip for pagination
        unread_only : bool
            If True, return only unread notifications
        family : KindFamily | None, default=None
            Filter by kind family

        Returns
        -------
        List[DomainNotification]
            List of notifications matching the criteria
        """
        query = select(Notification).where(Notification.recipient_id == recipient_id)

        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712

        if family:
            query = query.where(Notification.family == KindFamily(family).value)

        query = (
            query.order_by(desc(Notification.created_at)).limit(limit).offset(offset)
        )
        return await self._fetch(query, "list notifications")

    async def count_unread(self, recipient_id: str) -> int:
        query = (
            select(func.count())
            .select_from(Notification)
            .where(
                and_(
                    Notification.recipient_id == recipient_id,
                    Notification.is_read == False,  # noqa: E712
                )
            )
        )
        async with self._guard("count unread notifications"):
            result = await self._session.execute(query)
        return result.scalar_one()

    async def mark_as_read(self, notification_id: str, recipient_id: str) -> bool:
        """Mark a notification as read.

        Calling it again on a read notification changes nothing; `read_at`
        keeps the time of the first call.

        Parameters
        ----------
        notification_id : str
            ID of the notification
        recipient_id : str
            Recipient (for ownership verification)

        Returns
        -------
        bool
            True if the notification exists and belongs to the recipient
        """
        async with self._guard("mark notification as read"):
            result = await self._session.execute(
                select(Notification).where(
                    and_(
                        Notification.id == notification_id,
                        Notification.recipient_id == recipient_id,
                    )
                )
            )
            table_notification = result.scalars().first()

            if table_notification is None:
                return False

            if not table_notification.is_read:
                table_notification.is_read = True
                table_notification.read_at = datetime.now(tz=UTC)
                self._session.add(table_notification)
                await self._session.commit()

        return True

    async def mark_all_as_read(self, recipient_id: str) -> int:
        statement = (
            update(Notification)
            .where(
                and_(
                    Notification.recipient_id == recipient_id,
                    Notification.is_read == False,  # noqa: E712
                )
            )
            .values(is_read=True, read_at=datetime.now(tz=UTC))
            .execution_options(synchronize_session="fetch")
        )
        async with self._guard("mark all notifications as read"):
            result = await self._session.execute(statement)
            await self._session.commit()
        return result.rowcount or 0

    async def delete(self, notification_id: str, recipient_id: str) -> bool:
        statement = delete(Notification).where(
            and_(
                Notification.id == notification_id,
                Notification.recipient_id == recipient_id,
            )
        )
        async with self._guard("delete notification"):
            result = await self._session.execute(statement)
            await self._session.commit()
        return bool(result.rowcount)

    async def delete_all(self, recipient_id: str) -> int:
        statement = (
            delete(Notification)
            .where(Notification.recipient_id == recipient_id)
            .execution_options(synchronize_session="fetch")
        )
        async with self._guard("clear notifications"):
            result = await self._session.execute(statement)
            await self._session.commit()
        return result.rowcount or 0

    async def delete_older_than(self, cutoff: datetime) -> int:
        statement = (
            delete(Notification)
            .where(Notification.created_at < cutoff)
            .execution_options(synchronize_session="fetch")
        )
        async with self._guard("purge expired notifications"):
            result = await self._session.execute(statement)
            await self._session.commit()
        return result.rowcount or 0

    async def get_for_summary(
        self, recipient_id: str, unread_only: bool, since: datetime | None = None
    ) -> List[DomainNotification]:
        query = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        if since is not None:
            query = query.where(Notification.created_at >= since)
        return await self._fetch(query, "summarize notifications")

    async def get_missed_notifications(
        self, recipient_id: str, last_timestamp: datetime, limit: int = 50
    ) -> List[DomainNotification]:
        """Get unread notifications for a recipient created after a timestamp.

        Parameters
        ----------
        recipient_id : str
            Recipient of the notifications
        last_timestamp : datetime
            Timestamp to filter notifications created after
        limit : int
            Maximum number of notifications to return

        Returns
        -------
        List[DomainNotification]
            Notifications created after the timestamp, oldest first
        """
        query = (
            select(Notification)
            .where(
                and_(
                    Notification.recipient_id == recipient_id,
                    Notification.created_at > last_timestamp,
                    Notification.is_read == False,  # noqa: E712
                )
            )
            .order_by(Notification.created_at.asc())
            .limit(limit)
        )
        return await self._fetch(query, "read missed notifications")

    async def _fetch(self, query, operation: str) -> List[DomainNotification]:
        async with self._guard(operation):
            result = await self._session.execute(query)
            rows = result.scalars().all()
        return [self._to_domain_model(row) for row in rows]

    def _to_table_model(self, notification: DomainNotification) -> Notification:
        """Convert a domain notification entity to a table model.

        Parameters
        ----------
        notification : DomainNotification
            Domain entity to convert

        Returns
        -------
        Notification
            Table model instance
        """
        fields = dict(
            recipient_id=notification.recipient_id,
            kind=notification.kind.value,
            family=notification.family.value,
            title=notification.title,
            message=notification.message,
            priority=notification.priority.value,
            urgency_score=notification.urgency_score,
            action_required=notification.action_required,
            context=notification.context,
            dedup_key=notification.dedup_key,
            icon=notification.icon,
            color=notification.color,
            persistent=notification.persistent,
            is_read=notification.is_read,
            read_at=notification.read_at,
        )
        if notification.id:
            fields["id"] = notification.id
        if notification.created_at:
            fields["created_at"] = notification.created_at
        return Notification(**fields)

    def _to_domain_model(self, table_notification: Notification) -> DomainNotification:
        """Convert a table notification model to a domain entity.

        Parameters
        ----------
        table_notification : Notification
            Table model to convert

        Returns
        -------
        DomainNotification
            Domain notification entity instance
        """
        return DomainNotification(
            id=table_notification.id,
            recipient_id=table_notification.recipient_id,
            kind=NotificationKind(table_notification.kind),
            family=KindFamily(table_notification.family),
            title=table_notification.title,
            message=table_notification.message,
            priority=NotificationPriority(table_notification.priority),
            urgency_score=table_notification.urgency_score,
            action_required=table_notification.action_required,
            context=table_notification.context or {},
            dedup_key=table_notification.dedup_key,
            icon=table_notification.icon,
            color=table_notification.color,
            persistent=table_notification.persistent,
            is_read=table_notification.is_read,
            read_at=_as_utc(table_notification.read_at),
            created_at=_as_utc(table_notification.created_at),
        )


class PreferenceRepository(_SessionRepository, DomainPreferenceRepository):
    """Database-backed store of notification preferences."""

    async def get(self, recipient_id: str) -> DomainNotificationPreference:
        async with self._guard("read notification preferences"):
            row = await self._session.get(NotificationPreference, recipient_id)

        if row is None:
            return DomainNotificationPreference(recipient_id=recipient_id)
        return self._to_domain_model(row)

    async def save(
        self, preference: DomainNotificationPreference
    ) -> DomainNotificationPreference:
        async with self._guard("save notification preferences"):
            row = await self._session.get(
                NotificationPreference, preference.recipient_id
            )
            if row is None:
                row = NotificationPreference(recipient_id=preference.recipient_id)

            for field, value in self._to_row_values(preference).items():
                setattr(row, field, value)

            self._session.add(row)
            await self._session.commit()
            await self._session.refresh(row)

        return self._to_domain_model(row)

    async def reset(self, recipient_id: str) -> DomainNotificationPreference:
        statement = delete(NotificationPreference).where(
            NotificationPreference.recipient_id == recipient_id
        )
        async with self._guard("reset notification preferences"):
            await self._session.execute(statement)
            await self._session.commit()
        return DomainNotificationPreference(recipient_id=recipient_id)

    async def list_by_frequency(
        self, frequency: DeliveryFrequency
    ) -> List[DomainNotificationPreference]:
        query = select(NotificationPreference).where(
            NotificationPreference.frequency == DeliveryFrequency(frequency).value
        )
        async with self._guard("list notification preferences"):
            result = await self._session.execute(query)
            rows = result.scalars().all()
        return [self._to_domain_model(row) for row in rows]

    def _to_row_values(self, preference: DomainNotificationPreference) -> dict:
        values = {
            field.name: getattr(preference, field.name)
            for field in dataclasses.fields(preference)
            if field.name != "recipient_id"
        }
        values["desktop_permission"] = DesktopPermission(preference.desktop_permission).value
        values["frequency"] = DeliveryFrequency(preference.frequency).value
        values["updated_at"] = preference.updated_at or datetime.now(tz=UTC)
        return values

    def _to_domain_model(
        self, row: NotificationPreference
    ) -> DomainNotificationPreference:
        return DomainNotificationPreference(
            recipient_id=row.recipient_id,
            email_notifications=row.email_notifications,
            in_app_notifications=row.in_app_notifications,
            browser_notifications=row.browser_notifications,
            desktop_permission=DesktopPermission(row.desktop_permission),
            email_address=row.email_address,
            inventory_alerts=row.inventory_alerts,
            expiry_alerts=row.expiry_alerts,
            sales_alerts=row.sales_alerts,
            report_alerts=row.report_alerts,
            system_alerts=row.system_alerts,
            ml_alerts=row.ml_alerts,
            frequency=DeliveryFrequency(row.frequency),
            quiet_hours_enabled=row.quiet_hours_enabled,
            quiet_hours_start=row.quiet_hours_start,
            quiet_hours_end=row.quiet_hours_end,
            timezone=row.timezone,
            updated_at=_as_utc(row.updated_at),
        )
