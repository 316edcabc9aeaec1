from datetime import timedelta

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.base import get_settings
from config.database import get_database_session
from core.infrastructure.factory import get_redis_service

from ..application.dispatcher import NotificationDispatcher
from ..application.ports import NotificationPublisher
from ..application.ports import NotificationRepository as DomainNotificationRepository
from .channels import DesktopChannel, InAppChannel, SendGridEmailChannel
from .repositories import NotificationRepository, PreferenceRepository
from .services import RedisNotificationChannelManager, RedisNotificationPublisher


async def get_notification_channel_manager() -> RedisNotificationChannelManager:
    """Provide a RedisNotificationChannelManager instance.

    Returns
    -------
    RedisNotificationChannelManager
        Instance of RedisNotificationChannelManager
    """
    redis_service = await get_redis_service()
    return RedisNotificationChannelManager(redis_service)


async def get_notification_publisher() -> RedisNotificationPublisher:
    """Provide a RedisNotificationPublisher instance.

    Returns
    -------
    RedisNotificationPublisher
        Instance of RedisNotificationPublisher
    """
    redis_service = await get_redis_service()
    return RedisNotificationPublisher(redis_service)


async def get_notification_repository(
    session: AsyncSession = Depends(get_database_session),
) -> NotificationRepository:
    """Provide a NotificationRepository instance.

    Parameters
    ----------
    session : AsyncSession
        Asynchronous SQLAlchemy database session, injected as a dependency

    Returns
    -------
    NotificationRepository
        Instance of NotificationRepository
    """
    return NotificationRepository(session)


async def get_preference_repository(
    session: AsyncSession = Depends(get_database_session),
) -> PreferenceRepository:
    return PreferenceRepository(session)


def get_email_channel() -> SendGridEmailChannel:
    settings = get_settings()
    return SendGridEmailChannel(settings.sendgrid_api_key, settings.sendgrid_sender)


def build_dispatcher(
    notification_repository: DomainNotificationRepository, publisher: NotificationPublisher
) -> NotificationDispatcher:
    """Assemble a dispatcher with the configured channels and thresholds.

    Shared by the request dependency, the scheduler and the CLI.
    """
    settings = get_settings()
    return NotificationDispatcher(
        notification_repository=notification_repository,
        channels=[
            InAppChannel(publisher),
            DesktopChannel(publisher),
            get_email_channel(),
        ],
        cooldown=timedelta(seconds=settings.notification_cooldown_seconds),
        profit_threshold=settings.urgency_profit_threshold,
        persist_timeout=settings.notification_persist_timeout_seconds,
    )


async def get_notification_dispatcher(
    notification_repository: NotificationRepository = Depends(
        get_notification_repository
    ),
    publisher: RedisNotificationPublisher = Depends(get_notification_publisher),
) -> NotificationDispatcher:
    """Provide a NotificationDispatcher bound to the request's session.

    Returns
    -------
    NotificationDispatcher
        Instance of NotificationDispatcher
    """
    return build_dispatcher(notification_repository, publisher)
