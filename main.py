import uvicorn
from loguru import logger

from config.base import get_settings
from core.infrastructure.logging import RequestTrackingMiddleware, setup_logging


def create_app():
    """Create and configure the FastAPI application instance.

    Sets up the lifespan (logging, tables, Redis check, background jobs),
    middleware, exception handlers and the notifications router.

    Returns
    -------
    FastAPI
        Deployment-ready FastAPI instance.
    """
    from contextlib import asynccontextmanager

    from fastapi import FastAPI, HTTPException
    from fastapi.exceptions import RequestValidationError, ResponseValidationError
    from pydantic import ValidationError
    from sqlalchemy.exc import SQLAlchemyError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from config.database import close_database_engine, create_tables
    from core.infrastructure.exceptions import global_exception_handler
    from core.infrastructure.factory import close_redis_service, get_redis_service
    from notifications.domain.exceptions import NotificationError
    from notifications.infrastructure.scheduler import NotificationScheduler
    from notifications.presentation import router as notification_router

    @asynccontextmanager
    async def custom_lifespan(app):
        """Manage application startup and shutdown.

        Redis is optional at startup: notifications are still stored without
        it and realtime delivery degrades to per-channel warnings.

        Parameters
        ----------
        app : FastAPI
            FastAPI application instance.

        Yields
        ------
        None
            Control to the application between startup and shutdown.

        Raises
        ------
        Exception
            If database table creation fails.
        """
        setup_logging()
        settings = get_settings()

        try:
            logger.debug("🔧 Creating non-existent database tables...")
            await create_tables()
        except Exception as e:
            logger.error(f"📝 Table creation failed: {e}")
            raise e

        try:
            logger.debug("🔧 Initializing Redis connection...")
            redis_service = await get_redis_service()
            ping_result = await redis_service.ping()
            logger.info(f"🟢 Redis pinged: {ping_result}.")
        except Exception as e:
            logger.warning(f"🟠 Redis unavailable, realtime delivery will fail: {e}")

        scheduler = NotificationScheduler(settings)
        if settings.scheduler_enabled:
            scheduler.start()

        logger.info("🟢 Application startup completed.")
        logger.info("🚀✨ Pharmacy notification service is now running!")

        yield

        logger.debug("🔧 Starting shutdown cleanup...")
        await scheduler.stop()

        try:
            logger.debug("🔧 Closing Redis connection...")
            await close_redis_service()
        except Exception as e:
            logger.error(f"🟠 Error closing Redis: {e}")

        try:
            logger.debug("🔧 Closing database connections...")
            await close_database_engine()
        except Exception as e:
            logger.error(f"🟠 Error closing database: {e}")

        logger.debug("👋 Application shutting down...")

    app = FastAPI(title="Pharmacy Notifications", lifespan=custom_lifespan)

    app.add_middleware(RequestTrackingMiddleware)

    for exception_class in (
        NotificationError,
        ValueError,
        SQLAlchemyError,
        ValidationError,
        RequestValidationError,
        ResponseValidationError,
        HTTPException,
        StarletteHTTPException,
        Exception,
    ):
        app.add_exception_handler(exception_class, global_exception_handler)

    app.include_router(notification_router)

    return app


if __name__ == "__main__":
    setup_logging()
    settings = get_settings()
    logger.debug(
        f"🟢 Starting pharmacy notifications in '{settings.environment.upper()}' mode!"
    )
    uvicorn.run(
        "main:create_app",
        port=8001,
        reload=settings.debug,
        factory=True,
        log_config=None,
        ssl_keyfile=settings.ssl_keyfile_path,
        ssl_certfile=settings.ssl_certfile_path,
    )
