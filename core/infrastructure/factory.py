from functools import lru_cache

from config.base import get_settings

from .services import DataSanitizer, RedisService

_redis_service: RedisService | None = None


@lru_cache
def _shared_sanitizer() -> DataSanitizer:
    return DataSanitizer()


async def get_data_sanitizer() -> DataSanitizer:
    """Provide the shared `DataSanitizer`; it only holds compiled patterns.

    Returns
    -------
    DataSanitizer
        Process-wide sanitizer instance.
    """
    return _shared_sanitizer()


async def get_redis_service() -> RedisService:
    """Provide the process-wide `RedisService`, built from settings on first use.

    The realtime publisher, the SSE connection registry and the scheduled jobs
    all go through it and so share one connection pool.

    Returns
    -------
    RedisService
        Shared Redis service.
    """
    global _redis_service

    if _redis_service is None:
        _redis_service = RedisService(get_settings())

    return _redis_service


async def close_redis_service() -> None:
    """Close the shared pool; the next `get_redis_service` call opens a new one."""
    global _redis_service

    if _redis_service is not None:
        service, _redis_service = _redis_service, None
        await service.close()
