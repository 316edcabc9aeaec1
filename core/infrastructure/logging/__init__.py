from .base import setup_logging
from .context import RequestContextLogger, bind_log_context
from .middleware import RequestTrackingMiddleware

__all__ = [
    "setup_logging",
    "RequestContextLogger",
    "RequestTrackingMiddleware",
    "bind_log_context",
]
