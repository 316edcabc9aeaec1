import time
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from ..factory import get_data_sanitizer
from .context import RequestContextLogger

REQUEST_ID_HEADER = "X-Request-Id"
RECIPIENT_HEADER = "X-Recipient-Id"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Open a log context per request and log its outcome.

    The request id is taken from the `X-Request-Id` header when the caller
    provides one and echoed back on the response. Streaming responses
    (the SSE endpoint) are logged when their headers are sent, not when the
    stream ends.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        sanitizer = await get_data_sanitizer()
        started = time.perf_counter()

        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": self._get_client_ip(request),
            "recipient_id": request.headers.get(RECIPIENT_HEADER),
        }

        async with RequestContextLogger(
            request_id=request.headers.get(REQUEST_ID_HEADER), **context
        ) as scope:
            logger.info(f"Incoming {request.method} {request.url.path}")
            if request.url.query:
                logger.debug(
                    f"Query parameters: {sanitizer.sanitize_for_logging(request.url.query)}"
                )

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request failed: {sanitizer.sanitize_exception_for_logging(e)}"
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                f"Completed {request.method} {request.url.path} "
                f"with {response.status_code} in {elapsed_ms:.1f}ms"
            )
            response.headers[REQUEST_ID_HEADER] = scope.request_id
            return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
