import contextvars
import uuid
from typing import Any, Dict

log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


def bind_log_context(**values) -> None:
    """Merge values into the current log context without replacing it.

    Used once the recipient of a request is known, after the middleware
    has already opened the request scope.
    """
    log_context.set({**log_context.get({}), **values})


class RequestContextLogger:
    """Async context manager scoping log enrichment to one unit of work.

    A unit of work is an HTTP request, a scheduled job run or a CLI command.
    Every log record emitted inside the scope carries `request_id` plus the
    given context values.
    """

    def __init__(self, request_id: str | None = None, **context):
        self.request_id = request_id or uuid.uuid4().hex[:8]
        self.context = {"request_id": self.request_id, **context}
        self.token = None

    async def __aenter__(self):
        self.token = log_context.set({**log_context.get({}), **self.context})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            log_context.reset(self.token)
            self.token = None
