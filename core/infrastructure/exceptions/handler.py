import traceback
from typing import Any, Dict, List

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from notifications.domain.exceptions import (
    NotificationError,
    PersistenceError,
    UnknownKindError,
)

from ..factory import get_data_sanitizer

HTTP_MESSAGES = {
    status.HTTP_400_BAD_REQUEST: "Bad request",
    status.HTTP_401_UNAUTHORIZED: "Authentication required",
    status.HTTP_403_FORBIDDEN: "Permission denied",
    status.HTTP_404_NOT_FOUND: "Resource not found",
    status.HTTP_409_CONFLICT: "Conflict occurred",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "Validation error",
    status.HTTP_429_TOO_MANY_REQUESTS: "Rate limit exceeded",
}


def normalize_error_detail(detail: Any) -> str | List[str]:
    """Normalize an `HTTPException` detail to a string or a list of strings.

    Parameters
    ----------
    detail: Any
        Raw detail: a string, a mapping of field to messages, or a sequence.

    Returns
    -------
    str | List[str]
        The detail as a single message or a list of messages.
    """
    if isinstance(detail, str):
        return detail

    if isinstance(detail, dict):
        messages = []
        for value in detail.values():
            if isinstance(value, (list, tuple)):
                messages.extend(str(item) for item in value)
            else:
                messages.append(str(value))
        return messages[0] if len(messages) == 1 else messages

    if isinstance(detail, (list, tuple)):
        return [str(item) for item in detail]

    return str(detail)


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    errors: Dict[str, Any],
    headers: Dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "success": False,
            "message": message,
            "errors": errors,
            "status_code": status_code,
            "path": str(request.url),
            "method": request.method,
        },
    )


def _validation_errors(exc) -> Dict[str, Any]:
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"])
        errors[field or "detail"] = error["msg"]
    return errors


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map exceptions raised while serving a request to the JSON error envelope.

    Notification pipeline errors map to 422 (unknown kind) and 503 (store
    unavailable, with a `Retry-After` header so clients retry instead of
    assuming success). Sensitive details are sanitized before logging.

    Parameters
    ----------
    request: Request
        Incoming request.
    exc: Exception
        Exception that escaped the route.

    Returns
    -------
    JSONResponse
        Error envelope with `success=false`.
    """
    sanitizer = await get_data_sanitizer()
    exc_msg = sanitizer.sanitize_exception_for_logging(exc)

    if isinstance(exc, UnknownKindError):
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Unknown notification kind",
            {"kind": str(exc.kind)},
        )

    if isinstance(exc, PersistenceError):
        logger.error(f"📝 PersistenceError -> {exc_msg}")
        return _error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Notification store unavailable",
            {"detail": "The notification store is unavailable, retry later"},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    if isinstance(exc, NotificationError):
        return _error_response(
            request, status.HTTP_400_BAD_REQUEST, "Notification error", {"detail": str(exc)}
        )

    if isinstance(exc, (ValidationError, RequestValidationError, ResponseValidationError)):
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation error",
            _validation_errors(exc),
        )

    if isinstance(exc, ValueError):
        return _error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "Invalid field items",
            {"detail": str(exc)},
        )

    if isinstance(exc, SQLAlchemyError):
        logger.error(f"📝 SQLAlchemyError -> {exc_msg}")
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Database error occurred",
            {"detail": "A database error occurred"},
        )

    if isinstance(exc, (HTTPException, StarletteHTTPException)):
        message = HTTP_MESSAGES.get(exc.status_code, "HTTP error occurred")
        if exc.status_code >= 500:
            message = "Internal server error"
        return _error_response(
            request,
            exc.status_code,
            message,
            {"detail": normalize_error_detail(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    tb = traceback.extract_tb(exc.__traceback__)
    if tb:
        last_frame = tb[-1]
        location = f'File "{last_frame.filename}", line {last_frame.lineno}, in {last_frame.name}'
    else:
        location = "No traceback available"

    logger.critical(f"☢️ Unhandled exception -> {exc_msg}\nLocation: {location}")

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        {"detail": "An unexpected error occurred"},
    )
