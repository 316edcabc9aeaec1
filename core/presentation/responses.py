from typing import Any

from fastapi import status
from pydantic import BaseModel


class StandardResponse(BaseModel):
    """Base response envelope for all API operations.

    Attributes
    ----------
    success: bool, default=True
        Boolean indicating if API request was successful.
    data: Any, default=None
        Actual response data payload.
    """

    success: bool = True
    data: Any = None


class SuccessResponse(StandardResponse):
    """Envelope for successful reads and idempotent updates (HTTP 200 OK).

    Attributes
    ----------
    message: str, default="Resource action successful"
        Descriptive success message.
    status_code: int, default=200
        HTTP status code.
    """

    message: str = "Resource action successful"
    status_code: int = status.HTTP_200_OK


class CreatedResponse(StandardResponse):
    """Envelope for a pipeline run that stored a notification (HTTP 201 Created)."""

    message: str = "Resource creation successful"
    status_code: int = status.HTTP_201_CREATED
