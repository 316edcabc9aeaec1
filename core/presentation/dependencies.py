from fastapi import Header, HTTPException, status

from core.infrastructure.logging import bind_log_context


async def get_current_recipient(
    x_recipient_id: str | None = Header(default=None, max_length=128),
) -> str:
    """Resolve the calling recipient from the `X-Recipient-Id` header.

    Authentication happens upstream; the gateway forwards the authenticated
    user's identifier in this header.

    Returns
    -------
    str
        Recipient identifier.

    Raises
    ------
    HTTPException
        401 if the header is missing or blank.
    """
    recipient_id = (x_recipient_id or "").strip()
    if not recipient_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Recipient-Id header",
        )

    bind_log_context(recipient_id=recipient_id)
    return recipient_id
