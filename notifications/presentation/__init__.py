from fastapi import APIRouter

from .notification import router as notification_router

router = APIRouter(
    tags=["notifications"],
    responses={401: {"description": "Missing X-Recipient-Id header"}},
)
router.include_router(notification_router)
