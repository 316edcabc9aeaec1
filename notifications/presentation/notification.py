import asyncio
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from config.base import Settings, get_settings
from core.presentation.dependencies import get_current_recipient
from core.presentation.responses import CreatedResponse, SuccessResponse
from inventory.infrastructure.factory import get_inventory_source
from sales.infrastructure.factory import get_sales_source

from ..application.rules import (
    ClearAllNotificationsRule,
    DeleteNotificationRule,
    EstablishSSEConnectionRule,
    GenerateNotificationRule,
    GetActivePreferencesRule,
    GetDashboardSummaryRule,
    GetUserNotificationsRule,
    MarkAllNotificationsReadRule,
    MarkNotificationReadRule,
    ResetPreferencesRule,
    UpdatePreferencesRule,
)
from ..application.scans import ExpiryScanRule, SalesReportRule, StockLevelScanRule
from ..domain.entities import KindFamily, NotificationKind, SummaryWindow
from ..infrastructure.factory import (
    get_notification_channel_manager,
    get_notification_dispatcher,
    get_notification_publisher,
    get_notification_repository,
    get_preference_repository,
)
from .requests import GenerateNotificationRequest, UpdatePreferencesRequest
from .responses import (
    DashboardSummaryResponse,
    DispatchResultResponse,
    NotificationListResponse,
    NotificationResponse,
    PreferenceResponse,
    ScanReportResponse,
)

router = APIRouter(prefix="/notifications")

REPORT_KINDS = {
    "daily": NotificationKind.DAILY_REPORT,
    "weekly": NotificationKind.WEEKLY_REPORT,
}


@router.post("/", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def generate_notification(
    request: GenerateNotificationRequest,
    dispatcher=Depends(get_notification_dispatcher),
    preference_repository=Depends(get_preference_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Run the notification pipeline for one kind and context.

    Builds the notification, drops it if an unread duplicate is still within
    the cooldown window, stores it and fans it out to the recipient's channels.

    Parameters
    ----------
    request : GenerateNotificationRequest
        Kind, optional recipient (defaults to the caller) and context
    dispatcher
        Dependency-injected notification dispatcher
    preference_repository
        Dependency-injected preference repository
    recipient_id : str
        Calling recipient

    Returns
    -------
    SuccessResponse
        201 with the stored notification, or 200 when it was deduplicated
    """
    result = await GenerateNotificationRule(
        kind=request.kind,
        recipient_id=request.recipient_id or recipient_id,
        context=request.context,
        dispatcher=dispatcher,
        preference_repository=preference_repository,
    ).execute()

    data = DispatchResultResponse.from_domain(result)
    if not result.persisted:
        response = SuccessResponse(data=data, message="Notification suppressed as duplicate")
        return JSONResponse(
            status_code=status.HTTP_200_OK, content=response.model_dump(mode="json")
        )

    return CreatedResponse(data=data, message="Notification created successfully")


@router.get("/", response_model=SuccessResponse, status_code=status.HTTP_200_OK)
async def get_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = False,
    family: KindFamily | None = None,
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Get a page of the caller's notifications, newest first.

    Parameters
    ----------
    limit : int
        Maximum number of notifications to return (1-100)
    offset : int
        Number of notifications to skip for pagination
    unread_only : bool
        If True, return only unread notifications
    family : KindFamily | None
        Filter by kind family
    notification_repository
        Dependency-injected notification repository
    recipient_id : str
        Calling recipient

    Returns
    -------
    SuccessResponse
        Response containing the page and the unread count
    """
    notifications, unread_count = await GetUserNotificationsRule(
        recipient_id=recipient_id,
        notification_repository=notification_repository,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        family=family,
    ).execute()

    return SuccessResponse(
        data=NotificationListResponse(
            notifications=[NotificationResponse.from_domain(n) for n in notifications],
            total=len(notifications),
            unread_count=unread_count,
        ),
        message="Notifications retrieved successfully",
    )


@router.get("/summary", response_model=SuccessResponse)
async def get_dashboard_summary(
    window: SummaryWindow = SummaryWindow.UNREAD,
    notification_repository=Depends(get_notification_repository),
    settings: Settings = Depends(get_settings),
    recipient_id: str = Depends(get_current_recipient),
):
    """Counts for the dashboard widget, over unread or recent notifications."""
    summary = await GetDashboardSummaryRule(
        recipient_id=recipient_id,
        notification_repository=notification_repository,
        window=window,
        retention_days=settings.notification_retention_days,
    ).execute()

    return SuccessResponse(
        data=DashboardSummaryResponse.from_domain(summary),
        message="Summary retrieved successfully",
    )


@router.put("/read-all", response_model=SuccessResponse)
async def mark_all_notifications_read(
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    updated = await MarkAllNotificationsReadRule(
        recipient_id=recipient_id, notification_repository=notification_repository
    ).execute()

    return SuccessResponse(
        data={"marked_as_read": updated}, message="All notifications marked as read"
    )


@router.put("/read/{notification_id}", response_model=SuccessResponse)
async def mark_notification_read(
    notification_id: str,
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Mark a specific notification as read.

    Marking an already read notification again succeeds without changing it.

    Parameters
    ----------
    notification_id : str
        ID of the notification to mark as read
    notification_repository
        Dependency-injected notification repository
    recipient_id : str
        Calling recipient

    Returns
    -------
    SuccessResponse
        Response indicating whether the notification was found
    """
    success = await MarkNotificationReadRule(
        notification_id=notification_id,
        recipient_id=recipient_id,
        notification_repository=notification_repository,
    ).execute()

    return SuccessResponse(
        data={"marked_as_read": success},
        message=(
            "Notification marked as read" if success else "Notification not found"
        ),
    )


@router.get("/preferences", response_model=SuccessResponse)
async def get_preferences(
    preference_repository=Depends(get_preference_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    preference = await GetActivePreferencesRule(
        recipient_id=recipient_id, preference_repository=preference_repository
    ).execute()

    return SuccessResponse(
        data=PreferenceResponse.from_domain(preference),
        message="Preferences retrieved successfully",
    )


@router.patch("/preferences", response_model=SuccessResponse)
async def update_preferences(
    request: UpdatePreferencesRequest,
    preference_repository=Depends(get_preference_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Update only the preference fields present in the request body."""
    preference = await UpdatePreferencesRule(
        recipient_id=recipient_id,
        changes=request.changes(),
        preference_repository=preference_repository,
    ).execute()

    return SuccessResponse(
        data=PreferenceResponse.from_domain(preference),
        message="Preferences updated successfully",
    )


@router.delete("/preferences", response_model=SuccessResponse)
async def reset_preferences(
    preference_repository=Depends(get_preference_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    preference = await ResetPreferencesRule(
        recipient_id=recipient_id, preference_repository=preference_repository
    ).execute()

    return SuccessResponse(
        data=PreferenceResponse.from_domain(preference),
        message="Preferences reset to defaults",
    )


@router.post("/scans/run", response_model=SuccessResponse)
async def run_scans(
    inventory_source=Depends(get_inventory_source),
    dispatcher=Depends(get_notification_dispatcher),
    preference_repository=Depends(get_preference_repository),
    settings: Settings = Depends(get_settings),
    recipient_id: str = Depends(get_current_recipient),
):
    """Run the stock and expiry scans now.

    Findings go to the configured alert recipients, or to the caller when
    none are configured. Both scans share the request's session, so they run
    one after the other.
    """
    recipient_ids = settings.alert_recipient_ids or [recipient_id]

    stock_report = await StockLevelScanRule(
        inventory_source=inventory_source,
        dispatcher=dispatcher,
        preference_repository=preference_repository,
        recipient_ids=recipient_ids,
        default_reorder_level=settings.default_reorder_level,
    ).execute()
    expiry_report = await ExpiryScanRule(
        inventory_source=inventory_source,
        dispatcher=dispatcher,
        preference_repository=preference_repository,
        recipient_ids=recipient_ids,
        warning_days=settings.expiry_warning_days,
        critical_days=settings.expiry_critical_days,
    ).execute()

    return SuccessResponse(
        data=[
            ScanReportResponse.from_domain(stock_report),
            ScanReportResponse.from_domain(expiry_report),
        ],
        message="Scans completed",
    )


@router.post("/reports/run", response_model=SuccessResponse)
async def run_sales_report(
    period: Literal["daily", "weekly"] = Query("daily"),
    sales_source=Depends(get_sales_source),
    dispatcher=Depends(get_notification_dispatcher),
    preference_repository=Depends(get_preference_repository),
    settings: Settings = Depends(get_settings),
    recipient_id: str = Depends(get_current_recipient),
):
    """Send the sales report of the last complete day or week now."""
    report = await SalesReportRule(
        sales_source=sales_source,
        dispatcher=dispatcher,
        preference_repository=preference_repository,
        recipient_ids=settings.alert_recipient_ids or [recipient_id],
        kind=REPORT_KINDS[period],
    ).execute()

    return SuccessResponse(
        data=ScanReportResponse.from_domain(report), message="Sales report sent"
    )


@router.delete("/", response_model=SuccessResponse)
async def clear_notifications(
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Delete every notification of the caller."""
    cleared = await ClearAllNotificationsRule(
        recipient_id=recipient_id, notification_repository=notification_repository
    ).execute()

    return SuccessResponse(data={"deleted": cleared}, message="Notifications cleared")


@router.delete("/{notification_id}", response_model=SuccessResponse)
async def delete_notification(
    notification_id: str,
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Delete a notification; deleting a missing one still succeeds."""
    deleted = await DeleteNotificationRule(
        notification_id=notification_id,
        recipient_id=recipient_id,
        notification_repository=notification_repository,
    ).execute()

    return SuccessResponse(data={"deleted": deleted}, message="Notification deleted")


@router.get("/stream", response_class=StreamingResponse)
async def stream_notifications(
    publisher=Depends(get_notification_publisher),
    channel_manager=Depends(get_notification_channel_manager),
    notification_repository=Depends(get_notification_repository),
    recipient_id: str = Depends(get_current_recipient),
):
    """Establish Server-Sent Events connection for real-time notifications.

    Opens a persistent connection streaming the caller's notifications,
    preceded by the unread ones missed since the last connection.

    Parameters
    ----------
    publisher
        Dependency-injected notification publisher
    channel_manager
        Dependency-injected channel manager
    notification_repository
        Dependency-injected notification repository
    recipient_id : str
        Calling recipient

    Returns
    -------
    StreamingResponse
        SSE stream of notifications
    """
    sse_rule = EstablishSSEConnectionRule(
        recipient_id=recipient_id,
        publisher=publisher,
        channel_manager=channel_manager,
        notification_repository=notification_repository,
    )

    async def event_generator():
        try:
            async for event in sse_rule.execute():
                yield event
        except asyncio.CancelledError:
            logger.info(f"SSE connection cancelled for {recipient_id}")
            raise
        except Exception as e:
            logger.error(f"🔴 SSE error for {recipient_id}: {type(e).__name__}: {e}")
            yield 'data: {"type": "error", "message": "Connection error"}\n\n'

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
