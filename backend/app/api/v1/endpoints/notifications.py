from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.deps import AdaptersDep, CurrentUser, DispatcherDep, SessionDep
from app.core.config import settings
from app.core.rate_limit import limiter
from app.models.notification import NotificationCategory
from app.models.push_token import DeviceClass
from app.schemas.notification import (
    NotificationCountResponse,
    NotificationListResponse,
    NotificationPreferencesRead,
    NotificationPreferencesUpdate,
    NotificationRead,
    SendBulkNotificationRequest,
    SendFollowerNotificationRequest,
    SendNotificationRequest,
    SendTestNotificationRequest,
)
from app.schemas.push import BulkSendResult, PushSendResult, ReceiptStatusResult
from app.services import notification_preferences
from app.services import push_fanout
from app.services import push_receipts
from app.services import user_notifications as notifications_service
from app.services.expo_push import is_expo_push_token
from app.services.push_providers import PushErrorCode, PushMessage

router = APIRouter()

_ERROR_STATUS = {
    PushErrorCode.TOKEN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PushErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PushErrorCode.NO_FOLLOWERS: status.HTTP_404_NOT_FOUND,
    PushErrorCode.NOTIFICATIONS_DISABLED: status.HTTP_409_CONFLICT,
    PushErrorCode.CATEGORY_DISABLED: status.HTTP_409_CONFLICT,
    PushErrorCode.INVALID_TOKEN: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PushErrorCode.DEVICE_NOT_REGISTERED: status.HTTP_410_GONE,
    PushErrorCode.KEY_FILE_MISSING: status.HTTP_503_SERVICE_UNAVAILABLE,
    PushErrorCode.INVALID_BUNDLE_ID: status.HTTP_503_SERVICE_UNAVAILABLE,
    PushErrorCode.PREFERENCES_NOT_FOUND: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PushErrorCode.FOLLOWERS_LOOKUP_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PushErrorCode.STORAGE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _result_response(result: BaseModel, error: Optional[PushErrorCode]) -> JSONResponse:
    status_code = _ERROR_STATUS.get(error, status.HTTP_502_BAD_GATEWAY)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    session: SessionDep,
    current_user: CurrentUser,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    category: Optional[NotificationCategory] = Query(default=None),
) -> NotificationListResponse:
    notifications, unread_count = await notifications_service.list_notifications(
        session,
        user_id=current_user.id,
        limit=limit,
        offset=offset,
        category=category,
    )
    return NotificationListResponse(notifications=notifications, unread_count=unread_count)


@router.get("/unread-count", response_model=NotificationCountResponse)
async def unread_notifications_count(
    session: SessionDep,
    current_user: CurrentUser,
) -> NotificationCountResponse:
    count = await notifications_service.unread_count(session, user_id=current_user.id)
    return NotificationCountResponse(unread_count=count)


@router.get("/preferences", response_model=NotificationPreferencesRead)
async def get_notification_preferences(
    session: SessionDep,
    current_user: CurrentUser,
) -> NotificationPreferencesRead:
    preferences = await notification_preferences.get_preferences(session, user_id=current_user.id)
    return NotificationPreferencesRead.model_validate(preferences)


@router.put("/preferences", response_model=NotificationPreferencesRead)
async def update_notification_preferences(
    session: SessionDep,
    current_user: CurrentUser,
    payload: NotificationPreferencesUpdate,
) -> NotificationPreferencesRead:
    preferences = await notification_preferences.upsert_preferences(
        session,
        user_id=current_user.id,
        changes=payload.model_dump(exclude_unset=True),
    )
    return NotificationPreferencesRead.model_validate(preferences)


@router.post("/send", response_model=PushSendResult)
@limiter.limit(settings.SEND_RATE_LIMIT)
async def send_notification(
    request: Request,
    session: SessionDep,
    current_user: CurrentUser,
    dispatcher: DispatcherDep,
    payload: SendNotificationRequest,
):
    """Send a push notification to one user."""
    message = PushMessage(
        category=payload.type,
        title=payload.title,
        body=payload.body,
        data=payload.data or {},
    )
    result = await dispatcher.send(session, payload.user_id, message)
    if not result.success:
        return _result_response(result, result.error)
    return result


@router.post("/send-bulk", response_model=BulkSendResult)
@limiter.limit(settings.SEND_RATE_LIMIT)
async def send_bulk_notifications(
    request: Request,
    session: SessionDep,
    current_user: CurrentUser,
    dispatcher: DispatcherDep,
    payload: SendBulkNotificationRequest,
):
    """Send the same notification to several users; per-user outcomes are in ``results``."""
    message = PushMessage(
        category=payload.type,
        title=payload.title,
        body=payload.body,
        data=payload.data or {},
    )
    result = await push_fanout.send_bulk(session, dispatcher, payload.user_ids, message)
    if not result.success:
        return _result_response(result, result.error)
    return result


@router.post("/send-to-followers", response_model=BulkSendResult)
@limiter.limit(settings.SEND_RATE_LIMIT)
async def send_to_followers(
    request: Request,
    session: SessionDep,
    current_user: CurrentUser,
    dispatcher: DispatcherDep,
    payload: SendFollowerNotificationRequest,
):
    message = push_fanout.follower_update_message(
        payload.followed_user_id,
        title=payload.title,
        body=payload.body,
        data=payload.data,
    )
    result = await push_fanout.send_to_followers(session, dispatcher, payload.followed_user_id, message)
    if not result.success:
        return _result_response(result, result.error)
    return result


@router.post("/test", response_model=PushSendResult)
@limiter.limit(settings.SEND_RATE_LIMIT)
async def send_test_notification(
    request: Request,
    current_user: CurrentUser,
    adapters: AdaptersDep,
    payload: SendTestNotificationRequest,
):
    """Send a fixed test notification straight to an Expo token, without storing it."""
    if not payload.token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Push token is required")
    if not is_expo_push_token(payload.token):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Expo push token")

    message = PushMessage(
        category=NotificationCategory.messages,
        title="Test Notification",
        body="This is a test notification from your server",
        data={"type": "test"},
    )
    delivery = await adapters[DeviceClass.managed].send(payload.token, message)
    if not delivery.success:
        result = PushSendResult.failure(delivery.error_code, delivery.error)
        return _result_response(result, result.error)
    return PushSendResult(
        success=True,
        ticket_ids=[delivery.ticket_id] if delivery.ticket_id else [],
    )


@router.put("/read-all", response_model=NotificationCountResponse)
async def mark_all_notifications_read(
    session: SessionDep,
    current_user: CurrentUser,
) -> NotificationCountResponse:
    await notifications_service.mark_all_notifications_read(session, user_id=current_user.id)
    count = await notifications_service.unread_count(session, user_id=current_user.id)
    return NotificationCountResponse(unread_count=count)


@router.get("/{notification_id}/status", response_model=ReceiptStatusResult)
async def notification_status(
    notification_id: int,
    session: SessionDep,
    current_user: CurrentUser,
    adapters: AdaptersDep,
):
    """Delivery receipts for the provider tickets stored on a notification."""
    result = await push_receipts.check_notification_status(session, adapters, notification_id)
    if not result.success:
        return _result_response(result, result.error)
    return result


@router.put("/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_read(
    notification_id: int,
    session: SessionDep,
    current_user: CurrentUser,
) -> NotificationRead:
    notification = await notifications_service.mark_notification_read(
        session,
        user_id=current_user.id,
        notification_id=notification_id,
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
