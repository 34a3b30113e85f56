from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.notification import NotificationCategory


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: NotificationCategory
    title: str
    body: str
    data: dict[str, Any]
    read: bool
    created_at: datetime
    updated_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationRead]
    unread_count: int


class NotificationCountResponse(BaseModel):
    unread_count: int


class NotificationPreferencesRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool = True
    messages: bool = True
    following: bool = True
    readings: bool = True
    promotions: bool = False
    daily_horoscope: bool = True
    moon_phases: bool = True
    planetary_transits: bool = True


class NotificationPreferencesUpdate(BaseModel):
    enabled: Optional[bool] = None
    messages: Optional[bool] = None
    following: Optional[bool] = None
    readings: Optional[bool] = None
    promotions: Optional[bool] = None
    daily_horoscope: Optional[bool] = None
    moon_phases: Optional[bool] = None
    planetary_transits: Optional[bool] = None


class SendNotificationRequest(BaseModel):
    user_id: int
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)
    data: Optional[dict[str, Any]] = None
    type: NotificationCategory = NotificationCategory.messages


class SendBulkNotificationRequest(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)
    data: Optional[dict[str, Any]] = None
    type: NotificationCategory = NotificationCategory.messages


class SendFollowerNotificationRequest(BaseModel):
    followed_user_id: int
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)
    data: Optional[dict[str, Any]] = None


class SendTestNotificationRequest(BaseModel):
    """Device token to receive a fixed test notification."""

    token: Optional[str] = None
