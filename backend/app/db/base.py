"""Import all models for metadata creation."""

from app.models.follower import Follower
from app.models.notification import Notification
from app.models.notification_preference import NotificationPreference
from app.models.push_token import PushToken
from app.models.user import User

__all__ = [
    "User",
    "Follower",
    "PushToken",
    "NotificationPreference",
    "Notification",
]
