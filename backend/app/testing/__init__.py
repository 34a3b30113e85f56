"""
Shared test utilities and factories.

Re-exports all factory functions for convenient imports:
    from app.testing import create_user, create_push_token, get_auth_headers
"""

from app.testing.factories import (
    apns_token,
    create_follower,
    create_notification,
    create_preferences,
    create_push_token,
    create_user,
    expo_token,
    get_auth_headers,
    get_auth_token,
)
from app.testing.fakes import FakePushAdapter

__all__ = [
    "FakePushAdapter",
    "apns_token",
    "create_follower",
    "create_notification",
    "create_preferences",
    "create_push_token",
    "create_user",
    "expo_token",
    "get_auth_headers",
    "get_auth_token",
]
