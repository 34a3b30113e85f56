"""Shared contract for push provider adapters.

Each device class is served by exactly one adapter. Adapters never persist
anything and report every provider failure as a ``PushErrorCode`` so callers
can branch on one taxonomy regardless of provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Sequence

from app.models.notification import NotificationCategory
from app.models.push_token import DeviceClass

if TYPE_CHECKING:
    from app.core.config import Settings


class PushErrorCode(str, Enum):
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    PREFERENCES_NOT_FOUND = "PREFERENCES_NOT_FOUND"
    INVALID_TOKEN = "INVALID_TOKEN"
    DEVICE_NOT_REGISTERED = "DEVICE_NOT_REGISTERED"
    INVALID_BUNDLE_ID = "INVALID_BUNDLE_ID"
    KEY_FILE_MISSING = "KEY_FILE_MISSING"
    NOTIFICATIONS_DISABLED = "NOTIFICATIONS_DISABLED"
    CATEGORY_DISABLED = "CATEGORY_DISABLED"
    APNS_ERROR = "APNS_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NO_FOLLOWERS = "NO_FOLLOWERS"
    FOLLOWERS_LOOKUP_FAILED = "FOLLOWERS_LOOKUP_FAILED"
    NOT_FOUND = "NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"


# Provider-confirmed token failures; the token row is deleted when one is seen.
PERMANENT_TOKEN_ERRORS = frozenset(
    {PushErrorCode.DEVICE_NOT_REGISTERED, PushErrorCode.INVALID_TOKEN}
)


@dataclass
class PushMessage:
    category: NotificationCategory
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    success: bool
    ticket_id: Optional[str] = None
    error_code: Optional[PushErrorCode] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, ticket_id: Optional[str]) -> "DeliveryResult":
        return cls(success=True, ticket_id=ticket_id)

    @classmethod
    def failed(cls, error_code: PushErrorCode, error: Optional[str] = None) -> "DeliveryResult":
        return cls(success=False, error_code=error_code, error=error)


@dataclass
class PushReceipt:
    ticket_id: str
    status: str
    message: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class PushAdapter(Protocol):
    device_class: DeviceClass
    receipt_chunk_size: int

    async def send(self, token: str, message: PushMessage) -> DeliveryResult:
        ...

    async def get_receipts(self, ticket_ids: Sequence[str]) -> list[PushReceipt]:
        ...

    async def aclose(self) -> None:
        ...


def chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    """Split ``items`` into consecutive lists of at most ``size`` entries."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def mask_token(token: str) -> str:
    return f"{token[:20]}..."


def build_push_adapters(settings: "Settings") -> dict[DeviceClass, PushAdapter]:
    """Construct one adapter per device class from settings.

    Called once at startup; the resulting mapping is handed to the
    dispatcher and receipt reconciler.
    """
    from app.services.apns_push import APNsPushAdapter
    from app.services.expo_push import ExpoPushAdapter

    return {
        DeviceClass.managed: ExpoPushAdapter.from_settings(settings),
        DeviceClass.native_apple: APNsPushAdapter.from_settings(settings),
    }


async def close_push_adapters(adapters: Mapping[DeviceClass, PushAdapter]) -> None:
    for adapter in adapters.values():
        await adapter.aclose()
