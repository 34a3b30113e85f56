from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.push_token import DeviceClass
from app.services.push_providers import PushErrorCode


class PushTokenRegisterRequest(BaseModel):
    """Request body for registering a push notification token."""

    push_token: str = Field(min_length=1, max_length=512)
    device_class: DeviceClass = DeviceClass.managed


class PushTokenUnregisterRequest(BaseModel):
    """Request body for unregistering a push notification token."""

    push_token: str = Field(min_length=1, max_length=512)


class PushTokenResponse(BaseModel):
    """Generic response for push token operations."""
    model_config = ConfigDict(json_schema_serialization_defaults_required=True)

    status: str


class PushSendResult(BaseModel):
    """Outcome of a single dispatch; failures are values, not exceptions."""

    success: bool
    notification_id: Optional[int] = None
    ticket_ids: list[str] = Field(default_factory=list)
    error: Optional[PushErrorCode] = None
    detail: Optional[str] = None

    @classmethod
    def failure(cls, error: PushErrorCode, detail: Optional[str] = None) -> "PushSendResult":
        return cls(success=False, error=error, detail=detail)


class RecipientResult(PushSendResult):
    user_id: int


class BulkSendResult(BaseModel):
    success: bool
    results: list[RecipientResult] = Field(default_factory=list)
    error: Optional[PushErrorCode] = None

    @property
    def delivered_count(self) -> int:
        return sum(1 for result in self.results if result.success)


class ReceiptRead(BaseModel):
    ticket_id: str
    status: str
    message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class ReceiptStatusResult(BaseModel):
    success: bool
    receipts: list[ReceiptRead] = Field(default_factory=list)
    error: Optional[PushErrorCode] = None
