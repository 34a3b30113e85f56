from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


class DeviceClass(str, Enum):
    """Which provider a token is routed through."""

    managed = "managed"
    native_apple = "native_apple"


class PushToken(SQLModel, table=True):
    """Push notification tokens for mobile devices.

    Managed tokens are Expo push tokens relayed through Expo's service.
    Native Apple tokens are raw APNs device tokens sent straight to Apple.
    A user holds at most one token per device class.
    """
    __tablename__ = "push_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "device_class", name="uq_push_tokens_user_device_class"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    )
    # Expo push token or 64 hex character APNs device token
    push_token: str = Field(
        sa_column=Column(String(512), nullable=False, unique=True),
    )
    device_class: DeviceClass = Field(
        sa_column=Column(String(32), nullable=False),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    # Track last successful push delivery for monitoring
    last_used_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
