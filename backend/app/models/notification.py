from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text
from sqlmodel import Field, SQLModel


class NotificationCategory(str, Enum):
    messages = "messages"
    following = "following"
    readings = "readings"
    promotions = "promotions"
    daily_horoscope = "daily_horoscope"
    moon_phases = "moon_phases"
    planetary_transits = "planetary_transits"


class Notification(SQLModel, table=True):
    """A push notification accepted by a provider.

    ``ticket_ids`` stays null until the provider tickets are attached after
    submission; receipts are looked up from those ids later.
    """

    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    category: NotificationCategory = Field(
        sa_column=Column(String(64), nullable=False, index=True),
    )
    title: str = Field(sa_column=Column(String(255), nullable=False))
    body: str = Field(sa_column=Column(Text, nullable=False))
    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False, server_default="{}"),
    )
    device_class: Optional[str] = Field(
        default=None,
        sa_column=Column(String(32), nullable=True),
    )
    read: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="false"),
    )
    ticket_ids: Optional[list[str]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
