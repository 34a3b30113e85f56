from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer
from sqlmodel import Field, SQLModel

from app.models.notification import NotificationCategory


def _flag(default: bool) -> Column:
    return Column(
        Boolean,
        nullable=False,
        server_default="true" if default else "false",
    )


class NotificationPreference(SQLModel, table=True):
    """Per-user opt-in flags, one row per user.

    Every flag maps to one ``NotificationCategory`` value of the same name.
    """

    __tablename__ = "notification_preferences"

    user_id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    )
    enabled: bool = Field(default=True, sa_column=_flag(True))
    messages: bool = Field(default=True, sa_column=_flag(True))
    following: bool = Field(default=True, sa_column=_flag(True))
    readings: bool = Field(default=True, sa_column=_flag(True))
    promotions: bool = Field(default=False, sa_column=_flag(False))
    daily_horoscope: bool = Field(default=True, sa_column=_flag(True))
    moon_phases: bool = Field(default=True, sa_column=_flag(True))
    planetary_transits: bool = Field(default=True, sa_column=_flag(True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    def allows(self, category: NotificationCategory) -> bool:
        """True when notifications are on globally and for ``category``."""
        if not self.enabled:
            return False
        return self.category_flag(category)

    def category_flag(self, category: NotificationCategory) -> bool:
        flags = {
            NotificationCategory.messages: self.messages,
            NotificationCategory.following: self.following,
            NotificationCategory.readings: self.readings,
            NotificationCategory.promotions: self.promotions,
            NotificationCategory.daily_horoscope: self.daily_horoscope,
            NotificationCategory.moon_phases: self.moon_phases,
            NotificationCategory.planetary_transits: self.planetary_transits,
        }
        return flags[category]
