from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Column, Date, DateTime
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Account identity owned by the user-account service.

    Only the fields the notification pipeline reads are mapped here.
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, nullable=False)
    full_name: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)
    birth_date: Optional[date] = Field(
        default=None,
        sa_column=Column(Date, nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
