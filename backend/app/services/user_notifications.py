from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.db.query import apply_pagination
from app.models.notification import Notification, NotificationCategory


async def create_notification(
    session: AsyncSession,
    *,
    user_id: int,
    category: NotificationCategory,
    title: str,
    body: str,
    data: Mapping[str, object],
    device_class: Optional[str] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        category=category,
        title=title,
        body=body,
        data=dict(data),
        device_class=device_class,
    )
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    return notification


async def attach_ticket_ids(
    session: AsyncSession,
    *,
    notification_id: int,
    ticket_ids: Sequence[str],
) -> None:
    stmt = (
        update(Notification)
        .where(Notification.id == notification_id)
        .values(ticket_ids=list(ticket_ids), updated_at=datetime.now(timezone.utc))
    )
    await session.exec(stmt)
    await session.commit()


async def get_notification(session: AsyncSession, *, notification_id: int) -> Notification | None:
    stmt = select(Notification).where(Notification.id == notification_id)
    result = await session.exec(stmt)
    return result.one_or_none()


async def list_notifications(
    session: AsyncSession,
    *,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    category: NotificationCategory | None = None,
) -> tuple[list[Notification], int]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if category is not None:
        stmt = stmt.where(Notification.category == category.value)
    stmt = apply_pagination(
        stmt.order_by(Notification.created_at.desc(), Notification.id.desc()),
        limit=limit,
        offset=offset,
    )
    result = await session.exec(stmt)
    notifications = list(result.all())
    return notifications, await unread_count(session, user_id=user_id)


async def mark_notification_read(
    session: AsyncSession,
    *,
    user_id: int,
    notification_id: int,
) -> Notification | None:
    stmt = select(Notification).where(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    )
    result = await session.exec(stmt)
    notification = result.one_or_none()
    if notification is None:
        return None
    if not notification.read:
        notification.read = True
        notification.updated_at = datetime.now(timezone.utc)
        session.add(notification)
        await session.commit()
        await session.refresh(notification)
    return notification


async def mark_all_notifications_read(
    session: AsyncSession,
    *,
    user_id: int,
) -> int:
    now = datetime.now(timezone.utc)
    stmt = (
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, updated_at=now)
    )
    result = await session.exec(stmt)
    await session.commit()
    return result.rowcount or 0


async def unread_count(session: AsyncSession, *, user_id: int) -> int:
    stmt = select(func.count()).where(
        Notification.user_id == user_id,
        Notification.read.is_(False),
    )
    result = await session.exec(stmt)
    return result.one()


async def user_ids_notified_since(
    session: AsyncSession,
    *,
    category: NotificationCategory,
    since: datetime,
    user_ids: Iterable[int],
) -> set[int]:
    """Which of ``user_ids`` already got a ``category`` notification at or after ``since``."""
    candidates = list(user_ids)
    if not candidates:
        return set()
    stmt = (
        select(Notification.user_id)
        .where(
            Notification.category == category.value,
            Notification.created_at >= since,
            Notification.user_id.in_(candidates),
        )
        .distinct()
    )
    result = await session.exec(stmt)
    return set(result.all())
