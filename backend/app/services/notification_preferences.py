import logging
from datetime import datetime, timezone
from typing import Mapping, Optional

from sqlalchemy import and_, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.db.query import dialect_insert
from app.models.notification import NotificationCategory
from app.models.notification_preference import NotificationPreference
from app.models.push_token import PushToken

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = (
    "enabled",
    "messages",
    "following",
    "readings",
    "promotions",
    "daily_horoscope",
    "moon_phases",
    "planetary_transits",
)

CATEGORY_COLUMNS = {
    NotificationCategory.messages: NotificationPreference.messages,
    NotificationCategory.following: NotificationPreference.following,
    NotificationCategory.readings: NotificationPreference.readings,
    NotificationCategory.promotions: NotificationPreference.promotions,
    NotificationCategory.daily_horoscope: NotificationPreference.daily_horoscope,
    NotificationCategory.moon_phases: NotificationPreference.moon_phases,
    NotificationCategory.planetary_transits: NotificationPreference.planetary_transits,
}


def default_preferences(user_id: Optional[int] = None) -> NotificationPreference:
    """Preferences for users who never saved any: everything on except promotions."""
    return NotificationPreference(user_id=user_id)


async def get_preferences(session: AsyncSession, *, user_id: int) -> NotificationPreference:
    """Return the stored preferences, or the defaults when no row exists.

    Database errors propagate to the caller.
    """
    stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    result = await session.exec(stmt)
    preferences = result.one_or_none()
    if preferences is None:
        return default_preferences(user_id)
    return preferences


async def upsert_preferences(
    session: AsyncSession,
    *,
    user_id: int,
    changes: Mapping[str, Optional[bool]],
) -> NotificationPreference:
    """Apply ``changes`` on top of the current (or default) preferences.

    ``None`` values and unknown keys are ignored.
    """
    current = await get_preferences(session, user_id=user_id)
    values = {name: getattr(current, name) for name in PREFERENCE_FIELDS}
    for name, value in changes.items():
        if name in PREFERENCE_FIELDS and value is not None:
            values[name] = bool(value)

    now = datetime.now(timezone.utc)
    stmt = dialect_insert(session, NotificationPreference).values(
        user_id=user_id,
        created_at=now,
        updated_at=now,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_=dict(updated_at=now, **values),
    )
    await session.exec(stmt)
    await session.commit()

    result = await session.exec(
        select(NotificationPreference)
        .where(NotificationPreference.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.one()


async def list_user_ids_with_category(
    session: AsyncSession,
    category: NotificationCategory,
) -> list[int]:
    """Cohort of users with a push token who would accept ``category``.

    Users without a preference row count as opted in when the default
    for the category is on.
    """
    column = CATEGORY_COLUMNS[category]
    opted_in = and_(NotificationPreference.enabled.is_(True), column.is_(True))
    if default_preferences().allows(category):
        eligible = or_(NotificationPreference.user_id.is_(None), opted_in)
    else:
        eligible = opted_in

    stmt = (
        select(PushToken.user_id)
        .join(
            NotificationPreference,
            NotificationPreference.user_id == PushToken.user_id,
            isouter=True,
        )
        .where(eligible)
        .distinct()
        .order_by(PushToken.user_id)
    )
    result = await session.exec(stmt)
    user_ids = list(result.all())
    logger.debug("cohort for %s: %d user(s)", category.value, len(user_ids))
    return user_ids
