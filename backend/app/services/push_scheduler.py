from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import Settings, settings as app_settings
from app.db.session import AsyncSessionLocal
from app.models.notification import NotificationCategory
from app.models.user import User
from app.schemas.push import BulkSendResult
from app.services import notification_preferences, user_notifications
from app.services.astrology_content import ContentSource, PlaceholderAstrologyContent, zodiac_sign
from app.services.push_fanout import send_bulk
from app.services.push_notifications import NotificationDispatcher
from app.services.push_providers import PushMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledTrigger:
    name: str
    category: NotificationCategory
    at: time


def _parse_clock(value: str) -> time:
    hour, minute = map(int, value.split(":"))
    return time(hour=hour, minute=minute)


def _resolve_timezone(value: str | None) -> ZoneInfo:
    zone_id = value or "UTC"
    try:
        return ZoneInfo(zone_id)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown scheduler timezone %r, falling back to UTC", zone_id)
        return ZoneInfo("UTC")


def triggers_from_settings(config: Settings) -> list[ScheduledTrigger]:
    return [
        ScheduledTrigger("daily-horoscope", NotificationCategory.daily_horoscope, _parse_clock(config.DAILY_HOROSCOPE_TIME)),
        ScheduledTrigger("moon-phase", NotificationCategory.moon_phases, _parse_clock(config.MOON_PHASE_TIME)),
        ScheduledTrigger("planetary-transit", NotificationCategory.planetary_transits, _parse_clock(config.PLANETARY_TRANSIT_TIME)),
    ]


def next_run_after(now: datetime, at: time, tz: ZoneInfo) -> datetime:
    """First occurrence of local clock time ``at`` strictly after ``now``."""
    now_local = now.astimezone(tz)
    candidate = datetime.combine(now_local.date(), at, tzinfo=tz)
    if candidate <= now_local:
        candidate = datetime.combine(now_local.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


async def _recipient_groups(
    session: AsyncSession,
    category: NotificationCategory,
    user_ids: list[int],
) -> dict[Optional[str], list[int]]:
    """Horoscopes differ per zodiac sign; every other category sends one payload."""
    if category != NotificationCategory.daily_horoscope:
        return {None: user_ids}

    result = await session.exec(select(User.id, User.birth_date).where(User.id.in_(user_ids)))
    birth_dates = {user_id: birth_date for user_id, birth_date in result.all()}

    groups: dict[Optional[str], list[int]] = defaultdict(list)
    for user_id in user_ids:
        birth_date = birth_dates.get(user_id)
        groups[zodiac_sign(birth_date) if birth_date else None].append(user_id)
    return dict(groups)


async def run_scheduled_category(
    dispatcher: NotificationDispatcher,
    category: NotificationCategory,
    *,
    content: Optional[ContentSource] = None,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    timezone_name: str | None = None,
    now: Optional[datetime] = None,
) -> BulkSendResult:
    """Send today's ``category`` notification to its cohort.

    Users who already received a notification of this category since local
    midnight are skipped, so a restart near the trigger time does not send
    twice.
    """
    content = content or PlaceholderAstrologyContent()
    tz = _resolve_timezone(timezone_name or app_settings.SCHEDULER_TIMEZONE)
    now_local = (now or datetime.now(timezone.utc)).astimezone(tz)
    today: date = now_local.date()
    start_of_day = datetime.combine(today, time.min, tzinfo=tz).astimezone(timezone.utc)

    async with session_factory() as session:
        cohort = await notification_preferences.list_user_ids_with_category(session, category)
        if not cohort:
            logger.debug("%s: no users opted in", category.value)
            return BulkSendResult(success=True)

        already_sent = await user_notifications.user_ids_notified_since(
            session,
            category=category,
            since=start_of_day,
            user_ids=cohort,
        )
        pending = [user_id for user_id in cohort if user_id not in already_sent]
        if already_sent:
            logger.info(
                "%s: skipping %d user(s) already notified on %s",
                category.value,
                len(already_sent),
                today.isoformat(),
            )

        results = []
        groups = await _recipient_groups(session, category, pending) if pending else {}
        for sign, user_ids in groups.items():
            payload = content.get_content_for_category(category, {"date": today, "sign": sign})
            message = PushMessage(
                category=category,
                title=payload.title,
                body=payload.body,
                data=payload.data,
            )
            bulk = await send_bulk(session, dispatcher, user_ids, message)
            results.extend(bulk.results)

    outcome = BulkSendResult(success=True, results=results)
    logger.info(
        "%s: delivered %d/%d scheduled notification(s)",
        category.value,
        outcome.delivered_count,
        len(pending),
    )
    return outcome


async def _daily_worker(
    task_coro: Callable[[], Awaitable[object]],
    at: time,
    tz: ZoneInfo,
    name: str,
) -> None:
    logger.info("%s worker started (daily at %s %s)", name, at.strftime("%H:%M"), tz.key)
    in_flight: set[asyncio.Task] = set()

    def _tick_done(task: asyncio.Task) -> None:
        in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s worker encountered an error", name, exc_info=task.exception())

    next_run = next_run_after(datetime.now(timezone.utc), at, tz)
    try:
        while True:
            delay = (next_run - datetime.now(timezone.utc)).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            # Ticks run detached so a slow one never delays the next day's run.
            tick = asyncio.create_task(task_coro())
            in_flight.add(tick)
            tick.add_done_callback(_tick_done)
            next_run = next_run_after(next_run, at, tz)
    except asyncio.CancelledError:
        logger.info("%s worker cancelled", name)
        for tick in list(in_flight):
            tick.cancel()
        raise


def start_background_tasks(
    dispatcher: NotificationDispatcher,
    *,
    config: Settings = app_settings,
    content: Optional[ContentSource] = None,
) -> list[asyncio.Task]:
    tz = _resolve_timezone(config.SCHEDULER_TIMEZONE)
    tasks = []
    for trigger in triggers_from_settings(config):

        async def _run(category: NotificationCategory = trigger.category) -> BulkSendResult:
            return await run_scheduled_category(
                dispatcher,
                category,
                content=content,
                timezone_name=tz.key,
            )

        tasks.append(asyncio.create_task(_daily_worker(_run, trigger.at, tz, trigger.name)))
    return tasks
