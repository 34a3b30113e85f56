"""
Unit tests for the scheduled astrology notifications.

Tests app.services.push_scheduler including:
- Trigger time computation
- Cohort delivery with per-sign horoscopes
- Skipping users already notified today
"""

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import Settings
from app.models.notification import NotificationCategory
from app.services import push_scheduler
from app.services.push_notifications import NotificationDispatcher
from app.testing import (
    FakePushAdapter,
    create_notification,
    create_preferences,
    create_push_token,
    create_user,
)

UTC = ZoneInfo("UTC")


@pytest.mark.unit
def test_next_run_later_today():
    now = datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)

    assert push_scheduler.next_run_after(now, time(8, 0), UTC) == datetime(2024, 5, 1, 8, 0, tzinfo=UTC)


@pytest.mark.unit
def test_next_run_rolls_over_to_tomorrow():
    at_trigger = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
    after_trigger = datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc)

    assert push_scheduler.next_run_after(at_trigger, time(8, 0), UTC).date() == date(2024, 5, 2)
    assert push_scheduler.next_run_after(after_trigger, time(8, 0), UTC).date() == date(2024, 5, 2)


@pytest.mark.unit
def test_unknown_timezone_falls_back_to_utc():
    assert push_scheduler._resolve_timezone("Mars/Olympus_Mons").key == "UTC"
    assert push_scheduler._resolve_timezone(None).key == "UTC"


@pytest.mark.unit
def test_triggers_follow_settings():
    config = Settings(
        SECRET_KEY="x",
        DAILY_HOROSCOPE_TIME="07:15",
        MOON_PHASE_TIME="21:00",
        PLANETARY_TRANSIT_TIME="12:30",
    )

    triggers = {trigger.category: trigger.at for trigger in push_scheduler.triggers_from_settings(config)}

    assert triggers == {
        NotificationCategory.daily_horoscope: time(7, 15),
        NotificationCategory.moon_phases: time(21, 0),
        NotificationCategory.planetary_transits: time(12, 30),
    }


@pytest.mark.unit
@pytest.mark.service
async def test_horoscopes_are_grouped_by_sign(
    session: AsyncSession,
    session_factory,
    dispatcher: NotificationDispatcher,
    managed_adapter: FakePushAdapter,
):
    taurus_a = await create_user(session, birth_date=date(1990, 5, 1))
    taurus_b = await create_user(session, birth_date=date(1985, 5, 10))
    leo = await create_user(session, birth_date=date(1992, 8, 1))
    unknown = await create_user(session)
    for user in (taurus_a, taurus_b, leo, unknown):
        await create_push_token(session, user)

    outcome = await push_scheduler.run_scheduled_category(
        dispatcher,
        NotificationCategory.daily_horoscope,
        session_factory=session_factory,
        timezone_name="UTC",
        now=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
    )

    assert outcome.delivered_count == 4
    titles = sorted(message.title for _, message in managed_adapter.sent)
    assert titles == [
        "Daily Horoscope for Leo",
        "Daily Horoscope for Taurus",
        "Daily Horoscope for Taurus",
        "Your Daily Horoscope",
    ]
    assert all(message.category == NotificationCategory.daily_horoscope for _, message in managed_adapter.sent)


@pytest.mark.unit
@pytest.mark.service
async def test_scheduled_run_only_targets_opted_in_users(
    session: AsyncSession,
    session_factory,
    dispatcher: NotificationDispatcher,
    managed_adapter: FakePushAdapter,
):
    subscriber = await create_user(session)
    opted_out = await create_user(session)
    await create_user(session)  # no device
    await create_push_token(session, subscriber)
    await create_push_token(session, opted_out)
    await create_preferences(session, opted_out, moon_phases=False)

    outcome = await push_scheduler.run_scheduled_category(
        dispatcher,
        NotificationCategory.moon_phases,
        session_factory=session_factory,
        timezone_name="UTC",
    )

    assert [result.user_id for result in outcome.results] == [subscriber.id]
    assert managed_adapter.sent[0][1].title == "Moon Phase Update"


@pytest.mark.unit
@pytest.mark.service
async def test_scheduled_run_skips_users_already_notified_today(
    session: AsyncSession,
    session_factory,
    dispatcher: NotificationDispatcher,
    managed_adapter: FakePushAdapter,
):
    now = datetime.now(timezone.utc)
    notified_today = await create_user(session)
    notified_earlier = await create_user(session)
    for user in (notified_today, notified_earlier):
        await create_push_token(session, user)
    await create_notification(
        session,
        notified_today,
        category=NotificationCategory.planetary_transits,
        created_at=now,
    )
    await create_notification(
        session,
        notified_earlier,
        category=NotificationCategory.planetary_transits,
        created_at=now - timedelta(days=2),
    )

    outcome = await push_scheduler.run_scheduled_category(
        dispatcher,
        NotificationCategory.planetary_transits,
        session_factory=session_factory,
        timezone_name="UTC",
        now=now,
    )

    assert [result.user_id for result in outcome.results] == [notified_earlier.id]

    rerun = await push_scheduler.run_scheduled_category(
        dispatcher,
        NotificationCategory.planetary_transits,
        session_factory=session_factory,
        timezone_name="UTC",
        now=now,
    )

    assert rerun.results == []
    assert len(managed_adapter.sent) == 1


@pytest.mark.unit
@pytest.mark.service
async def test_scheduled_run_with_empty_cohort(
    session_factory,
    dispatcher: NotificationDispatcher,
    managed_adapter: FakePushAdapter,
):
    outcome = await push_scheduler.run_scheduled_category(
        dispatcher,
        NotificationCategory.moon_phases,
        session_factory=session_factory,
        timezone_name="UTC",
    )

    assert outcome.success is True
    assert outcome.results == []
    assert managed_adapter.sent == []


@pytest.mark.unit
async def test_background_workers_start_and_cancel(dispatcher: NotificationDispatcher):
    tasks = push_scheduler.start_background_tasks(dispatcher, config=Settings(SECRET_KEY="x"))

    assert len(tasks) == 3
    await asyncio.sleep(0)
    assert not any(task.done() for task in tasks)

    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    assert all(isinstance(result, asyncio.CancelledError) for result in results)


@pytest.mark.unit
async def test_failing_tick_is_logged_and_workers_keep_running(monkeypatch, caplog):
    past = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)
    far_future = datetime.now(timezone.utc) + timedelta(days=365)
    moon_at, transit_at = time(8, 0), time(9, 0)
    schedules = {
        moon_at: iter([past, past + timedelta(days=1)]),
        transit_at: iter([past]),
    }

    def fake_next_run_after(now, at, tz):
        return next(schedules[at], far_future)

    monkeypatch.setattr(push_scheduler, "next_run_after", fake_next_run_after)

    moon_calls = []
    transit_calls = []
    second_moon_tick = asyncio.Event()

    async def moon_tick():
        moon_calls.append(len(moon_calls))
        if len(moon_calls) == 1:
            raise RuntimeError("content source unavailable")
        second_moon_tick.set()

    async def transit_tick():
        transit_calls.append(len(transit_calls))

    caplog.set_level("ERROR", logger="app.services.push_scheduler")
    workers = [
        asyncio.create_task(push_scheduler._daily_worker(moon_tick, moon_at, UTC, "moon-phase")),
        asyncio.create_task(push_scheduler._daily_worker(transit_tick, transit_at, UTC, "planetary-transit")),
    ]
    await asyncio.wait_for(second_moon_tick.wait(), timeout=1)
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(moon_calls) == 2
    assert transit_calls == [0]
    assert "moon-phase worker encountered an error" in caplog.text
    assert "planetary-transit worker encountered an error" not in caplog.text
    assert not any(worker.done() for worker in workers)

    for worker in workers:
        worker.cancel()
    results = await asyncio.gather(*workers, return_exceptions=True)
    assert all(isinstance(result, asyncio.CancelledError) for result in results)
