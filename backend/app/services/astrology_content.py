"""Copy for the scheduled astrology notifications.

The horoscope and transit texts are placeholders until an astrology data
provider is wired in; anything implementing ``ContentSource`` can replace
``PlaceholderAstrologyContent``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Mapping, Optional, Protocol

from app.models.notification import NotificationCategory

SYNODIC_MONTH_DAYS = 29.530588853
# A well documented new moon: 2000-01-06 18:14 UTC
REFERENCE_NEW_MOON = datetime(2000, 1, 6, 18, 14, tzinfo=timezone.utc)

_MOON_PHASES = (
    (1.84566, "New Moon"),
    (5.53699, "Waxing Crescent"),
    (9.22831, "First Quarter"),
    (12.91963, "Waxing Gibbous"),
    (16.61096, "Full Moon"),
    (20.30228, "Waning Gibbous"),
    (23.99361, "Last Quarter"),
    (27.68493, "Waning Crescent"),
)

# (sign, month, first day) in calendar order of the sign's start date
_ZODIAC_STARTS = (
    ("Capricorn", 1, 1),
    ("Aquarius", 1, 20),
    ("Pisces", 2, 19),
    ("Aries", 3, 21),
    ("Taurus", 4, 20),
    ("Gemini", 5, 21),
    ("Cancer", 6, 21),
    ("Leo", 7, 23),
    ("Virgo", 8, 23),
    ("Libra", 9, 23),
    ("Scorpio", 10, 23),
    ("Sagittarius", 11, 22),
    ("Capricorn", 12, 22),
)


@dataclass
class NotificationContent:
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class ContentSource(Protocol):
    def get_content_for_category(
        self,
        category: NotificationCategory,
        context: Mapping[str, Any],
    ) -> NotificationContent:
        ...


def zodiac_sign(birth_date: date) -> str:
    sign = "Capricorn"
    for name, month, day in _ZODIAC_STARTS:
        if (birth_date.month, birth_date.day) >= (month, day):
            sign = name
    return sign


def moon_phase(on: date) -> str:
    moment = datetime.combine(on, time(12), tzinfo=timezone.utc)
    age = ((moment - REFERENCE_NEW_MOON).total_seconds() / 86400) % SYNODIC_MONTH_DAYS
    for upper_bound, name in _MOON_PHASES:
        if age < upper_bound:
            return name
    return "New Moon"


class PlaceholderAstrologyContent:
    def get_content_for_category(
        self,
        category: NotificationCategory,
        context: Mapping[str, Any],
    ) -> NotificationContent:
        on: date = context.get("date") or datetime.now(timezone.utc).date()

        if category == NotificationCategory.daily_horoscope:
            sign: Optional[str] = context.get("sign")
            title = f"Daily Horoscope for {sign}" if sign else "Your Daily Horoscope"
            return NotificationContent(
                title=title,
                body="Your daily horoscope prediction here",
                data={"sign": sign, "date": on.isoformat()},
            )

        if category == NotificationCategory.moon_phases:
            phase = moon_phase(on)
            return NotificationContent(
                title="Moon Phase Update",
                body=f"Today the moon is in its {phase} phase.",
                data={"phase": phase, "date": on.isoformat()},
            )

        if category == NotificationCategory.planetary_transits:
            return NotificationContent(
                title="Planetary Transit Alert",
                body="Mercury is in conjunction...",
                data={"planet": "Mercury", "aspect": "Conjunction", "date": on.isoformat()},
            )

        raise ValueError(f"No scheduled content for category {category.value}")
