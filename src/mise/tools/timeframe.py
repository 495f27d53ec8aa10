"""
Mise - Natural-language timeframes.

Turns phrases like "yesterday", "last week", "3 days ago", "January" or
"la semana pasada" into a UTC datetime range for cooked-recipe lookups.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}


@dataclass(frozen=True)
class TimeframeRange:
    after: datetime
    before: datetime


def _start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)


def _end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max, tzinfo=value.tzinfo)


def _month_range(year: int, month: int, tz: timezone) -> TimeframeRange:
    last_day = calendar.monthrange(year, month)[1]
    return TimeframeRange(
        after=datetime(year, month, 1, tzinfo=tz),
        before=datetime.combine(datetime(year, month, last_day).date(), time.max, tzinfo=tz),
    )


def parse_timeframe(timeframe: str, now: datetime | None = None) -> TimeframeRange | None:
    """
    Parse a natural-language timeframe into a datetime range.

    Months later in the year than `now` are assumed to be last year's.
    Returns None when the phrase is not recognized.
    """
    now = now or datetime.now(timezone.utc)
    tz = now.tzinfo or timezone.utc
    lower = timeframe.lower().strip()

    if re.search(r"yesterday|\bayer\b", lower):
        day = now - timedelta(days=1)
        return TimeframeRange(after=_start_of_day(day), before=_end_of_day(day))

    # Weeks start on Monday
    week_start = _start_of_day(now - timedelta(days=now.weekday()))

    if re.search(r"last\s+week|semana\s+pasada", lower):
        return TimeframeRange(after=week_start - timedelta(days=7), before=week_start)

    if re.search(r"this\s+week|esta\s+semana", lower):
        return TimeframeRange(after=week_start, before=now)

    if re.search(r"last\s+month|mes\s+pasado", lower):
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        return _month_range(year, month, tz)

    # "3 days ago" / "hace 3 días"
    days_match = re.search(r"(\d+)\s*days?\s*ago|hace\s+(\d+)\s*d[ií]as?", lower)
    if days_match:
        days = int(days_match.group(1) or days_match.group(2))
        if 0 < days <= 365:
            return TimeframeRange(
                after=_start_of_day(now - timedelta(days=days + 1)),
                before=_end_of_day(now - timedelta(days=days - 1)),
            )

    for name, month in MONTHS.items():
        if re.search(rf"\b{name}\b", lower):
            year = now.year - 1 if month > now.month else now.year
            return _month_range(year, month, tz)

    return None
