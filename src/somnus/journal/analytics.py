"""
Date bucketing for the journal: streaks, ISO weeks, months and the
profile statistics.

Every function takes an explicit ``now``/``today`` so callers and tests pin
the clock; timestamps are naive local datetimes as stored.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple, Any, Dict

from somnus.core.database import Dream


def calculate_streak(dates: Iterable[datetime], today: Optional[date] = None) -> int:
    """
    Counts consecutive calendar days with at least one dream.

    The run has to end today or yesterday; anything older means the streak
    is already broken and the result is 0.
    """
    today = today or date.today()
    days = sorted({d.date() if isinstance(d, datetime) else d for d in dates}, reverse=True)
    if not days:
        return 0

    yesterday = today - timedelta(days=1)
    if today in days:
        cursor = today
    elif yesterday in days:
        cursor = yesterday
    else:
        return 0

    present = set(days)
    streak = 0
    while cursor in present:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


async def streak(store, user_id: str, today: Optional[date] = None) -> int:
    return calculate_streak(await store.dream_dates(user_id), today)


def week_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Monday 00:00 through Sunday 23:59:59.999999 of the week containing ``now``."""
    start = datetime.combine(now.date() - timedelta(days=now.weekday()), time.min)
    end = datetime.combine(start.date() + timedelta(days=6), time.max)
    return start, end


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    last_day = calendar.monthrange(now.year, now.month)[1]
    start = datetime.combine(now.date().replace(day=1), time.min)
    end = datetime.combine(now.date().replace(day=last_day), time.max)
    return start, end


def dreams_in_range(dreams: Iterable[Dream], start: datetime, end: datetime) -> List[Dream]:
    return [d for d in dreams if start <= d.date <= end]


def word_count(dreams: Iterable[Dream]) -> int:
    return sum(len(d.text.split()) for d in dreams)


def journal_stats(dreams: List[Dream], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Profile numbers. ``thisWeekDreams`` is a rolling seven-day window."""
    now = now or datetime.now()
    week_ago = now - timedelta(days=7)
    total = len(dreams)
    return {
        "totalDreams": total,
        "interpretedDreams": sum(1 for d in dreams if d.interpretation),
        "thisWeekDreams": sum(1 for d in dreams if d.date >= week_ago),
        "avgDreamLength": round(sum(len(d.text) for d in dreams) / total) if total else 0,
        "streak": calculate_streak((d.date for d in dreams), now.date()),
    }


def week_overview(dreams: List[Dream], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Per-day markers for the Monday-to-Sunday timeline."""
    now = now or datetime.now()
    start, end = week_bounds(now)
    weekly = dreams_in_range(dreams, start, end)
    dream_days = {d.date.date() for d in weekly}
    days = [start.date() + timedelta(days=i) for i in range(7)]
    return {
        "weekStart": start.date().isoformat(),
        "weekEnd": end.date().isoformat(),
        "days": [
            {"date": day.isoformat(), "hasDream": day in dream_days, "isToday": day == now.date()}
            for day in days
        ],
        "dreamCount": len(weekly),
        "wordCount": word_count(weekly),
    }


def month_overview(dreams: List[Dream], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now()
    start, end = month_bounds(now)
    monthly = dreams_in_range(dreams, start, end)
    return {
        "month": now.strftime("%Y-%m"),
        "dreamCount": len(monthly),
        "wordCount": word_count(monthly),
        "interpretedDreams": sum(1 for d in monthly if d.interpretation),
    }
