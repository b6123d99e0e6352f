"""Derived daily summaries and look-back statistics over the activity log."""

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, List

from ..schemas.domain import WORKOUT_TYPES, DailySummary
from .maintenance import steps_from_activities
from .store import DomainStore
from .temporal import day_bounds, get_zone, local_date, to_utc

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
MAX_STATS_DAYS = 365


def summarize(user_id: str, day: date, activities: List[Any], now: datetime) -> DailySummary:
    return DailySummary(
        user_id=user_id,
        day=day,
        steps=steps_from_activities(activities),
        workout_count=sum(1 for a in activities if a.activity_type in WORKOUT_TYPES),
        water_ml=float(sum(a.hydration_ml or 0 for a in activities)),
        sleep_hours=float(sum(a.sleep_hours or 0 for a in activities)),
        calories_burned=float(sum(a.calories_burned or 0 for a in activities)),
        calories_consumed=float(sum(a.calories_consumed or 0 for a in activities)),
        activity_count=len(activities),
        computed_at=to_utc(now),
    )


async def recompute_daily_summary(store: DomainStore, user_id: str, day: date, tz_name: str, now: datetime) -> DailySummary:
    """Rebuild one local day's summary from scratch and store it."""
    start, end = day_bounds(day, tz_name)
    activities = await store.list_activities(user_id, start=start, end=end)
    summary = await store.put_daily_summary(summarize(user_id, day, activities, now))
    logger.debug("Daily summary for %s on %s: %d activities", user_id, day, summary.activity_count)
    return summary


async def weekly_summaries(store: DomainStore, user_id: str, now: datetime, tz_name: str) -> List[DailySummary]:
    """Summaries for the last seven local days, oldest first, computed on read."""
    today = local_date(now, tz_name)
    summaries = []
    for offset in range(WEEK_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        start, end = day_bounds(day, tz_name)
        summaries.append(summarize(user_id, day, await store.list_activities(user_id, start=start, end=end), now))
    return summaries


async def activity_stats(store: DomainStore, user_id: str, days: int, now: datetime, tz_name: str) -> Dict[str, Any]:
    days = max(1, min(int(days), MAX_STATS_DAYS))
    start = to_utc(now) - timedelta(days=days)
    activities = await store.list_activities(user_id, start=start, end=to_utc(now) + timedelta(microseconds=1))

    by_type = Counter(a.activity_type for a in activities)
    moods = Counter(a.mood for a in activities if a.mood)
    zone = get_zone(tz_name)
    active_days = {a.logged_at.astimezone(zone).date() for a in activities}

    return {
        "days": days,
        "totalActivities": len(activities),
        "workouts": sum(count for kind, count in by_type.items() if kind in WORKOUT_TYPES),
        "meals": by_type.get("meal", 0),
        "sleepLogs": by_type.get("sleep", 0),
        "hydrationLogs": by_type.get("hydration", 0),
        "totalCaloriesBurned": sum(a.calories_burned or 0 for a in activities),
        "totalCaloriesConsumed": sum(a.calories_consumed or 0 for a in activities),
        "totalDistanceKm": round(sum(a.distance_km or 0 for a in activities), 2),
        "totalHydrationMl": sum(a.hydration_ml or 0 for a in activities),
        "totalSleepHours": sum(a.sleep_hours or 0 for a in activities),
        "mostCommonMood": moods.most_common(1)[0][0] if moods else None,
        "activitiesByType": dict(by_type),
        "activeDays": len(active_days),
    }
