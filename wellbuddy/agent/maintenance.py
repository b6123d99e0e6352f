"""Goal progress and streak upkeep.

Goal progress is always re-derived from the activity log for the goal's
window, never incremented, so running it twice or from two racing turns
leaves the same value behind.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from ..schemas.domain import STEP_TYPES, STEPS_PER_KM, WORKOUT_TYPES, Activity, Goal, Streak
from .store import DomainStore
from .temporal import day_bounds, local_date, to_utc, week_start
from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

AT_RISK_GAP_DAYS = 2
BEHIND_SCHEDULE_RATIO = 0.5
BEHIND_SCHEDULE_DAYS = 7
LOGGING_STREAK = "logging"


def steps_from_activities(activities: Iterable[Activity]) -> int:
    return sum(
        round(activity.distance_km * STEPS_PER_KM)
        for activity in activities
        if activity.activity_type in STEP_TYPES and activity.distance_km
    )


def _sleep_hours(activities: Iterable[Activity]) -> float:
    return float(sum(a.sleep_hours or 0 for a in activities if a.activity_type == "sleep"))


def _hydration_ml(activities: Iterable[Activity]) -> float:
    return float(sum(a.hydration_ml or 0 for a in activities if a.activity_type == "hydration"))


def _workout_count(activities: Iterable[Activity]) -> float:
    return float(sum(1 for a in activities if a.activity_type in WORKOUT_TYPES))


@dataclass(frozen=True)
class AggregationRule:
    window: str  # "day" or "week"
    derive: Callable[[List[Activity]], float]


AGGREGATION_RULES: Dict[str, AggregationRule] = {
    "sleep_target": AggregationRule("day", _sleep_hours),
    "hydration_daily": AggregationRule("day", _hydration_ml),
    "steps_daily": AggregationRule("day", lambda activities: float(steps_from_activities(activities))),
    "workouts_weekly": AggregationRule("week", _workout_count),
}

# Goal types whose aggregation depends on a given activity type.
RELEVANT_GOAL_TYPES: Dict[str, List[str]] = {
    "sleep": ["sleep_target"],
    "hydration": ["hydration_daily"],
}
for _type in WORKOUT_TYPES:
    RELEVANT_GOAL_TYPES.setdefault(_type, []).append("workouts_weekly")
for _type in STEP_TYPES:
    RELEVANT_GOAL_TYPES.setdefault(_type, []).append("steps_daily")


def goal_reached(goal: Goal, progress: float) -> bool:
    if goal.goal_type == "weight_loss":
        # Progress is the current weight; 0 means none recorded yet.
        return 0 < progress <= goal.goal_value
    return progress >= goal.goal_value


def settled_status(goal: Goal, progress: float) -> str:
    if goal.status == "active" and goal_reached(goal, progress):
        return "completed"
    return goal.status


def streak_types_for(activity_type: str) -> List[str]:
    """Streaks an activity of ``activity_type`` counts towards."""
    if activity_type in WORKOUT_TYPES:
        specific = "workout"
    else:
        specific = activity_type
    return [specific, LOGGING_STREAK] if specific != LOGGING_STREAK else [LOGGING_STREAK]


class GoalStreakMaintainer:
    def __init__(self, store: DomainStore) -> None:
        self.store = store

    async def _window_activities(self, user_id: str, window: str, now: datetime, tz_name: str) -> List[Activity]:
        if window == "week":
            start = week_start(now, tz_name)
            _, end = day_bounds(local_date(now, tz_name), tz_name)
        else:
            start, end = day_bounds(local_date(now, tz_name), tz_name)
        return await self.store.list_activities(user_id, start=start, end=end)

    async def recompute_goals(
        self,
        user_id: str,
        now: datetime,
        tz_name: str,
        activity_type: Optional[str] = None,
    ) -> List[Goal]:
        """Re-derive progress for active goals with an aggregation rule.

        With ``activity_type`` only the goal types that activity feeds are touched.
        """
        relevant = set(RELEVANT_GOAL_TYPES.get(activity_type, [])) if activity_type else set(AGGREGATION_RULES)
        updated: List[Goal] = []
        cache: Dict[str, List[Activity]] = {}
        for goal in await self.store.list_goals(user_id, status="active"):
            rule = AGGREGATION_RULES.get(goal.goal_type)
            if rule is None or goal.goal_type not in relevant:
                continue
            if rule.window not in cache:
                cache[rule.window] = await self._window_activities(user_id, rule.window, now, tz_name)
            progress = rule.derive(cache[rule.window])
            status = settled_status(goal, progress)
            updated.append(
                await self.store.patch_goal(goal.id, {"current_progress": progress, "status": status, "updated_at": to_utc(now)})
            )
            if status == "completed":
                logger.info("Goal %s (%s) completed for user %s", goal.id, goal.goal_type, user_id)
        return updated

    async def update_streak(self, user_id: str, streak_type: str, now: datetime, tz_name: str) -> Streak:
        """Count local ``today`` towards ``streak_type`` at most once.

        Yesterday -> +1, today -> unchanged, older -> reset to 1.
        """
        instant = to_utc(now)
        today = local_date(instant, tz_name)
        existing = await self.store.get_streak(user_id, streak_type)
        if existing is None:
            streak = Streak(
                id=nanoid("stk"),
                user_id=user_id,
                streak_type=streak_type,
                current_count=1,
                max_count=1,
                last_activity_date=today,
                last_activity_at=instant,
                created_at=instant,
            )
            return await self.store.put_streak(streak)

        if existing.last_activity_date == today:
            return existing
        if existing.last_activity_date > today:
            logger.warning("Streak %s for user %s has a future date %s", streak_type, user_id, existing.last_activity_date)
            return existing

        consecutive = existing.last_activity_date == today - timedelta(days=1)
        count = existing.current_count + 1 if consecutive else 1
        updated = existing.model_copy(
            update={
                "current_count": count,
                "max_count": max(count, existing.max_count),
                "last_activity_date": today,
                "last_activity_at": instant,
            }
        )
        return await self.store.put_streak(updated)

    async def on_activity_logged(self, activity: Activity, now: datetime, tz_name: str) -> Dict[str, list]:
        goals = await self.recompute_goals(activity.user_id, now, tz_name, activity.activity_type)
        streaks = [await self.update_streak(activity.user_id, streak_type, now, tz_name) for streak_type in streak_types_for(activity.activity_type)]
        return {"goals": goals, "streaks": streaks}


@dataclass
class StreakAlert:
    user_id: str
    streak_type: str
    current_count: int
    gap_days: int


class StreakNotifier(Protocol):
    async def notify(self, alert: StreakAlert) -> None:
        ...


class LoggingStreakNotifier:
    async def notify(self, alert: StreakAlert) -> None:
        logger.info(
            "Streak at risk: user=%s type=%s count=%d gap=%d days",
            alert.user_id,
            alert.streak_type,
            alert.current_count,
            alert.gap_days,
        )


def streak_gap_days(streak: Streak, today: date) -> int:
    return (today - streak.last_activity_date).days


async def sweep_streaks(store: DomainStore, notifier: StreakNotifier, now: datetime, default_tz: str) -> List[StreakAlert]:
    """Flag every streak whose last activity is two or more local days old."""
    alerts: List[StreakAlert] = []
    for profile in await store.list_profiles():
        today = local_date(now, profile.preferences.timezone or default_tz)
        for streak in await store.list_streaks(profile.id):
            gap = streak_gap_days(streak, today)
            if gap >= AT_RISK_GAP_DAYS and streak.current_count > 0:
                alert = StreakAlert(user_id=profile.id, streak_type=streak.streak_type, current_count=streak.current_count, gap_days=gap)
                try:
                    await notifier.notify(alert)
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Streak notifier failed for user %s", profile.id)
                alerts.append(alert)
    return alerts


def goals_behind_schedule(goals: Iterable[Goal], today: date) -> List[Goal]:
    """Active goals under half done with no target date or under a week left."""
    behind = []
    for goal in goals:
        if goal.status != "active" or goal.goal_value <= 0 or goal.goal_type == "weight_loss":
            continue
        ratio = goal.current_progress / goal.goal_value
        days_left = (goal.target_date - today).days if goal.target_date else None
        if ratio < BEHIND_SCHEDULE_RATIO and (days_left is None or days_left < BEHIND_SCHEDULE_DAYS):
            behind.append(goal)
    return behind
