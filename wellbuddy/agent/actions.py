import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from ..schemas.agent import (
    OPERATIONS,
    ActivityLogAction,
    GoalAdjustAction,
    PlannedAction,
    ProfileTouchAction,
    RawAction,
    StreakUpdateAction,
    WeightUpdateAction,
)
from ..schemas.domain import Activity, ActivitySource, ActionOutcome, Goal
from .errors import ExecutionError, StorageError, UnknownOperationError
from .maintenance import GoalStreakMaintainer, settled_status
from .outbox import Outbox
from .store import DomainStore
from .temporal import local_date, resolve_time_field, to_utc
from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

_planned_action = TypeAdapter(PlannedAction)

ACTIVITY_NAME_TEMPLATES: Dict[str, str] = {
    "workout": "Workout",
    "walk": "Walk",
    "run": "Run",
    "yoga": "Yoga Session",
    "cycle": "Bike Ride",
    "swim": "Swim",
    "gym": "Gym Session",
    "meditation": "Meditation",
    "stretch": "Stretching",
    "sleep": "Sleep",
    "hydration": "Water",
    "meal": "Meal",
    "weight_check": "Weight Check",
    "study": "Study Session",
    "shopping": "Shopping Trip",
    "errand": "Errand",
    "task": "Task",
}

TIME_FIELDS = ("time_started", "time_ended", "logged_at")


def activity_name_for(activity_type: str, meal_type: Optional[str] = None) -> str:
    if activity_type == "meal" and meal_type:
        return meal_type.capitalize()
    return ACTIVITY_NAME_TEMPLATES.get(activity_type, activity_type.replace("_", " ").title())


def decode_action(raw: RawAction) -> PlannedAction:
    """Turn a model-proposed action into its typed variant, rejecting any mismatch."""
    if raw.operation not in OPERATIONS:
        raise UnknownOperationError(raw.operation)
    try:
        return _planned_action.validate_python({"operation": raw.operation, "params": raw.params})
    except ValidationError as error:
        details = "; ".join(f"{'.'.join(str(part) for part in err['loc'][1:]) or 'params'}: {err['msg']}" for err in error.errors())
        raise ExecutionError(raw.operation, f"Invalid params: {details}") from error


class ActionExecutor:
    def __init__(
        self,
        store: DomainStore,
        maintainer: GoalStreakMaintainer,
        outbox: Optional[Outbox] = None,
        source: ActivitySource = "chat",
    ) -> None:
        self.store = store
        self.maintainer = maintainer
        self.outbox = outbox
        self.source = source

    async def run_plan(
        self,
        user_id: str,
        actions: List[RawAction],
        now: datetime,
        tz_name: str,
        source: Optional[ActivitySource] = None,
    ) -> List[ActionOutcome]:
        """Apply actions in order, isolating per-action failures.

        ``StorageError`` is not isolated; it propagates and ends the turn.
        """
        outcomes: List[ActionOutcome] = []
        for raw in actions:
            try:
                action = decode_action(raw)
                result = await self.execute(user_id, action, now, tz_name, source=source)
                outcomes.append(ActionOutcome(operation=raw.operation, params=raw.params, success=True, result=result))
            except ExecutionError as error:
                logger.warning("Action %s failed for user %s: %s", raw.operation, user_id, error)
                outcomes.append(ActionOutcome(operation=raw.operation, params=raw.params, success=False, error=str(error)))
            except StorageError:
                raise
            except Exception as error:  # pylint: disable=broad-except
                logger.exception("Action %s crashed for user %s", raw.operation, user_id)
                outcomes.append(
                    ActionOutcome(operation=raw.operation, params=raw.params, success=False, error=f"Unexpected error: {error}")
                )
        return outcomes

    async def execute(
        self,
        user_id: str,
        action: PlannedAction,
        now: datetime,
        tz_name: str,
        source: Optional[ActivitySource] = None,
    ) -> Any:
        if isinstance(action, ActivityLogAction):
            return await self._log_activity(user_id, action, now, tz_name, source or self.source)
        if isinstance(action, StreakUpdateAction):
            streak = await self.maintainer.update_streak(user_id, action.params.streak_type, now, tz_name)
            return streak.model_dump(mode="json")
        if isinstance(action, GoalAdjustAction):
            goal = await self._adjust_goal(user_id, action, now)
            return goal.model_dump(mode="json") if goal else None
        if isinstance(action, ProfileTouchAction):
            profile = await self.store.patch_profile(user_id, {"updated_at": to_utc(now)})
            return {"updatedAt": profile.updated_at.isoformat()}
        if isinstance(action, WeightUpdateAction):
            return await self._update_weight(user_id, action, now)
        raise UnknownOperationError(getattr(action, "operation", type(action).__name__))

    def _resolve_times(self, action: ActivityLogAction, now: datetime, tz_name: str) -> Tuple[Dict[str, Optional[datetime]], List[str]]:
        resolved: Dict[str, Optional[datetime]] = {}
        dropped: List[str] = []
        for field_name in TIME_FIELDS:
            raw = getattr(action.params, field_name)
            value = resolve_time_field(field_name, raw, now, tz_name)
            if raw is not None and value is None:
                dropped.append(field_name)
            resolved[field_name] = value
        return resolved, dropped

    async def _log_activity(
        self,
        user_id: str,
        action: ActivityLogAction,
        now: datetime,
        tz_name: str,
        source: ActivitySource,
    ) -> Dict[str, Any]:
        params = action.params
        times, dropped = self._resolve_times(action, now, tz_name)
        started, ended = times["time_started"], times["time_ended"]

        duration = params.duration_minutes
        if duration is None and started and ended and ended > started:
            duration = round((ended - started).total_seconds() / 60, 1)

        weight_kg = params.weight_kg
        if weight_kg is None and params.weight_change is not None:
            profile = await self.store.get_profile(user_id)
            prior = profile.health.weight_kg if profile else None
            if prior is not None:
                weight_kg = round(prior + params.weight_change, 2)

        instant = to_utc(now)
        activity = Activity(
            id=nanoid("act"),
            user_id=user_id,
            activity_type=params.activity_type,
            activity_name=(params.activity_name or "").strip() or activity_name_for(params.activity_type, params.meal_type),
            duration_minutes=duration,
            distance_km=params.distance_km,
            calories_burned=params.calories_burned,
            calories_consumed=params.calories_consumed,
            intensity=params.intensity,
            hydration_ml=params.hydration_ml,
            sleep_hours=params.sleep_hours,
            sleep_quality=params.sleep_quality,
            meal_type=params.meal_type,
            meal_description=params.meal_description,
            mood=params.mood,
            weight_kg=weight_kg,
            time_started=started,
            time_ended=ended,
            notes=params.notes or "",
            logged_at=times["logged_at"] or started or instant,
            source=source,
            created_at=instant,
        )
        stored = await self.store.insert_activity(activity)
        logger.info("Logged %s activity %s for user %s", stored.activity_type, stored.id, user_id)

        side_effects: Dict[str, Any] = {"goalsUpdated": 0, "streaks": []}
        try:
            maintained = await self.maintainer.on_activity_logged(stored, now, tz_name)
            side_effects = {
                "goalsUpdated": len(maintained["goals"]),
                "streaks": [streak.streak_type for streak in maintained["streaks"]],
            }
        except Exception:  # pylint: disable=broad-except
            logger.exception("Goal/streak maintenance failed after activity %s", stored.id)

        if self.outbox is not None:
            day = local_date(stored.logged_at, tz_name)
            try:
                await self.outbox.queue("aggregate.daily", {"userId": user_id, "day": day.isoformat(), "timezone": tz_name})
            except Exception:  # pylint: disable=broad-except
                logger.exception("Could not queue daily aggregate for %s on %s", user_id, day)

        return {"activity": stored.model_dump(mode="json"), "droppedFields": dropped, **side_effects}

    async def _adjust_goal(self, user_id: str, action: GoalAdjustAction, now: datetime) -> Optional[Goal]:
        params = action.params
        goal: Optional[Goal] = None
        if params.goal_id:
            goal = await self.store.get_goal(params.goal_id)
            if goal and goal.user_id != user_id:
                goal = None
        if goal is None and params.goal_type:
            goal = await self.store.active_goal_of_type(user_id, params.goal_type)
        if goal is None:
            logger.info("goal.adjust for user %s matched no goal (id=%s type=%s)", user_id, params.goal_id, params.goal_type)
            return None
        if not goal.ai_adjustable:
            raise ExecutionError(action.operation, f"Goal {goal.id} is not adjustable by the agent")
        progress = goal.current_progress
        if goal.goal_type == "weight_loss" and not progress:
            profile = await self.store.get_profile(user_id)
            progress = (profile.health.weight_kg if profile else None) or 0.0
        patched = goal.model_copy(update={"goal_value": params.new_value})
        return await self.store.patch_goal(
            goal.id,
            {
                "goal_value": params.new_value,
                "current_progress": progress,
                "status": settled_status(patched, progress),
                "updated_at": to_utc(now),
            },
        )

    async def _update_weight(self, user_id: str, action: WeightUpdateAction, now: datetime) -> Dict[str, Any]:
        params = action.params
        profile = await self.store.get_profile(user_id)
        if profile is None:
            raise StorageError(f"Profile not found: {user_id}")
        previous = profile.health.weight_kg
        if params.weight_kg is not None:
            new_weight = params.weight_kg
        elif previous is None:
            raise ExecutionError(action.operation, "Cannot apply a weight change without a recorded weight")
        else:
            new_weight = round(previous + params.weight_change, 2)
        if new_weight <= 0:
            raise ExecutionError(action.operation, f"Resulting weight {new_weight} kg is not positive")

        instant = to_utc(now)
        health = profile.health.model_copy(update={"weight_kg": new_weight})
        await self.store.patch_profile(user_id, {"health": health, "updated_at": instant})

        goal = await self.store.active_goal_of_type(user_id, "weight_loss")
        updated_goal = None
        if goal is not None:
            updated_goal = await self.store.patch_goal(
                goal.id,
                {"current_progress": new_weight, "status": settled_status(goal, new_weight), "updated_at": instant},
            )
        return {
            "previousWeightKg": previous,
            "weightKg": new_weight,
            "goal": updated_goal.model_dump(mode="json") if updated_goal else None,
        }
