"""Goal creation and status changes, by the user or suggested by the agent."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..schemas.domain import GOAL_TYPES, Goal, GoalCreator, GoalProvenance, GoalStatus, UserProfile
from ..schemas.goals import GoalDraft, GoalSuggestions
from ..schemas.validator import get_schema, schema_errors, schema_title
from .aggregates import activity_stats
from .errors import ExecutionError, GenerationError
from .generation import StructuredGenerator
from .maintenance import AGGREGATION_RULES, GoalStreakMaintainer, settled_status
from .outbox import Outbox
from .store import DomainStore
from .temporal import local_date, to_utc
from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 4
SUGGESTION_LOOKBACK_DAYS = 30

GOAL_UNITS = {
    "steps_daily": "steps",
    "workouts_weekly": "workouts",
    "weight_loss": "kg",
    "sleep_target": "hours",
    "hydration_daily": "ml",
    "height_target": "cm",
}

GOAL_TYPE_HINTS = {
    "steps_daily": "daily step count (7000-12000 depending on activity level)",
    "workouts_weekly": "workouts per week (3-6 depending on fitness level)",
    "weight_loss": "target weight in kg, only when the profile and activity history support it",
    "sleep_target": "hours of sleep per night (7-9)",
    "hydration_daily": "water per day in ml (2000-3500)",
    "height_target": "height tracking for young users only",
}

SUGGESTION_PROMPT = """You are WellBuddy's goal coach. Suggest up to {limit} personalised goals that would help this user most right now.

USER CONTEXT:
{context}

EXISTING ACTIVE GOAL TYPES (do not suggest these again): {existing}

GOAL TYPES AVAILABLE:
{goal_types}

Base every suggestion on the data above, keep targets realistic for the user's current level and
respect any underlying conditions. Give a short reasoning, a confidence between 0 and 1 and the
parts of the context you relied on in basedOn.
"""


def default_milestone(goal_type: str, value: float, unit: str) -> str:
    shown = int(value) if float(value).is_integer() else value
    return f"{goal_type.replace('_', ' ').capitalize()}: {shown} {unit}"


class GoalService:
    def __init__(
        self,
        store: DomainStore,
        maintainer: GoalStreakMaintainer,
        generator: Optional[StructuredGenerator] = None,
        outbox: Optional[Outbox] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.maintainer = maintainer
        self.generator = generator
        self.outbox = outbox
        self.timeout_seconds = timeout_seconds

    async def create(
        self,
        profile: UserProfile,
        draft: GoalDraft,
        now: datetime,
        tz_name: str,
        created_by: GoalCreator = "user",
        provenance: Optional[GoalProvenance] = None,
    ) -> Goal:
        """Insert an active goal with its progress derived from what is already logged.

        Only one active goal per type is allowed so that ``goal.adjust`` by type stays unambiguous.
        """
        if await self.store.active_goal_of_type(profile.id, draft.goal_type) is not None:
            raise ExecutionError("goal.create", f"An active {draft.goal_type} goal already exists")

        instant = to_utc(now)
        unit = draft.goal_unit or GOAL_UNITS[draft.goal_type]
        goal = Goal(
            id=nanoid("goal"),
            user_id=profile.id,
            goal_type=draft.goal_type,
            goal_value=draft.goal_value,
            goal_unit=unit,
            target_date=draft.target_date,
            milestone=draft.milestone or default_milestone(draft.goal_type, draft.goal_value, unit),
            ai_adjustable=draft.ai_adjustable,
            created_by=created_by,
            provenance=provenance,
            created_at=instant,
            updated_at=instant,
        )
        if goal.goal_type == "weight_loss" and profile.health.weight_kg:
            weight = profile.health.weight_kg
            goal = goal.model_copy(update={"current_progress": weight, "status": settled_status(goal, weight)})
        stored = await self.store.insert_goal(goal)
        logger.info("Created %s goal %s for user %s (by %s)", stored.goal_type, stored.id, profile.id, created_by)

        if stored.goal_type in AGGREGATION_RULES:
            for updated in await self.maintainer.recompute_goals(profile.id, now, tz_name):
                if updated.id == stored.id:
                    stored = updated
        return stored

    async def set_status(self, user_id: str, goal_id: str, status: GoalStatus, now: datetime) -> Optional[Goal]:
        goal = await self.store.get_goal(goal_id)
        if goal is None or goal.user_id != user_id:
            return None
        if status == "active" and goal.status != "active":
            clash = await self.store.active_goal_of_type(user_id, goal.goal_type)
            if clash is not None:
                raise ExecutionError("goal.status", f"An active {goal.goal_type} goal already exists")
        logger.info("Goal %s status %s -> %s", goal_id, goal.status, status)
        return await self.store.patch_goal(goal_id, {"status": status, "updated_at": to_utc(now)})

    async def _suggestion_context(self, profile: UserProfile, now: datetime, tz_name: str) -> Dict[str, Any]:
        stats = await activity_stats(self.store, profile.id, SUGGESTION_LOOKBACK_DAYS, now, tz_name)
        recent = await self.store.list_activities(profile.id, limit=10)
        streaks = await self.store.list_streaks(profile.id)
        return {
            "profile": profile.health.model_dump(mode="json"),
            "activities": {
                **stats,
                "recent": [
                    {
                        "type": a.activity_type,
                        "name": a.activity_name,
                        "duration": a.duration_minutes,
                        "day": local_date(a.logged_at, tz_name).isoformat(),
                    }
                    for a in recent
                ],
            },
            "streaks": [{"type": s.streak_type, "count": s.current_count, "maxCount": s.max_count} for s in streaks],
        }

    async def suggest(self, profile: UserProfile, now: datetime, tz_name: str) -> List[Goal]:
        """Ask the model for goal suggestions and create the usable ones.

        Generation failures yield no goals; a single bad suggestion is skipped.
        """
        if self.generator is None:
            return []
        active = await self.store.list_goals(profile.id, status="active")
        existing = sorted({goal.goal_type for goal in active})
        prompt = SUGGESTION_PROMPT.format(
            limit=MAX_SUGGESTIONS,
            context=json.dumps(await self._suggestion_context(profile, now, tz_name), indent=2, default=str),
            existing=", ".join(existing) or "none",
            goal_types="\n".join(f"- {goal_type}: {GOAL_TYPE_HINTS[goal_type]}" for goal_type in GOAL_TYPES),
        )
        try:
            raw = await asyncio.wait_for(
                self.generator.generate(prompt, get_schema("goal_suggestions"), schema_title("goal_suggestions")),
                timeout=self.timeout_seconds,
            )
            errors = schema_errors("goal_suggestions", raw)
            if errors:
                raise GenerationError("goal_suggestions", f"Schema violation: {'; '.join(errors)}")
            suggestions = GoalSuggestions.model_validate(raw).suggestions
        except (GenerationError, ValidationError, asyncio.TimeoutError) as error:
            logger.warning("Goal suggestion for user %s produced nothing: %s", profile.id, error)
            return []

        created: List[Goal] = []
        for suggestion in suggestions[:MAX_SUGGESTIONS]:
            draft = GoalDraft(
                goal_type=suggestion.goal_type,
                goal_value=suggestion.goal_value,
                goal_unit=suggestion.goal_unit,
                milestone=suggestion.milestone,
                ai_adjustable=suggestion.ai_adjustable,
            )
            provenance = GoalProvenance(
                reasoning=suggestion.reasoning, evidence=suggestion.based_on, confidence=suggestion.confidence
            )
            try:
                goal = await self.create(profile, draft, now, tz_name, created_by="agent", provenance=provenance)
            except ExecutionError as error:
                logger.info("Skipped suggested goal for user %s: %s", profile.id, error)
                continue
            created.append(goal)
            await self._remember_goal(goal, now, tz_name)
        return created

    async def _remember_goal(self, goal: Goal, now: datetime, tz_name: str) -> None:
        if self.outbox is None:
            return
        reasoning = goal.provenance.reasoning if goal.provenance else ""
        try:
            await self.outbox.queue(
                "memory.embed",
                {
                    "userId": goal.user_id,
                    "text": f"Suggested goal: {goal.goal_type} - {goal.milestone}. Reasoning: {reasoning}",
                    "category": "goal_context",
                    "createdAt": to_utc(now).isoformat(),
                    "timezone": tz_name,
                },
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not schedule goal memory for user %s", goal.user_id)
