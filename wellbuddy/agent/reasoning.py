import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..schemas.agent import (
    ActivityLogParams,
    AgentResponse,
    GoalAdjustParams,
    ProfileTouchParams,
    StreakUpdateParams,
    WeightUpdateParams,
)
from ..schemas.domain import UserProfile
from ..schemas.intent import ParsedIntent
from ..schemas.validator import get_schema, schema_errors, schema_title
from .errors import GenerationError
from .generation import StructuredGenerator
from .retrieval import RetrievedContext
from .temporal import get_zone, to_utc

logger = logging.getLogger(__name__)

PERSONAS_PATH = Path(__file__).resolve().parents[1] / "personas"
PROMPT_ACTIVITY_LIMIT = 5

OPERATION_CATALOG = [
    ("activity.log", "Log a new activity. activityType is required; activityName is a short human label.", ActivityLogParams),
    ("streak.update", "Count today towards a streak.", StreakUpdateParams),
    ("goal.adjust", "Change the target of an active goal, referenced by goalType or goalId.", GoalAdjustParams),
    ("profile.touch_context", "Refresh the profile context. No params.", ProfileTouchParams),
    ("profile.update_weight", "Record the user's weight as weightKg (absolute) or weightChange (signed delta).", WeightUpdateParams),
]


def load_persona(name: str = "coach", personas_path: Optional[Path] = None) -> Dict[str, Any]:
    file_path = (personas_path or PERSONAS_PATH) / f"{name}.yaml"
    parsed = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError(f"Persona file {file_path} did not produce an object")
    return {
        "name": str(parsed.get("name") or name),
        "dna": str(parsed.get("dna") or ""),
        "tone": str(parsed.get("tone") or "neutral"),
        "forbidden_behaviors": list(parsed.get("forbidden_behaviors") or []),
        "guidelines": list(parsed.get("guidelines") or []),
    }


def _param_names(model: type) -> List[str]:
    names = []
    for field_name, info in model.model_fields.items():
        alias = info.alias or field_name
        names.append(alias if info.is_required() else f"{alias}?")
    return names


def _describe_operations() -> str:
    lines = []
    for operation, description, params_model in OPERATION_CATALOG:
        params = ", ".join(_param_names(params_model)) or "none"
        lines.append(f'- "{operation}": {description} Params: {params}')
    return "\n".join(lines)


def _fmt(value: Any, suffix: str = "") -> str:
    return f"{value}{suffix}" if value not in (None, "", []) else "Not set"


def _profile_summary(profile: UserProfile) -> str:
    health = profile.health
    return "\n".join(
        [
            f"- Name: {profile.display_name}",
            f"- Age: {_fmt(health.age)}",
            f"- Gender: {_fmt(health.gender)}",
            f"- Height: {_fmt(health.height_cm, ' cm')}",
            f"- Weight: {_fmt(health.weight_kg, ' kg')}",
            f"- Fitness level: {_fmt(health.fitness_level)}",
            f"- Conditions: {health.underlying_conditions or 'None'}",
            f"- Health goals: {', '.join(health.goals) or 'None yet'}",
            f"- Language: {_fmt(profile.preferences.language)}",
        ]
    )


def build_prompt(
    message: str,
    intent: ParsedIntent,
    context: RetrievedContext,
    profile: UserProfile,
    now: datetime,
    tz_name: str,
    persona: Dict[str, Any],
) -> str:
    local_now = to_utc(now).astimezone(get_zone(tz_name))
    activities = "\n".join(
        f"- {a.activity_name} ({a.activity_type}): {a.notes} [{a.logged_at.astimezone(get_zone(tz_name)).strftime('%Y-%m-%d %H:%M')}]"
        for a in context.recent_activities[:PROMPT_ACTIVITY_LIMIT]
    )
    streaks = "\n".join(f"- {s.streak_type}: {s.current_count} days (max: {s.max_count})" for s in context.active_streaks)
    goals = "\n".join(
        f"- [{g.id}] {g.goal_type}: {g.milestone} {g.current_progress:g}/{g.goal_value:g} {g.goal_unit}" for g in context.active_goals
    )
    semantic = "\n".join(context.semantic_chunks)
    guidelines = "\n".join(f"- {line}" for line in persona["guidelines"])
    forbidden = "\n".join(f"- {line}" for line in persona["forbidden_behaviors"])
    return f"""You are {persona['dna']}
Tone: {persona['tone']}

USER MESSAGE: "{message}"
PARSED INTENT: {json.dumps(intent.model_dump(by_alias=True))}

CURRENT TIME:
- Local time: {local_now.strftime('%Y-%m-%d %H:%M')} ({local_now.strftime('%A')})
- Timezone: {tz_name}

USER PROFILE:
{_profile_summary(profile)}

RECENT ACTIVITY:
{activities or "No recent activities"}

CURRENT STREAKS:
{streaks or "No active streaks"}

ACTIVE GOALS:
{goals or "No active goals"}

SEMANTIC CONTEXT:
{semantic or "No relevant context found"}

AVAILABLE OPERATIONS (use these exact names; params ending in ? are optional):
{_describe_operations()}

GUIDELINES:
{guidelines}

NEVER:
{forbidden}

Reply with the response type, the text to send the user, the ordered list of actions to apply,
your reasoning and a confidence between 0 and 1.
"""


class ReasoningEngine:
    def __init__(self, generator: StructuredGenerator, timeout_seconds: float = 30.0, persona: Optional[Dict[str, Any]] = None) -> None:
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self.persona = persona or load_persona()

    async def reason(
        self,
        message: str,
        intent: ParsedIntent,
        context: RetrievedContext,
        profile: UserProfile,
        now: datetime,
        tz_name: str,
    ) -> AgentResponse:
        """Plan a reply and actions. Never raises; failures give ``AgentResponse.fallback()``."""
        try:
            prompt = build_prompt(message, intent, context, profile, now, tz_name, self.persona)
            raw = await asyncio.wait_for(
                self.generator.generate(prompt, get_schema("agent_response"), schema_title("agent_response")),
                timeout=self.timeout_seconds,
            )
            errors = schema_errors("agent_response", raw)
            if errors:
                raise GenerationError("reason", f"Schema violation: {'; '.join(errors)}")
            return AgentResponse.model_validate(raw)
        except (GenerationError, ValidationError, asyncio.TimeoutError) as error:
            logger.warning("Reasoning fell back: %s", error)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Reasoning failed unexpectedly")
        return AgentResponse.fallback()
