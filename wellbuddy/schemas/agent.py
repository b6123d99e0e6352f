from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .domain import ActivityType, GoalType, Intensity, MealType, Mood, SleepQuality

ResponseType = Literal["recommendation", "confirmation", "alert", "question"]

OPERATIONS = ("activity.log", "streak.update", "goal.adjust", "profile.touch_context", "profile.update_weight")

# Time-like params may arrive as phrases ("an hour ago"), ISO strings or epoch milliseconds.
TimeLike = Union[str, float]


class _Params(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", strict=True)


class ActivityLogParams(_Params):
    activity_type: ActivityType
    activity_name: Optional[str] = None
    duration_minutes: Optional[float] = Field(default=None, ge=0)
    distance_km: Optional[float] = Field(default=None, ge=0)
    calories_burned: Optional[float] = Field(default=None, ge=0)
    calories_consumed: Optional[float] = Field(default=None, ge=0)
    intensity: Optional[Intensity] = None
    hydration_ml: Optional[float] = Field(default=None, ge=0)
    sleep_hours: Optional[float] = Field(default=None, ge=0, le=24)
    sleep_quality: Optional[SleepQuality] = None
    meal_type: Optional[MealType] = None
    meal_description: Optional[str] = None
    mood: Optional[Mood] = None
    notes: Optional[str] = None
    weight_kg: Optional[float] = Field(default=None, gt=0)
    weight_change: Optional[float] = None
    time_started: Optional[TimeLike] = None
    time_ended: Optional[TimeLike] = None
    logged_at: Optional[TimeLike] = None


class StreakUpdateParams(_Params):
    streak_type: str = Field(min_length=1)


class GoalAdjustParams(_Params):
    goal_id: Optional[str] = None
    goal_type: Optional[GoalType] = None
    new_value: float = Field(gt=0)

    @model_validator(mode="after")
    def _require_reference(self) -> "GoalAdjustParams":
        if not self.goal_id and not self.goal_type:
            raise ValueError("goalId or goalType is required")
        return self


class ProfileTouchParams(_Params):
    pass


class WeightUpdateParams(_Params):
    weight_kg: Optional[float] = Field(default=None, gt=0)
    weight_change: Optional[float] = None

    @model_validator(mode="after")
    def _require_value(self) -> "WeightUpdateParams":
        if self.weight_kg is None and self.weight_change is None:
            raise ValueError("weightKg or weightChange is required")
        return self


class ActivityLogAction(BaseModel):
    operation: Literal["activity.log"]
    params: ActivityLogParams


class StreakUpdateAction(BaseModel):
    operation: Literal["streak.update"]
    params: StreakUpdateParams


class GoalAdjustAction(BaseModel):
    operation: Literal["goal.adjust"]
    params: GoalAdjustParams


class ProfileTouchAction(BaseModel):
    operation: Literal["profile.touch_context"]
    params: ProfileTouchParams = Field(default_factory=ProfileTouchParams)


class WeightUpdateAction(BaseModel):
    operation: Literal["profile.update_weight"]
    params: WeightUpdateParams


PlannedAction = Annotated[
    Union[ActivityLogAction, StreakUpdateAction, GoalAdjustAction, ProfileTouchAction, WeightUpdateAction],
    Field(discriminator="operation"),
]


class RawAction(BaseModel):
    """An action as proposed by the model, before it is decoded into a variant."""

    model_config = ConfigDict(extra="forbid", strict=True)

    operation: str
    params: Dict[str, Any]


class AgentResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", strict=True)

    type: ResponseType
    response_text: str = Field(min_length=1)
    actions: List[RawAction] = Field(default_factory=list)
    reasoning: str = ""
    confidence: float = Field(ge=0, le=1)

    @classmethod
    def fallback(cls) -> "AgentResponse":
        return cls(
            type="confirmation",
            response_text="Thanks for the update! I've noted it.",
            actions=[],
            reasoning="fallback",
            confidence=0.3,
        )
