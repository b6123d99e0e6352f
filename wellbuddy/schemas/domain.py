from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, Field

ActivityType = Literal[
    # exercise
    "workout",
    "walk",
    "run",
    "yoga",
    "cycle",
    "swim",
    "gym",
    "meditation",
    "stretch",
    # wellness
    "sleep",
    "hydration",
    "meal",
    "weight_check",
    # leisure
    "gaming",
    "computer",
    "reading",
    "tv",
    "music",
    "social",
    "hobby",
    "leisure",
    # errands and tasks
    "errand",
    "task",
    "shopping",
    "study",
]

WORKOUT_TYPES = frozenset({"workout", "run", "walk", "cycle", "swim", "yoga", "gym", "stretch"})
STEP_TYPES = frozenset({"walk", "run"})
STEPS_PER_KM = 1300

Intensity = Literal["light", "moderate", "vigorous"]
SleepQuality = Literal["poor", "fair", "good", "excellent"]
MealType = Literal["breakfast", "lunch", "dinner", "snack"]
Mood = Literal["bad", "neutral", "good", "excellent"]
ActivitySource = Literal["chat", "messenger", "dashboard"]

GoalType = Literal["steps_daily", "workouts_weekly", "weight_loss", "sleep_target", "hydration_daily", "height_target"]
GOAL_TYPES = get_args(GoalType)
GoalStatus = Literal["active", "completed", "paused"]
GoalCreator = Literal["user", "agent"]

EmbeddingCategory = Literal["activity_summary", "goal_context", "health_note", "preference"]


class Activity(BaseModel):
    id: str
    user_id: str
    activity_type: ActivityType
    activity_name: str
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None
    calories_burned: Optional[float] = None
    calories_consumed: Optional[float] = None
    intensity: Optional[Intensity] = None
    hydration_ml: Optional[float] = None
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[SleepQuality] = None
    meal_type: Optional[MealType] = None
    meal_description: Optional[str] = None
    mood: Optional[Mood] = None
    weight_kg: Optional[float] = None
    time_started: Optional[datetime] = None
    time_ended: Optional[datetime] = None
    notes: str = ""
    logged_at: datetime
    source: ActivitySource = "chat"
    created_at: datetime


class GoalProvenance(BaseModel):
    reasoning: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None


class Goal(BaseModel):
    id: str
    user_id: str
    goal_type: GoalType
    goal_value: float
    goal_unit: str
    current_progress: float = 0.0
    target_date: Optional[date] = None
    status: GoalStatus = "active"
    milestone: str
    ai_adjustable: bool = False
    created_by: GoalCreator = "user"
    provenance: Optional[GoalProvenance] = None
    created_at: datetime
    updated_at: datetime


class Streak(BaseModel):
    id: str
    user_id: str
    streak_type: str
    current_count: int
    max_count: int
    last_activity_date: date
    last_activity_at: datetime
    created_at: datetime


class HealthProfile(BaseModel):
    age: Optional[int] = None
    gender: Optional[str] = None
    fitness_level: Optional[str] = None
    underlying_conditions: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    goals: List[str] = Field(default_factory=list)


class Preferences(BaseModel):
    timezone: Optional[str] = None
    language: Optional[str] = None
    notification_channels: List[str] = Field(default_factory=list)
    preferred_activities: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    id: str
    display_name: str = "User"
    health: HealthProfile = Field(default_factory=HealthProfile)
    preferences: Preferences = Field(default_factory=Preferences)
    messenger_sender_id: Optional[str] = None
    link_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class EmbeddingRecord(BaseModel):
    id: str
    user_id: str
    category: EmbeddingCategory
    text: str
    vector: List[float]
    day: date
    related_activity_id: Optional[str] = None
    created_at: datetime


class ActionOutcome(BaseModel):
    operation: str
    params: Dict[str, Any]
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None


class AgentResponseRecord(BaseModel):
    text: str
    type: str
    confidence: float
    structured: Dict[str, Any]


class ConversationTurn(BaseModel):
    id: str
    user_id: str
    user_message: str
    response: AgentResponseRecord
    actions: List[ActionOutcome]
    created_at: datetime


class DailySummary(BaseModel):
    user_id: str
    day: date
    steps: int = 0
    workout_count: int = 0
    water_ml: float = 0.0
    sleep_hours: float = 0.0
    calories_burned: float = 0.0
    calories_consumed: float = 0.0
    activity_count: int = 0
    computed_at: datetime
