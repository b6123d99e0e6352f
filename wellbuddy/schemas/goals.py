from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .domain import GoalCreator, GoalProvenance, GoalStatus, GoalType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class GoalDraft(_CamelModel):
    goal_type: GoalType
    goal_value: float = Field(gt=0)
    goal_unit: Optional[str] = None
    milestone: Optional[str] = None
    target_date: Optional[date] = None
    ai_adjustable: bool = False


class GoalCreateRequest(GoalDraft):
    created_by: GoalCreator = "user"
    provenance: Optional[GoalProvenance] = None


class GoalStatusUpdate(_CamelModel):
    status: GoalStatus


class GoalSuggestion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", strict=True)

    goal_type: GoalType
    goal_value: float = Field(gt=0)
    goal_unit: str
    milestone: str = Field(min_length=1)
    ai_adjustable: bool = True
    reasoning: str
    confidence: float = Field(ge=0, le=1)
    based_on: List[str] = Field(default_factory=list)


class GoalSuggestions(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    suggestions: List[GoalSuggestion]
