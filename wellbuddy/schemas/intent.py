from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .domain import ActivityType

IntentLabel = Literal["log_activity", "ask_advice", "check_status", "set_goal", "update_weight", "other"]
IntentUnit = Literal["km", "minutes", "hours", "ml", "meals", "pages", "steps", "kg", "lbs"]


class ParsedIntent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", strict=True)

    intent: IntentLabel
    activity_type: Optional[ActivityType] = None
    value: Optional[float] = None
    unit: Optional[IntentUnit] = None
    confidence: float = Field(ge=0, le=1)
    extracted: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def fallback(cls) -> "ParsedIntent":
        return cls(intent="other", activity_type=None, value=None, unit=None, confidence=0.0, extracted={})
