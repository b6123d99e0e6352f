import pathlib
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wellbuddy.agent.errors import GenerationError  # noqa: E402
from wellbuddy.agent.services import build_services  # noqa: E402
from wellbuddy.agent.store import DomainStore  # noqa: E402
from wellbuddy.config import Settings  # noqa: E402
from wellbuddy.schemas.domain import Goal, HealthProfile, Preferences, UserProfile  # noqa: E402

# Wednesday 2025-03-12 10:00 UTC
REFERENCE = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)


class FakeGenerator:
    """Structured generator scripted per schema name.

    A scripted value that is an exception is raised instead of returned.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = dict(responses or {})
        self.prompts: List[str] = []

    async def generate(self, prompt: str, schema: Dict[str, Any], name: str) -> Any:
        self.prompts.append(prompt)
        if name not in self.responses:
            raise GenerationError("generate", f"no scripted response for {name}")
        value = self.responses[name]
        if isinstance(value, Exception):
            raise value
        return value


class FixedEmbedder:
    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimensions: int = 3, fail: bool = False) -> None:
        self.vectors = dict(vectors or {})
        self.dimensions = dimensions
        self.fail = fail

    async def embed(self, text: str) -> List[float]:
        if self.fail:
            raise GenerationError("embed", "embedding service down")
        return list(self.vectors.get(text, [1.0] + [0.0] * (self.dimensions - 1)))


def intent_payload(intent: str = "log_activity", activity_type: Optional[str] = None, value=None, unit=None, confidence: float = 0.9):
    return {
        "intent": intent,
        "activityType": activity_type,
        "value": value,
        "unit": unit,
        "confidence": confidence,
        "extracted": {},
    }


def response_payload(actions: List[Dict[str, Any]], text: str = "Nice work!", response_type: str = "confirmation"):
    return {
        "type": response_type,
        "responseText": text,
        "actions": actions,
        "reasoning": "logged what the user reported",
        "confidence": 0.85,
    }


def make_profile(user_id: str = "user-1", tz: Optional[str] = "UTC", weight_kg: Optional[float] = None, **extra) -> UserProfile:
    return UserProfile(
        id=user_id,
        display_name=extra.pop("display_name", "Ana"),
        health=HealthProfile(weight_kg=weight_kg),
        preferences=Preferences(timezone=tz),
        created_at=REFERENCE,
        updated_at=REFERENCE,
        **extra,
    )


def make_goal(goal_id: str, goal_type: str, value: float, user_id: str = "user-1", **extra) -> Goal:
    return Goal(
        id=goal_id,
        user_id=user_id,
        goal_type=goal_type,
        goal_value=value,
        goal_unit=extra.pop("goal_unit", "units"),
        milestone=extra.pop("milestone", f"{goal_type} goal"),
        created_at=extra.pop("created_at", REFERENCE),
        updated_at=REFERENCE,
        **extra,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(embedding_dimensions=3, llm_timeout_seconds=2.0, embed_timeout_seconds=2.0)


@pytest.fixture
def store() -> DomainStore:
    return DomainStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def embedder() -> FixedEmbedder:
    return FixedEmbedder()


@pytest.fixture
def services(settings, store, generator, embedder):
    return build_services(settings=settings, store=store, generator=generator, embedder=embedder)
