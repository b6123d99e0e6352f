import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

from ..schemas.domain import (
    Activity,
    ConversationTurn,
    DailySummary,
    EmbeddingRecord,
    Goal,
    GoalStatus,
    GoalType,
    Streak,
    UserProfile,
)
from .errors import StorageError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Only these goal fields may be patched; everything else is set at creation.
GOAL_PATCHABLE_FIELDS = frozenset({"current_progress", "goal_value", "status", "updated_at", "milestone", "target_date"})


def _copy(record: ModelT) -> ModelT:
    return record.model_copy(deep=True)


class DomainStore:
    """Async in-memory Domain Store.

    Activities, embeddings and conversation turns are append-only. Goal progress,
    streak counters and daily summaries are derived fields written with
    last-writer-wins semantics.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._profiles: Dict[str, UserProfile] = {}
        self._activities: Dict[str, Activity] = {}
        self._goals: Dict[str, Goal] = {}
        self._streaks: Dict[Tuple[str, str], Streak] = {}
        self._embeddings: List[EmbeddingRecord] = []
        self._conversations: List[ConversationTurn] = []
        self._daily: Dict[Tuple[str, date], DailySummary] = {}
        self.fail_writes = False

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise StorageError("Domain store is not accepting writes")

    # profiles

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self._lock:
            profile = self._profiles.get(user_id)
            return _copy(profile) if profile else None

    async def put_profile(self, profile: UserProfile) -> UserProfile:
        async with self._lock:
            self._check_writable()
            self._profiles[profile.id] = _copy(profile)
            return _copy(profile)

    async def patch_profile(self, user_id: str, updates: Dict[str, Any]) -> UserProfile:
        async with self._lock:
            self._check_writable()
            existing = self._profiles.get(user_id)
            if not existing:
                raise StorageError(f"Profile not found: {user_id}")
            updated = existing.model_copy(update=updates, deep=True)
            self._profiles[user_id] = updated
            return _copy(updated)

    async def find_profile_by_sender(self, sender_id: str) -> Optional[UserProfile]:
        async with self._lock:
            for profile in self._profiles.values():
                if profile.messenger_sender_id == sender_id:
                    return _copy(profile)
            return None

    async def find_profile_by_link_code(self, code: str) -> Optional[UserProfile]:
        async with self._lock:
            for profile in self._profiles.values():
                if profile.link_code and profile.link_code == code:
                    return _copy(profile)
            return None

    async def list_profiles(self) -> List[UserProfile]:
        async with self._lock:
            return [_copy(profile) for profile in self._profiles.values()]

    # activities

    async def insert_activity(self, activity: Activity) -> Activity:
        async with self._lock:
            self._check_writable()
            if activity.id in self._activities:
                raise StorageError(f"Duplicate activity id: {activity.id}")
            self._activities[activity.id] = _copy(activity)
            return _copy(activity)

    async def list_activities(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Activity]:
        """Activities for ``user_id`` newest first, within [start, end) when given."""
        async with self._lock:
            rows = [
                activity
                for activity in self._activities.values()
                if activity.user_id == user_id
                and (start is None or activity.logged_at >= start)
                and (end is None or activity.logged_at < end)
            ]
        rows.sort(key=lambda activity: (activity.logged_at, activity.created_at), reverse=True)
        if isinstance(limit, int):
            rows = rows[:limit]
        return [_copy(activity) for activity in rows]

    # goals

    async def insert_goal(self, goal: Goal) -> Goal:
        async with self._lock:
            self._check_writable()
            self._goals[goal.id] = _copy(goal)
            return _copy(goal)

    async def get_goal(self, goal_id: str) -> Optional[Goal]:
        async with self._lock:
            goal = self._goals.get(goal_id)
            return _copy(goal) if goal else None

    async def list_goals(self, user_id: str, status: Optional[GoalStatus] = None) -> List[Goal]:
        async with self._lock:
            goals = [goal for goal in self._goals.values() if goal.user_id == user_id]
        if status:
            goals = [goal for goal in goals if goal.status == status]
        goals.sort(key=lambda goal: goal.created_at)
        return [_copy(goal) for goal in goals]

    async def active_goal_of_type(self, user_id: str, goal_type: GoalType) -> Optional[Goal]:
        """Most recently created active goal of ``goal_type``."""
        goals = [goal for goal in await self.list_goals(user_id, "active") if goal.goal_type == goal_type]
        return goals[-1] if goals else None

    async def patch_goal(self, goal_id: str, updates: Dict[str, Any]) -> Goal:
        unknown = set(updates) - GOAL_PATCHABLE_FIELDS
        if unknown:
            raise StorageError(f"Goal fields are not patchable: {sorted(unknown)}")
        async with self._lock:
            self._check_writable()
            existing = self._goals.get(goal_id)
            if not existing:
                raise StorageError(f"Goal not found: {goal_id}")
            updated = existing.model_copy(update=updates)
            self._goals[goal_id] = updated
            return _copy(updated)

    # streaks

    async def get_streak(self, user_id: str, streak_type: str) -> Optional[Streak]:
        async with self._lock:
            streak = self._streaks.get((user_id, streak_type))
            return _copy(streak) if streak else None

    async def list_streaks(self, user_id: str) -> List[Streak]:
        async with self._lock:
            streaks = [streak for (owner, _), streak in self._streaks.items() if owner == user_id]
        streaks.sort(key=lambda streak: streak.streak_type)
        return [_copy(streak) for streak in streaks]

    async def put_streak(self, streak: Streak) -> Streak:
        async with self._lock:
            self._check_writable()
            self._streaks[(streak.user_id, streak.streak_type)] = _copy(streak)
            return _copy(streak)

    # embeddings

    async def append_embedding(self, record: EmbeddingRecord) -> EmbeddingRecord:
        async with self._lock:
            self._check_writable()
            self._embeddings.append(_copy(record))
            return _copy(record)

    async def list_embeddings(self, user_id: str, category: Optional[str] = None) -> List[EmbeddingRecord]:
        async with self._lock:
            return [
                _copy(record)
                for record in self._embeddings
                if record.user_id == user_id and (category is None or record.category == category)
            ]

    # conversations

    async def append_conversation(self, turn: ConversationTurn) -> ConversationTurn:
        async with self._lock:
            self._check_writable()
            self._conversations.append(_copy(turn))
            return _copy(turn)

    async def recent_conversations(self, user_id: str, limit: int = 10) -> List[ConversationTurn]:
        async with self._lock:
            turns = [turn for turn in self._conversations if turn.user_id == user_id]
        turns.sort(key=lambda turn: turn.created_at, reverse=True)
        return [_copy(turn) for turn in turns[:limit]]

    # daily summaries

    async def put_daily_summary(self, summary: DailySummary) -> DailySummary:
        async with self._lock:
            self._check_writable()
            self._daily[(summary.user_id, summary.day)] = _copy(summary)
            return _copy(summary)

    async def get_daily_summary(self, user_id: str, day: date) -> Optional[DailySummary]:
        async with self._lock:
            summary = self._daily.get((user_id, day))
            return _copy(summary) if summary else None
