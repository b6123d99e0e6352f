import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from ..schemas.domain import Activity, Goal, Streak
from .embeddings import zero_vector
from .memory import MemoryIndex
from .store import DomainStore

logger = logging.getLogger(__name__)

SEMANTIC_TOP_K = 5
RECENT_ACTIVITY_LIMIT = 10


@dataclass
class RetrievedContext:
    semantic_chunks: List[str] = field(default_factory=list)
    recent_activities: List[Activity] = field(default_factory=list)
    active_goals: List[Goal] = field(default_factory=list)
    active_streaks: List[Streak] = field(default_factory=list)
    degraded: bool = False


class ContextRetriever:
    def __init__(self, store: DomainStore, memory: MemoryIndex, embed_timeout_seconds: float = 10.0) -> None:
        self.store = store
        self.memory = memory
        self.embed_timeout_seconds = embed_timeout_seconds

    async def _query_vector(self, query_text: str) -> Tuple[List[float], bool]:
        try:
            vector = await asyncio.wait_for(self.memory.embedder.embed(query_text), timeout=self.embed_timeout_seconds)
        except Exception as error:  # pylint: disable=broad-except
            logger.warning("Query embedding failed, using neutral vector: %s", error)
            return zero_vector(self.memory.dimensions), True
        if len(vector) != self.memory.dimensions:
            logger.warning("Query embedding has %d dimensions, expected %d", len(vector), self.memory.dimensions)
            return zero_vector(self.memory.dimensions), True
        return vector, False

    async def retrieve(self, user_id: str, query_text: str) -> RetrievedContext:
        query_vector, degraded = await self._query_vector(query_text)
        matches = await self.memory.search(user_id, query_vector, top_k=SEMANTIC_TOP_K)
        recent = await self.store.list_activities(user_id, limit=RECENT_ACTIVITY_LIMIT)
        goals = await self.store.list_goals(user_id, status="active")
        streaks = await self.store.list_streaks(user_id)
        return RetrievedContext(
            semantic_chunks=[match.record.text for match in matches],
            recent_activities=recent,
            active_goals=goals,
            active_streaks=[streak for streak in streaks if streak.current_count > 0],
            degraded=degraded,
        )
