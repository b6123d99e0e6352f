import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..schemas.domain import EmbeddingCategory, EmbeddingRecord
from .embeddings import Embedder, cosine_similarity
from .errors import StorageError
from .store import DomainStore
from .temporal import local_date, to_utc
from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
MAX_TOP_K = 20
MAX_CHUNK_CHARS = 2000


@dataclass
class MemoryMatch:
    record: EmbeddingRecord
    score: float


class MemoryIndex:
    """Per-user semantic memory over append-only embedding records."""

    def __init__(self, store: DomainStore, embedder: Embedder) -> None:
        self.store = store
        self.embedder = embedder

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    async def remember(
        self,
        user_id: str,
        text: str,
        category: EmbeddingCategory,
        now: datetime,
        related_activity_id: Optional[str] = None,
        tz_name: Optional[str] = None,
    ) -> EmbeddingRecord:
        """Embed and append ``text``; ``day`` is the local calendar day in ``tz_name``."""
        chunk = text.strip()[:MAX_CHUNK_CHARS]
        vector = await self.embedder.embed(chunk)
        if len(vector) != self.dimensions:
            raise StorageError(f"Embedding has {len(vector)} dimensions, index expects {self.dimensions}")
        created_at = to_utc(now)
        record = EmbeddingRecord(
            id=nanoid("emb"),
            user_id=user_id,
            category=category,
            text=chunk,
            vector=vector,
            day=local_date(created_at, tz_name),
            related_activity_id=related_activity_id,
            created_at=created_at,
        )
        return await self.store.append_embedding(record)

    async def search(
        self,
        user_id: str,
        query_vector: List[float],
        top_k: int = DEFAULT_TOP_K,
        category: Optional[EmbeddingCategory] = None,
    ) -> List[MemoryMatch]:
        """Top-k records by cosine similarity, ties broken by most recent."""
        top_k = max(1, min(int(top_k), MAX_TOP_K))
        records = await self.store.list_embeddings(user_id, category)
        scored = [MemoryMatch(record=record, score=cosine_similarity(query_vector, record.vector)) for record in records]
        scored.sort(key=lambda match: (match.score, match.record.created_at), reverse=True)
        return scored[:top_k]
