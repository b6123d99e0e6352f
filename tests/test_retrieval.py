import pathlib
import sys
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import REFERENCE, FixedEmbedder, make_goal  # noqa: E402
from wellbuddy.agent.embeddings import HashingEmbedder, cosine_similarity  # noqa: E402
from wellbuddy.agent.errors import StorageError  # noqa: E402
from wellbuddy.agent.maintenance import GoalStreakMaintainer  # noqa: E402
from wellbuddy.agent.memory import MemoryIndex  # noqa: E402
from wellbuddy.agent.retrieval import ContextRetriever  # noqa: E402
from wellbuddy.schemas.domain import Activity  # noqa: E402


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


@pytest.mark.asyncio
async def test_hashing_embedder_is_deterministic_and_normalised():
    embedder = HashingEmbedder(32)
    first = await embedder.embed("Ran 5k")
    assert first == await embedder.embed("ran 5k")
    assert sum(v * v for v in first) == pytest.approx(1.0)
    assert await embedder.embed("") == [0.0] * 32


async def _seed_memories(memory):
    texts = {
        "run a": [1.0, 0.0, 0.0],
        "run b": [0.9, 0.1, 0.0],
        "swim": [0.0, 1.0, 0.0],
        "sleep": [0.0, 0.0, 1.0],
        "walk": [0.7, 0.7, 0.0],
        "yoga": [0.5, 0.5, 0.5],
        "tie old": [0.9, 0.1, 0.0],
    }
    memory.embedder.vectors.update(texts)
    for offset, text in enumerate(texts):
        await memory.remember("user-1", text, "activity_summary", REFERENCE + timedelta(minutes=offset))


@pytest.mark.asyncio
async def test_search_returns_top_five_with_recency_tiebreak(store):
    memory = MemoryIndex(store, FixedEmbedder())
    await _seed_memories(memory)

    matches = await memory.search("user-1", [1.0, 0.0, 0.0])

    assert len(matches) == 5
    assert [m.record.text for m in matches[:3]] == ["run a", "tie old", "run b"]
    scores = [m.score for m in matches]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_search_is_scoped_to_owner_and_category(store):
    memory = MemoryIndex(store, FixedEmbedder())
    await memory.remember("user-1", "prefers mornings", "preference", REFERENCE)
    await memory.remember("user-2", "someone else", "preference", REFERENCE)
    await memory.remember("user-1", "ran 5k", "activity_summary", REFERENCE)

    matches = await memory.search("user-1", [1.0, 0.0, 0.0], category="preference")

    assert [m.record.text for m in matches] == ["prefers mornings"]


@pytest.mark.asyncio
async def test_remember_rejects_wrong_dimensions(store):
    embedder = FixedEmbedder({"odd": [1.0, 0.0]})
    with pytest.raises(StorageError):
        await MemoryIndex(store, embedder).remember("user-1", "odd", "health_note", REFERENCE)


@pytest.mark.asyncio
async def test_retrieve_assembles_context(store):
    memory = MemoryIndex(store, FixedEmbedder())
    await _seed_memories(memory)
    for index in range(12):
        logged = REFERENCE - timedelta(hours=index)
        await store.insert_activity(
            Activity(id=f"a{index}", user_id="user-1", activity_type="walk", activity_name="Walk", logged_at=logged, created_at=logged)
        )
    await store.insert_goal(make_goal("g-active", "steps_daily", 10000))
    await store.insert_goal(make_goal("g-done", "sleep_target", 8, status="completed"))
    await GoalStreakMaintainer(store).update_streak("user-1", "workout", REFERENCE, "UTC")

    context = await ContextRetriever(store, memory).retrieve("user-1", "how far did I run")

    assert len(context.semantic_chunks) == 5
    assert [a.id for a in context.recent_activities] == [f"a{i}" for i in range(10)]
    assert [g.id for g in context.active_goals] == ["g-active"]
    assert [s.streak_type for s in context.active_streaks] == ["workout"]
    assert context.degraded is False


@pytest.mark.asyncio
async def test_retrieve_degrades_to_zero_vector_when_embedding_fails(store):
    memory = MemoryIndex(store, FixedEmbedder())
    await _seed_memories(memory)
    memory.embedder.fail = True

    context = await ContextRetriever(store, memory).retrieve("user-1", "anything")

    assert context.degraded is True
    # Every score is 0, so the most recent chunks win.
    assert context.semantic_chunks == ["tie old", "yoga", "walk", "sleep", "swim"]


@pytest.mark.asyncio
async def test_remember_stamps_the_local_calendar_day(store):
    memory = MemoryIndex(store, FixedEmbedder())
    late_evening_utc = REFERENCE.replace(hour=20)

    manila = await memory.remember("user-1", "late run", "activity_summary", late_evening_utc, tz_name="Asia/Manila")
    plain = await memory.remember("user-1", "late run", "activity_summary", late_evening_utc)

    assert manila.day.isoformat() == "2025-03-13"
    assert plain.day.isoformat() == "2025-03-12"
