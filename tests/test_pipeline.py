import pathlib
import sys
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import REFERENCE, intent_payload, make_goal, make_profile, response_payload  # noqa: E402
from wellbuddy.agent.errors import GenerationError  # noqa: E402
from wellbuddy.agent.pipeline import STORAGE_FAILURE_TEXT, process_message, reference_instant  # noqa: E402

WALK_5KM = [{"operation": "activity.log", "params": {"activityType": "walk", "activityName": "Walk", "distanceKm": 5.0}}]


def _script(generator, actions, text="Nice walk!"):
    generator.responses["parsed_intent"] = intent_payload(activity_type="walk", value=5.0, unit="km")
    generator.responses["agent_response"] = response_payload(actions, text=text)


@pytest.mark.asyncio
async def test_walked_5km_logs_activity_and_sets_steps(services, store, generator):
    await store.put_profile(make_profile())
    await store.insert_goal(make_goal("g-steps", "steps_daily", 10000, current_progress=1234))
    _script(generator, WALK_5KM)

    result = await process_message(services, "user-1", "walked 5km", now=REFERENCE)

    assert result.success is True
    assert result.response_text == "Nice walk!"
    assert result.actions_executed_count == 1
    activities = await store.list_activities("user-1")
    assert len(activities) == 1
    assert activities[0].activity_type == "walk"
    assert activities[0].distance_km == 5.0
    assert activities[0].logged_at == REFERENCE
    assert (await store.get_goal("g-steps")).current_progress == 6500

    # A second walk the same day re-derives the total rather than adding on top.
    await process_message(services, "user-1", "walked 5km", now=REFERENCE + timedelta(hours=1))
    assert (await store.get_goal("g-steps")).current_progress == 13000
    assert (await store.get_goal("g-steps")).status == "completed"


@pytest.mark.asyncio
async def test_turn_is_logged_and_memory_embedded_through_outbox(services, store, generator):
    await store.put_profile(make_profile())
    _script(generator, WALK_5KM)

    await process_message(services, "user-1", "walked 5km", now=REFERENCE)

    turns = await store.recent_conversations("user-1")
    assert len(turns) == 1
    assert turns[0].actions[0].success is True
    assert await store.list_embeddings("user-1") == []

    await services.outbox.drain()

    embeddings = await store.list_embeddings("user-1")
    assert [record.text for record in embeddings] == ["walked 5km - Nice walk!"]
    assert embeddings[0].related_activity_id == (await store.list_activities("user-1"))[0].id
    summary = await store.get_daily_summary("user-1", REFERENCE.date())
    assert summary.steps == 6500


@pytest.mark.asyncio
async def test_model_failures_still_produce_a_reply(services, store, generator):
    await store.put_profile(make_profile())
    generator.responses["parsed_intent"] = GenerationError("generate", "boom")
    generator.responses["agent_response"] = {"garbage": True}

    result = await process_message(services, "user-1", "hello", now=REFERENCE)

    assert result.success is True
    assert result.response_type == "confirmation"
    assert result.confidence == 0.3
    assert result.actions_executed_count == 0
    trace = await services.telemetry.get(result.trace_id)
    assert trace["fallbacks"] == ["intent", "reasoning"]


@pytest.mark.asyncio
async def test_dropped_time_fields_are_counted_in_telemetry(services, store, generator):
    await store.put_profile(make_profile())
    actions = [{"operation": "activity.log", "params": {"activityType": "run", "timeStarted": "after lunchish"}}]
    _script(generator, actions)

    result = await process_message(services, "user-1", "went for a run after lunchish", now=REFERENCE)

    trace = await services.telemetry.get(result.trace_id)
    assert trace["droppedFields"] == ["time_started"]
    assert result.actions_executed_count == 1


@pytest.mark.asyncio
async def test_storage_failure_is_the_only_fatal_error(services, store, generator):
    await store.put_profile(make_profile())
    _script(generator, WALK_5KM)
    store.fail_writes = True

    result = await process_message(services, "user-1", "walked 5km", now=REFERENCE)

    assert result.success is False
    assert result.response_text == STORAGE_FAILURE_TEXT
    store.fail_writes = False
    assert await store.list_activities("user-1") == []


@pytest.mark.asyncio
async def test_unknown_user_gets_a_reply_without_model_calls(services, generator):
    result = await process_message(services, "ghost", "walked 5km", now=REFERENCE)
    assert result.success is False
    assert generator.prompts == []


@pytest.mark.asyncio
async def test_times_resolve_against_the_profile_timezone(services, store, generator):
    await store.put_profile(make_profile(tz="Asia/Manila"))
    actions = [{"operation": "activity.log", "params": {"activityType": "sleep", "sleepHours": 7.0, "timeStarted": "last night"}}]
    _script(generator, actions)

    await process_message(services, "user-1", "slept 7 hours from last night", now=REFERENCE)

    stored = (await store.list_activities("user-1"))[0]
    # 22:00 Manila on the 11th.
    assert stored.time_started == REFERENCE.replace(day=11, hour=14)


def test_reference_instant_prefers_client_clock_within_skew():
    assert reference_instant(None, REFERENCE, 300) == REFERENCE
    client_ms = (REFERENCE - timedelta(seconds=90)).timestamp() * 1000
    assert reference_instant(client_ms, REFERENCE, 300) == REFERENCE - timedelta(seconds=90)
    far_ms = (REFERENCE - timedelta(hours=3)).timestamp() * 1000
    assert reference_instant(far_ms, REFERENCE, 300) == REFERENCE


@pytest.mark.asyncio
async def test_turn_memory_uses_the_users_local_day(services, store, generator):
    await store.put_profile(make_profile(tz="Asia/Manila"))
    _script(generator, WALK_5KM)

    await process_message(services, "user-1", "walked 5km", now=REFERENCE.replace(hour=20))
    await services.outbox.drain()

    embeddings = await store.list_embeddings("user-1")
    assert embeddings[0].day.isoformat() == "2025-03-13"
