import pathlib
import sys
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import REFERENCE, make_goal, make_profile  # noqa: E402
from wellbuddy.agent.actions import ActionExecutor, decode_action  # noqa: E402
from wellbuddy.agent.errors import ExecutionError, StorageError, UnknownOperationError  # noqa: E402
from wellbuddy.agent.maintenance import GoalStreakMaintainer  # noqa: E402
from wellbuddy.agent.outbox import Outbox  # noqa: E402
from wellbuddy.schemas.agent import ActivityLogAction, GoalAdjustAction, RawAction  # noqa: E402


def raw(operation, **params):
    return RawAction(operation=operation, params=params)


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def executor(store, outbox):
    return ActionExecutor(store, GoalStreakMaintainer(store), outbox)


def test_decode_builds_typed_variants():
    action = decode_action(raw("activity.log", activityType="walk", distanceKm=5))
    assert isinstance(action, ActivityLogAction)
    assert action.params.distance_km == 5

    goal = decode_action(raw("goal.adjust", goalType="steps_daily", newValue=8000))
    assert isinstance(goal, GoalAdjustAction)


def test_decode_rejects_unknown_operations_and_bad_shapes():
    with pytest.raises(UnknownOperationError):
        decode_action(raw("userActivity.delete", id="x"))
    with pytest.raises(ExecutionError):
        decode_action(raw("activity.log", activityType="walk", distanceKm="five"))
    with pytest.raises(ExecutionError):
        decode_action(raw("activity.log", activityType="walk", surprise=True))
    with pytest.raises(ExecutionError):
        decode_action(raw("goal.adjust", newValue=10))


@pytest.mark.asyncio
async def test_activity_log_resolves_times_and_derives_duration(store, executor, outbox):
    await store.put_profile(make_profile(tz="Asia/Manila"))
    action = decode_action(raw("activity.log", activityType="run", timeStarted="an hour ago", timeEnded="just now", distanceKm=5.0))

    result = await executor.execute("user-1", action, REFERENCE, "Asia/Manila")

    stored = (await store.list_activities("user-1"))[0]
    assert stored.activity_name == "Run"
    assert stored.time_started == REFERENCE - timedelta(hours=1)
    assert stored.duration_minutes == 60
    assert stored.logged_at == stored.time_started
    assert result["droppedFields"] == []
    assert result["streaks"] == ["workout", "logging"]
    jobs = await outbox.list()
    assert [(job.kind, job.payload["day"]) for job in jobs] == [("aggregate.daily", "2025-03-12")]


@pytest.mark.asyncio
async def test_unresolvable_time_is_dropped_not_fatal(store, executor):
    await store.put_profile(make_profile())
    action = decode_action(raw("activity.log", activityType="meal", mealType="lunch", timeStarted="after my nap"))

    result = await executor.execute("user-1", action, REFERENCE, "UTC")

    assert result["droppedFields"] == ["time_started"]
    assert result["activity"]["activity_name"] == "Lunch"
    assert result["activity"]["time_started"] is None
    assert (await store.list_activities("user-1"))[0].logged_at == REFERENCE


@pytest.mark.asyncio
async def test_plan_isolates_failed_action(store, executor):
    await store.put_profile(make_profile())
    await store.insert_goal(make_goal("g-steps", "steps_daily", 10000, ai_adjustable=True))
    plan = [
        raw("activity.log", activityType="walk", distanceKm=2.0),
        raw("goal.adjust", newValue=9000),
        raw("streak.update", streakType="hydration"),
    ]

    outcomes = await executor.run_plan("user-1", plan, REFERENCE, "UTC")

    assert [outcome.success for outcome in outcomes] == [True, False, True]
    assert "goalId or goalType" in outcomes[1].error
    assert len(await store.list_activities("user-1")) == 1
    assert (await store.get_streak("user-1", "hydration")).current_count == 1


@pytest.mark.asyncio
async def test_unknown_operation_in_plan_is_reported(store, executor):
    await store.put_profile(make_profile())
    outcomes = await executor.run_plan("user-1", [raw("userActivity.delete", id="a1")], REFERENCE, "UTC")
    assert outcomes[0].success is False
    assert outcomes[0].error == "Unknown operation: userActivity.delete"


@pytest.mark.asyncio
async def test_goal_adjust_with_unknown_reference_is_a_no_op(store, executor):
    await store.put_profile(make_profile())
    outcomes = await executor.run_plan(
        "user-1",
        [raw("goal.adjust", goalId="goal_hallucinated", newValue=5), raw("goal.adjust", goalType="sleep_target", newValue=8)],
        REFERENCE,
        "UTC",
    )
    assert [(o.success, o.result) for o in outcomes] == [(True, None), (True, None)]


@pytest.mark.asyncio
async def test_goal_adjust_by_type_and_permission(store, executor):
    await store.insert_goal(make_goal("g-steps", "steps_daily", 10000, ai_adjustable=True))
    await store.insert_goal(make_goal("g-sleep", "sleep_target", 8))

    adjusted = await executor.execute("user-1", decode_action(raw("goal.adjust", goalType="steps_daily", newValue=8000)), REFERENCE, "UTC")
    assert adjusted["goal_value"] == 8000

    with pytest.raises(ExecutionError):
        await executor.execute("user-1", decode_action(raw("goal.adjust", goalId="g-sleep", newValue=7)), REFERENCE, "UTC")
    assert (await store.get_goal("g-sleep")).goal_value == 8


@pytest.mark.asyncio
async def test_weight_delta_without_prior_weight_fails_without_mutation(store, executor):
    await store.put_profile(make_profile(weight_kg=None))
    before = await store.get_profile("user-1")

    with pytest.raises(ExecutionError):
        await executor.execute("user-1", decode_action(raw("profile.update_weight", weightChange=-1.5)), REFERENCE, "UTC")

    assert await store.get_profile("user-1") == before


@pytest.mark.asyncio
async def test_weight_update_moves_weight_loss_goal(store, executor):
    await store.put_profile(make_profile(weight_kg=81.0))
    await store.insert_goal(make_goal("g-weight", "weight_loss", 80.0, current_progress=81.0, goal_unit="kg"))

    result = await executor.execute("user-1", decode_action(raw("profile.update_weight", weightChange=-1.5)), REFERENCE, "UTC")

    assert result["previousWeightKg"] == 81.0
    assert result["weightKg"] == 79.5
    profile = await store.get_profile("user-1")
    assert profile.health.weight_kg == 79.5
    goal = await store.get_goal("g-weight")
    assert goal.current_progress == 79.5
    assert goal.status == "completed"


@pytest.mark.asyncio
async def test_profile_touch_refreshes_timestamp(store, executor):
    await store.put_profile(make_profile())
    later = REFERENCE + timedelta(minutes=10)
    await executor.execute("user-1", decode_action(raw("profile.touch_context")), later, "UTC")
    assert (await store.get_profile("user-1")).updated_at == later


@pytest.mark.asyncio
async def test_storage_failure_propagates_out_of_the_plan(store, executor):
    await store.put_profile(make_profile())
    store.fail_writes = True
    with pytest.raises(StorageError):
        await executor.run_plan("user-1", [raw("activity.log", activityType="walk", distanceKm=1.0)], REFERENCE, "UTC")
    store.fail_writes = False
    assert await store.list_activities("user-1") == []


@pytest.mark.asyncio
async def test_maintenance_failure_does_not_roll_back_insert(store, outbox):
    class BrokenMaintainer(GoalStreakMaintainer):
        async def on_activity_logged(self, activity, now, tz_name):
            raise RuntimeError("recompute exploded")

    executor = ActionExecutor(store, BrokenMaintainer(store), outbox)
    await store.put_profile(make_profile())

    result = await executor.execute("user-1", decode_action(raw("activity.log", activityType="walk", distanceKm=1.0)), REFERENCE, "UTC")

    assert result["goalsUpdated"] == 0
    assert len(await store.list_activities("user-1")) == 1


@pytest.mark.asyncio
async def test_out_of_range_time_is_dropped_and_plan_continues(store, executor):
    await store.put_profile(make_profile())
    plan = [
        raw("activity.log", activityType="run", timeStarted="1000000 days ago"),
        raw("streak.update", streakType="hydration"),
    ]

    outcomes = await executor.run_plan("user-1", plan, REFERENCE, "UTC")

    assert [outcome.success for outcome in outcomes] == [True, True]
    assert outcomes[0].result["droppedFields"] == ["time_started"]
    assert (await store.get_streak("user-1", "hydration")).current_count == 1


@pytest.mark.asyncio
async def test_unexpected_error_fails_only_that_action(store, executor):
    await store.put_profile(make_profile())

    async def exploding_streak(*args, **kwargs):
        raise OverflowError("date value out of range")

    executor.maintainer.update_streak = exploding_streak
    plan = [raw("streak.update", streakType="hydration"), raw("profile.touch_context")]

    outcomes = await executor.run_plan("user-1", plan, REFERENCE, "UTC")

    assert [outcome.success for outcome in outcomes] == [False, True]
    assert outcomes[0].error == "Unexpected error: date value out of range"


@pytest.mark.asyncio
async def test_weight_loss_adjust_uses_recorded_weight_before_completing(store, executor):
    await store.put_profile(make_profile(weight_kg=90.0))
    await store.insert_goal(make_goal("g-weight", "weight_loss", 75.0, goal_unit="kg", ai_adjustable=True))

    result = await executor.execute("user-1", decode_action(raw("goal.adjust", goalType="weight_loss", newValue=78)), REFERENCE, "UTC")

    assert result["status"] == "active"
    assert result["current_progress"] == 90.0
    assert result["goal_value"] == 78


@pytest.mark.asyncio
async def test_weight_loss_goal_without_any_weight_never_completes(store, executor):
    await store.put_profile(make_profile(weight_kg=None))
    await store.insert_goal(make_goal("g-weight", "weight_loss", 75.0, goal_unit="kg", ai_adjustable=True))

    result = await executor.execute("user-1", decode_action(raw("goal.adjust", goalId="g-weight", newValue=78)), REFERENCE, "UTC")

    assert result["status"] == "active"
    assert result["current_progress"] == 0.0
