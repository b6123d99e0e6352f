import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..agent.aggregates import activity_stats, summarize, weekly_summaries
from ..agent.errors import ExecutionError, StorageError
from ..agent.maintenance import goals_behind_schedule
from ..agent.services import AgentServices, get_services, utc_now
from ..agent.temporal import day_bounds, local_date
from ..schemas.agent import ActivityLogAction, ActivityLogParams
from ..schemas.domain import UserProfile
from ..schemas.goals import GoalCreateRequest, GoalStatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


async def _profile_or_404(services: AgentServices, user_id: str) -> UserProfile:
    profile = await services.store.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="user not found")
    return profile


def _tz(services: AgentServices, profile: UserProfile) -> str:
    return profile.preferences.timezone or services.settings.default_timezone


@router.get("/{user_id}/today")
async def today(user_id: str, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    profile = await _profile_or_404(services, user_id)
    now = utc_now()
    tz_name = _tz(services, profile)
    day = local_date(now, tz_name)
    start, end = day_bounds(day, tz_name)
    activities = await services.store.list_activities(user_id, start=start, end=end)
    return {
        "summary": summarize(user_id, day, activities, now).model_dump(mode="json"),
        "activities": [activity.model_dump(mode="json") for activity in activities],
    }


@router.get("/{user_id}/weekly")
async def weekly(user_id: str, services: AgentServices = Depends(get_services)) -> List[Dict[str, Any]]:
    profile = await _profile_or_404(services, user_id)
    summaries = await weekly_summaries(services.store, user_id, utc_now(), _tz(services, profile))
    return [summary.model_dump(mode="json") for summary in summaries]


@router.get("/{user_id}/streaks")
async def streaks(user_id: str, services: AgentServices = Depends(get_services)) -> List[Dict[str, Any]]:
    await _profile_or_404(services, user_id)
    return [streak.model_dump(mode="json") for streak in await services.store.list_streaks(user_id)]


@router.get("/{user_id}/goals")
async def goals(user_id: str, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    profile = await _profile_or_404(services, user_id)
    all_goals = await services.store.list_goals(user_id)
    behind = goals_behind_schedule(all_goals, local_date(utc_now(), _tz(services, profile)))
    return {
        "goals": [goal.model_dump(mode="json") for goal in all_goals],
        "behindSchedule": [goal.id for goal in behind],
    }


@router.get("/{user_id}/stats")
async def stats(
    user_id: str,
    days: int = Query(default=30, ge=1, le=365),
    services: AgentServices = Depends(get_services),
) -> Dict[str, Any]:
    profile = await _profile_or_404(services, user_id)
    return await activity_stats(services.store, user_id, days, utc_now(), _tz(services, profile))


@router.post("/{user_id}/activities", status_code=201)
async def log_activity(
    user_id: str, body: ActivityLogParams, services: AgentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Direct entry from the dashboard; goal and streak upkeep runs as for chat."""
    profile = await _profile_or_404(services, user_id)
    action = ActivityLogAction(operation="activity.log", params=body)
    try:
        return await services.executor.execute(user_id, action, utc_now(), _tz(services, profile), source="dashboard")
    except ExecutionError as error:
        raise HTTPException(status_code=422, detail=str(error))
    except StorageError:
        logger.exception("Dashboard activity entry failed for user %s", user_id)
        raise HTTPException(status_code=503, detail="storage unavailable")


@router.post("/{user_id}/goals", status_code=201)
async def create_goal(
    user_id: str, body: GoalCreateRequest, services: AgentServices = Depends(get_services)
) -> Dict[str, Any]:
    profile = await _profile_or_404(services, user_id)
    try:
        goal = await services.goals.create(
            profile, body, utc_now(), _tz(services, profile), created_by=body.created_by, provenance=body.provenance
        )
    except ExecutionError as error:
        raise HTTPException(status_code=409, detail=str(error))
    return goal.model_dump(mode="json")


@router.patch("/{user_id}/goals/{goal_id}")
async def update_goal_status(
    user_id: str, goal_id: str, body: GoalStatusUpdate, services: AgentServices = Depends(get_services)
) -> Dict[str, Any]:
    await _profile_or_404(services, user_id)
    try:
        goal = await services.goals.set_status(user_id, goal_id, body.status, utc_now())
    except ExecutionError as error:
        raise HTTPException(status_code=409, detail=str(error))
    if goal is None:
        raise HTTPException(status_code=404, detail="goal not found")
    return goal.model_dump(mode="json")


@router.post("/{user_id}/goals/suggest")
async def suggest_goals(user_id: str, services: AgentServices = Depends(get_services)) -> Dict[str, Any]:
    profile = await _profile_or_404(services, user_id)
    created = await services.goals.suggest(profile, utc_now(), _tz(services, profile))
    return {"created": [goal.model_dump(mode="json") for goal in created]}
