import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..schemas.chat import ProcessMessageResult
from ..schemas.domain import ActionOutcome, ActivitySource
from .errors import StorageError
from .services import AgentServices, utc_now
from .temporal import parse_generic, to_utc

logger = logging.getLogger(__name__)

STORAGE_FAILURE_TEXT = "Sorry, I encountered an error. Please try again."
UNKNOWN_USER_TEXT = "I couldn't find your account. Please sign in to the app and try again."


def reference_instant(client_timestamp: Optional[float], server_now: datetime, max_skew_seconds: float) -> datetime:
    """The client's clock when it is within ``max_skew_seconds`` of ours, else ours."""
    if client_timestamp is None:
        return server_now
    client_now = parse_generic(client_timestamp, server_now, "UTC")
    if client_now is None:
        return server_now
    if abs(client_now - server_now) > timedelta(seconds=max_skew_seconds):
        logger.info("Client clock skewed by %s; using server time", client_now - server_now)
        return server_now
    return client_now


def _dropped_fields(outcomes: List[ActionOutcome]) -> List[str]:
    dropped: List[str] = []
    for outcome in outcomes:
        if isinstance(outcome.result, dict):
            dropped.extend(outcome.result.get("droppedFields") or [])
    return dropped


def _now_ms() -> int:
    return int(time.time() * 1000)


async def process_message(
    services: AgentServices,
    user_id: str,
    message: str,
    client_timestamp: Optional[float] = None,
    now: Optional[datetime] = None,
    source: ActivitySource = "chat",
) -> ProcessMessageResult:
    """Run one chat turn end to end.

    Model and action failures degrade the reply; only storage failures turn
    into ``success=False``.
    """
    started_at = _now_ms()
    server_now = to_utc(now) if now else utc_now()
    settings = services.settings

    try:
        profile = await services.store.get_profile(user_id)
        if profile is None:
            logger.warning("process_message for unknown user %s", user_id)
            return ProcessMessageResult(success=False, response_text=UNKNOWN_USER_TEXT)

        turn_now = reference_instant(client_timestamp, server_now, settings.max_clock_skew_seconds)
        tz_name = profile.preferences.timezone or settings.default_timezone

        intent, context = await asyncio.gather(
            services.intent_parser.parse(message),
            services.retriever.retrieve(user_id, message),
        )
        response = await services.reasoning.reason(message, intent, context, profile, turn_now, tz_name)
        outcomes = await services.executor.run_plan(user_id, response.actions, turn_now, tz_name, source=source)
    except StorageError:
        logger.exception("Storage failure while processing message for user %s", user_id)
        await services.telemetry.record(
            {
                "userId": user_id,
                "intentLabel": None,
                "intentConfidence": None,
                "startedAt": started_at,
                "error": "storage",
            }
        )
        return ProcessMessageResult(success=False, response_text=STORAGE_FAILURE_TEXT)

    await services.conversations.log_turn(user_id, message, response, outcomes, turn_now, tz_name)

    fallbacks: List[str] = []
    if intent.confidence == 0 and intent.intent == "other":
        fallbacks.append("intent")
    if response.reasoning == "fallback":
        fallbacks.append("reasoning")
    if context.degraded:
        fallbacks.append("retrieval")
    succeeded = sum(1 for outcome in outcomes if outcome.success)
    trace: Dict[str, Any] = {
        "userId": user_id,
        "intentLabel": intent.intent,
        "intentConfidence": intent.confidence,
        "retrieval": {
            "semanticChunks": len(context.semantic_chunks),
            "recentActivities": len(context.recent_activities),
            "activeGoals": len(context.active_goals),
            "activeStreaks": len(context.active_streaks),
        },
        "responseType": response.type,
        "confidence": response.confidence,
        "fallbacks": fallbacks,
        "droppedFields": _dropped_fields(outcomes),
        "actions": [{"operation": o.operation, "success": o.success, "error": o.error} for o in outcomes],
        "startedAt": started_at,
    }
    trace_id = await services.telemetry.record(trace)
    logger.info(
        "Turn for user %s: intent=%s type=%s actions=%d/%d fallbacks=%s",
        user_id,
        intent.intent,
        response.type,
        succeeded,
        len(outcomes),
        ",".join(fallbacks) or "none",
    )
    return ProcessMessageResult(
        success=True,
        response_text=response.response_text,
        response_type=response.type,
        confidence=response.confidence,
        actions_executed_count=succeeded,
        trace_id=trace_id,
    )
