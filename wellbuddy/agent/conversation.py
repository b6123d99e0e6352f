import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..schemas.agent import AgentResponse
from ..schemas.domain import ActionOutcome, AgentResponseRecord, ConversationTurn
from .memory import MemoryIndex
from .outbox import Outbox
from .store import DomainStore
from .temporal import to_utc
from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

MEMORY_CATEGORY = "activity_summary"


def memory_text(message: str, response_text: str) -> str:
    return f"{message} - {response_text}"


class ConversationLogger:
    """Writes the turn's audit record and schedules its memory embedding.

    Neither step may fail the turn: errors are logged and swallowed here.
    """

    def __init__(self, store: DomainStore, outbox: Outbox) -> None:
        self.store = store
        self.outbox = outbox

    async def log_turn(
        self,
        user_id: str,
        message: str,
        response: AgentResponse,
        outcomes: List[ActionOutcome],
        now: datetime,
        tz_name: Optional[str] = None,
    ) -> Optional[ConversationTurn]:
        turn = ConversationTurn(
            id=nanoid("cnv"),
            user_id=user_id,
            user_message=message,
            response=AgentResponseRecord(
                text=response.response_text,
                type=response.type,
                confidence=response.confidence,
                structured=response.model_dump(by_alias=True, mode="json"),
            ),
            actions=outcomes,
            created_at=to_utc(now),
        )
        stored: Optional[ConversationTurn] = None
        try:
            stored = await self.store.append_conversation(turn)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not persist conversation turn for user %s", user_id)

        activity_id = _first_activity_id(outcomes)
        try:
            await self.outbox.queue(
                "memory.embed",
                {
                    "userId": user_id,
                    "text": memory_text(message, response.response_text),
                    "category": MEMORY_CATEGORY,
                    "createdAt": to_utc(now).isoformat(),
                    "relatedActivityId": activity_id,
                    "timezone": tz_name,
                },
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Could not schedule memory embedding for user %s", user_id)
        return stored


def _first_activity_id(outcomes: List[ActionOutcome]) -> Optional[str]:
    for outcome in outcomes:
        result: Any = outcome.result
        if outcome.success and outcome.operation == "activity.log" and isinstance(result, dict):
            activity: Dict[str, Any] = result.get("activity") or {}
            return activity.get("id")
    return None


async def embed_memory_job(memory: MemoryIndex, payload: Dict[str, Any]) -> None:
    """Outbox handler for ``memory.embed`` jobs."""
    await memory.remember(
        payload["userId"],
        payload["text"],
        payload.get("category", MEMORY_CATEGORY),
        datetime.fromisoformat(payload["createdAt"]),
        related_activity_id=payload.get("relatedActivityId"),
        tz_name=payload.get("timezone"),
    )
