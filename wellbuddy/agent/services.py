import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Protocol

from fastapi import Request

from ..config import Settings, get_settings
from .actions import ActionExecutor
from .aggregates import recompute_daily_summary
from .conversation import ConversationLogger, embed_memory_job
from .embeddings import Embedder, HashingEmbedder
from .generation import OpenAIEmbedder, OpenAIStructuredGenerator, StructuredGenerator, UnavailableGenerator
from .goals import GoalService
from .intent_parser import IntentParser
from .maintenance import GoalStreakMaintainer, LoggingStreakNotifier, StreakNotifier
from .memory import MemoryIndex
from .outbox import Outbox
from .reasoning import ReasoningEngine
from .retrieval import ContextRetriever
from .store import DomainStore
from .telemetry import Telemetry

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send(self, recipient_id: str, text: str) -> None:
        ...


class LoggingMessageSender:
    async def send(self, recipient_id: str, text: str) -> None:
        logger.info("Messenger reply to %s: %s", recipient_id, text)


@dataclass
class AgentServices:
    settings: Settings
    store: DomainStore
    generator: StructuredGenerator
    embedder: Embedder
    memory: MemoryIndex
    retriever: ContextRetriever
    intent_parser: IntentParser
    reasoning: ReasoningEngine
    maintainer: GoalStreakMaintainer
    executor: ActionExecutor
    goals: GoalService
    outbox: Outbox
    conversations: ConversationLogger
    telemetry: Telemetry
    notifier: StreakNotifier = field(default_factory=LoggingStreakNotifier)
    sender: MessageSender = field(default_factory=LoggingMessageSender)

    async def aclose(self) -> None:
        for client in (self.generator, self.embedder):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def _default_generator(settings: Settings) -> StructuredGenerator:
    if not settings.llm_api_key:
        logger.warning("No LLM API key configured; intent parsing and reasoning will use fallbacks")
        return UnavailableGenerator()
    return OpenAIStructuredGenerator(settings.llm_base_url, settings.llm_api_key, settings.llm_model, settings.llm_timeout_seconds)


def _default_embedder(settings: Settings) -> Embedder:
    if not settings.llm_api_key:
        return HashingEmbedder(settings.embedding_dimensions)
    return OpenAIEmbedder(
        settings.llm_base_url,
        settings.llm_api_key,
        settings.embedding_model,
        settings.embedding_dimensions,
        settings.embed_timeout_seconds,
    )


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[DomainStore] = None,
    generator: Optional[StructuredGenerator] = None,
    embedder: Optional[Embedder] = None,
    persona: Optional[Dict[str, Any]] = None,
    notifier: Optional[StreakNotifier] = None,
    sender: Optional[MessageSender] = None,
) -> AgentServices:
    settings = settings or get_settings()
    store = store or DomainStore()
    generator = generator or _default_generator(settings)
    embedder = embedder or _default_embedder(settings)
    outbox = Outbox(max_attempts=settings.outbox_max_attempts)
    memory = MemoryIndex(store, embedder)
    maintainer = GoalStreakMaintainer(store)

    async def _aggregate_daily(payload: Dict[str, Any]) -> None:
        await recompute_daily_summary(
            store,
            payload["userId"],
            date.fromisoformat(payload["day"]),
            payload.get("timezone") or settings.default_timezone,
            utc_now(),
        )

    async def _embed_memory(payload: Dict[str, Any]) -> None:
        await embed_memory_job(memory, payload)

    outbox.register("aggregate.daily", _aggregate_daily)
    outbox.register("memory.embed", _embed_memory)

    return AgentServices(
        settings=settings,
        store=store,
        generator=generator,
        embedder=embedder,
        memory=memory,
        retriever=ContextRetriever(store, memory, settings.embed_timeout_seconds),
        intent_parser=IntentParser(generator, settings.llm_timeout_seconds),
        reasoning=ReasoningEngine(generator, settings.llm_timeout_seconds, persona=persona),
        maintainer=maintainer,
        executor=ActionExecutor(store, maintainer, outbox),
        goals=GoalService(store, maintainer, generator, outbox, settings.llm_timeout_seconds),
        outbox=outbox,
        conversations=ConversationLogger(store, outbox),
        telemetry=Telemetry(),
        notifier=notifier or LoggingStreakNotifier(),
        sender=sender or LoggingMessageSender(),
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_services(request: Request) -> AgentServices:
    return request.app.state.services
