import asyncio
import logging

from pydantic import ValidationError

from ..schemas.intent import ParsedIntent
from ..schemas.validator import get_schema, schema_errors, schema_title
from .errors import GenerationError
from .generation import StructuredGenerator

logger = logging.getLogger(__name__)

INTENT_PROMPT = """Analyze this user message and extract structured intent.

User message: "{message}"

Classify the intent, the activity type it refers to (if any), the main numeric value and its unit.
Put any other details you can read from the message (durations, times, meal contents, mood) in "extracted".
Be specific about activity types and values; use null when the message does not say.
"""


class IntentParser:
    def __init__(self, generator: StructuredGenerator, timeout_seconds: float = 30.0) -> None:
        self.generator = generator
        self.timeout_seconds = timeout_seconds

    async def parse(self, message: str) -> ParsedIntent:
        """Classify ``message``; any failure yields ``ParsedIntent.fallback()``."""
        trimmed = (message or "").strip()
        if not trimmed:
            return ParsedIntent.fallback()
        try:
            raw = await asyncio.wait_for(
                self.generator.generate(INTENT_PROMPT.format(message=trimmed), get_schema("intent"), schema_title("intent")),
                timeout=self.timeout_seconds,
            )
            errors = schema_errors("intent", raw)
            if errors:
                raise GenerationError("intent", f"Schema violation: {'; '.join(errors)}")
            return ParsedIntent.model_validate(raw)
        except (GenerationError, ValidationError, asyncio.TimeoutError) as error:
            logger.warning("Intent parsing fell back: %s", error)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Intent parsing failed unexpectedly")
        return ParsedIntent.fallback()
