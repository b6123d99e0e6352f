import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .embeddings import l2_normalize
from .errors import GenerationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a wellness tracking assistant. Reply only with JSON that matches the supplied schema."


class StructuredGenerator(Protocol):
    async def generate(self, prompt: str, schema: Dict[str, Any], name: str) -> Any:
        ...


def _strip_code_fences(value: str) -> str:
    return value.replace("```json", "").replace("```", "").strip()


def parse_model_json(raw_text: str) -> Any:
    cleaned = _strip_code_fences(raw_text or "")
    if not cleaned:
        raise GenerationError("generate", "Empty response from model")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            pass
    raise GenerationError("generate", "Model response is not valid JSON")


class UnavailableGenerator:
    """Used when no model is configured; every call takes the caller's fallback path."""

    async def generate(self, prompt: str, schema: Dict[str, Any], name: str) -> Any:
        raise GenerationError("generate", "No structured-generation model configured")


class OpenAIStructuredGenerator:
    def __init__(self, base_url: str, api_key: str, model: str, timeout_seconds: float = 30.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=10.0))

    async def generate(self, prompt: str, schema: Dict[str, Any], name: str) -> Any:
        body = {
            "model": self.model,
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": name, "schema": schema, "strict": False},
            },
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=body,
            )
        except httpx.HTTPError as error:
            raise GenerationError("generate", f"Transport error: {error}") from error
        if response.status_code >= 400:
            raise GenerationError("generate", f"Model returned HTTP {response.status_code}", response.status_code)
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as error:
            raise GenerationError("generate", "Unexpected completion payload") from error
        return parse_model_json(content or "")

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIEmbedder:
    def __init__(self, base_url: str, api_key: str, model: str, dimensions: int, timeout_seconds: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=5.0))

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model, "input": text, "dimensions": self.dimensions},
            )
        except httpx.HTTPError as error:
            raise GenerationError("embed", f"Transport error: {error}") from error
        if response.status_code >= 400:
            raise GenerationError("embed", f"Embedding endpoint returned HTTP {response.status_code}", response.status_code)
        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as error:
            raise GenerationError("embed", "Unexpected embedding payload") from error
        if len(vector) != self.dimensions:
            raise GenerationError("embed", f"Expected {self.dimensions} dimensions, got {len(vector)}")
        return l2_normalize(vector)

    async def aclose(self) -> None:
        await self._client.aclose()
