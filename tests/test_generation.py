import json
import pathlib
import sys

import httpx
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wellbuddy.agent.errors import GenerationError  # noqa: E402
from wellbuddy.agent.generation import OpenAIEmbedder, OpenAIStructuredGenerator, UnavailableGenerator  # noqa: E402
from wellbuddy.schemas.validator import get_schema, schema_errors  # noqa: E402


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_generator_requests_json_schema_and_parses_content():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        content = '```json\n{"intent": "other"}\n```'
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    generator = OpenAIStructuredGenerator("https://llm.test/v1/", "key", "test-model", client=_client(handler))
    result = await generator.generate("prompt", get_schema("intent"), "parsed_intent")

    assert result == {"intent": "other"}
    assert captured["url"] == "https://llm.test/v1/chat/completions"
    assert captured["body"]["response_format"]["json_schema"]["name"] == "parsed_intent"
    await generator.aclose()


@pytest.mark.asyncio
async def test_generator_http_error_raises_generation_error():
    generator = OpenAIStructuredGenerator("https://llm.test/v1", "key", "m", client=_client(lambda request: httpx.Response(503)))
    with pytest.raises(GenerationError) as excinfo:
        await generator.generate("prompt", {}, "parsed_intent")
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_embedder_checks_dimensions():
    def handler(request):
        return httpx.Response(200, json={"data": [{"embedding": [3.0, 4.0]}]})

    good = OpenAIEmbedder("https://llm.test/v1", "key", "emb", 2, client=_client(handler))
    assert await good.embed("hi") == pytest.approx([0.6, 0.8])

    wrong = OpenAIEmbedder("https://llm.test/v1", "key", "emb", 3, client=_client(handler))
    with pytest.raises(GenerationError):
        await wrong.embed("hi")


@pytest.mark.asyncio
async def test_unavailable_generator_always_fails():
    with pytest.raises(GenerationError):
        await UnavailableGenerator().generate("prompt", {}, "parsed_intent")


def test_schema_validation_reports_errors():
    assert schema_errors("agent_response", {"type": "confirmation"}) != []
    ok = {"type": "question", "responseText": "How long?", "actions": [], "reasoning": "", "confidence": 0.5}
    assert schema_errors("agent_response", ok) == []
