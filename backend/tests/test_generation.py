"""Tests for OpenAI-compatible protocol generation over a mocked transport."""

import json

import httpx
import pytest

from evofit.core.errors import GenerationError
from evofit.core.llm import LLMClient
from evofit.services.protocols.generation import (
    GenerationRequest,
    OpenAIProtocolGenerator,
    build_prompt,
    parse_content,
    template_fallback,
)
from evofit.services.protocols.schemas import HealthInfo, MedicalInfo
from evofit.services.protocols.templates_library import templates_library


def make_generator(handler):
    llm = LLMClient(
        base_url="https://llm.test/v1",
        model="test-model",
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )
    return OpenAIProtocolGenerator(llm=llm, temperature=0.2, max_tokens=500)


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def request_payload():
    return GenerationRequest(
        template=templates_library.get_template("longevity"),
        protocol_type="longevity",
        intensity="moderate",
        duration=90,
        health=HealthInfo(age=52, weight=80, height=178, goals=["energy"]),
        medical=MedicalInfo(conditions=["high blood pressure"], medications=["lisinopril"]),
        customization={"notes": "vegetarian"},
    )


class TestPrompt:
    def test_prompt_carries_profile(self, request_payload):
        prompt = build_prompt(request_payload)
        assert "Anti-Aging Longevity Protocol" in prompt
        assert "age 52" in prompt
        assert "lisinopril" in prompt
        assert "vegetarian" in prompt

    def test_parse_content_tolerates_code_fences(self):
        parsed = parse_content('```json\n{"title": "Plan", "phases": []}\n```')
        assert parsed == {"title": "Plan", "phases": []}

    def test_parse_content_rejects_non_json(self):
        with pytest.raises(GenerationError):
            parse_content("I cannot help with that")


class TestOpenAIProtocolGenerator:
    @pytest.mark.asyncio
    async def test_successful_generation(self, request_payload):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            body = {"title": "Healthy Decades", "summary": "Slow and steady", "phases": [], "precautions": []}
            return httpx.Response(200, json=completion(json.dumps(body)))

        generator = make_generator(handler)
        content = await generator.generate(request_payload)
        await generator.llm.close()

        assert seen["path"] == "/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["max_tokens"] == 500
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert content.source == "ai"
        assert content.title == "Healthy Decades"
        assert content.model == "test-model"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, request_payload):
        generator = make_generator(lambda request: httpx.Response(503, json={"error": "overloaded"}))
        with pytest.raises(GenerationError) as exc:
            await generator.generate(request_payload)
        assert exc.value.transient is True

    @pytest.mark.asyncio
    async def test_client_error_is_not_transient(self, request_payload):
        generator = make_generator(lambda request: httpx.Response(400, json={"error": "bad request"}))
        with pytest.raises(GenerationError) as exc:
            await generator.generate(request_payload)
        assert exc.value.transient is False

    @pytest.mark.asyncio
    async def test_timeout(self, request_payload):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(GenerationError, match="timed out"):
            await make_generator(handler).generate(request_payload)

    @pytest.mark.asyncio
    async def test_unexpected_shape(self, request_payload):
        generator = make_generator(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(GenerationError):
            await generator.generate(request_payload)

    @pytest.mark.asyncio
    async def test_invalid_content(self, request_payload):
        generator = make_generator(lambda request: httpx.Response(200, json=completion("no json here")))
        with pytest.raises(GenerationError):
            await generator.generate(request_payload)


class TestTemplateFallback:
    def test_uses_template_phases(self):
        template = templates_library.get_template("parasite-cleanse-intensive")
        content = template_fallback(template, 60, "intensive")
        assert content.source == "template"
        assert [p["name"] for p in content.content["phases"]] == ["preparation", "elimination", "restoration"]

    def test_single_phase_without_template_phases(self):
        template = templates_library.get_template("custom")
        content = template_fallback(template, 30, "moderate")
        assert content.content["phases"][0]["duration"] == 30
