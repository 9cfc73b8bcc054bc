"""
LLM Client Tests
================

Tests for:
- OpenAICompatibleClient against httpx.MockTransport
- parse_json_robust / safe_log_content
- Testimony classifier and cause-tree generator error mapping
- build_ai_services per LLM_MODE
"""

import json
import httpx
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from accident_analysis.config import Settings
from accident_analysis.errors import AIResponseInvalid, AIServiceUnavailable
from accident_analysis.llm import (
    CauseTreeGeneratorLLM,
    DisabledAIService,
    OpenAICompatibleClient,
    StatementClassifierLLM,
    build_ai_services,
    parse_json_robust,
    safe_log_content,
)
from accident_analysis.schemas import ClassifierRequest, GeneratorRequest, LLMMode


def _completion(content, prompt_tokens=120, completion_tokens=40):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def _client(handler, api_key="sk-test"):
    return OpenAICompatibleClient(
        api_key=api_key,
        model="gpt-4o",
        base_url="https://llm.test/v1/",
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# Base Client
# =============================================================================

class TestOpenAICompatibleClient:
    """Chat-completions call and failure reporting"""

    @pytest.mark.asyncio
    async def test_successful_call(self):
        """A 200 response yields content, model and token usage"""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion('{"ok": true}'))

        client = _client(handler)
        result = await client.call(
            [{"role": "user", "content": "Bonjour"}],
            response_format={"type": "json_object"},
            temperature=0.3,
            max_tokens=100,
        )
        await client.close()

        assert result.success is True
        assert result.content == '{"ok": true}'
        assert result.input_tokens == 120
        assert result.output_tokens == 40
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o"
        assert seen["body"]["temperature"] == 0.3
        assert seen["body"]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """No API key fails without sending a request"""
        client = _client(lambda request: httpx.Response(200, json=_completion("{}")), api_key="")
        result = await client.call([{"role": "user", "content": "x"}])

        assert result.success is False
        assert "API key" in result.error

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Non-2xx responses are reported as failures"""
        client = _client(lambda request: httpx.Response(503, text="overloaded"))
        result = await client.call([{"role": "user", "content": "x"}])
        await client.close()

        assert result.success is False
        assert result.error.startswith("HTTP 503")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Transport timeouts are flagged as timed out"""
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)
        result = await client.call([{"role": "user", "content": "x"}])
        await client.close()

        assert result.success is False
        assert result.timed_out is True

    @pytest.mark.asyncio
    async def test_response_without_choices(self):
        """A response with no choices is a failure"""
        client = _client(lambda request: httpx.Response(200, json={"choices": []}))
        result = await client.call([{"role": "user", "content": "x"}])
        await client.close()

        assert result.success is False
        assert "missing content" in result.error


# =============================================================================
# JSON Parsing
# =============================================================================

class TestParseJsonRobust:
    """parse_json_robust"""

    def test_plain_json(self):
        """Plain JSON parses directly"""
        data, ok, error = parse_json_robust('{"fragments": []}')
        assert ok is True
        assert data == {"fragments": []}
        assert error == ""

    def test_markdown_fence(self):
        """JSON inside a markdown fence is extracted"""
        data, ok, _ = parse_json_robust('Voici:\n```json\n{"nodes": [1]}\n```')
        assert ok is True
        assert data == {"nodes": [1]}

    def test_prefix_text_takes_largest_object(self):
        """Surrounding text is ignored, largest object wins"""
        data, ok, _ = parse_json_robust('note {"a": 1} puis {"nodes": [{"id": "n1"}]}')
        assert ok is True
        assert data == {"nodes": [{"id": "n1"}]}

    @pytest.mark.parametrize("content", ["", "pas de json", "[1, 2, 3]"])
    def test_no_object(self, content):
        """Content without a JSON object is reported as unparseable"""
        data, ok, error = parse_json_robust(content)
        assert ok is False
        assert data is None
        assert error

    def test_safe_log_content_truncates(self):
        """Long content is truncated for logging"""
        text = "x" * 500
        line = safe_log_content(text, max_chars=10)

        assert "len=500" in line
        assert "x" * 11 not in line
        assert safe_log_content("") == "(empty)"


# =============================================================================
# Classifier & Generator
# =============================================================================

class TestAIClients:
    """Error mapping to AIServiceUnavailable / AIResponseInvalid"""

    @pytest.mark.asyncio
    async def test_classifier_returns_raw_payload(self):
        """The classifier returns the decoded JSON object"""
        payload = {"fragments": [{"content": "Sol mouillé", "type": "verified_fact"}], "summary": "s"}
        seen = {}

        def handler(request):
            body = json.loads(request.content)
            seen["messages"] = body["messages"]
            seen["temperature"] = body["temperature"]
            return httpx.Response(200, json=_completion(json.dumps(payload)))

        classifier = StatementClassifierLLM(_client(handler))
        raw = await classifier.classify(ClassifierRequest(testimony="J'ai glissé", accident_context="Atelier"))
        await classifier.close()

        assert raw == payload
        assert seen["temperature"] == 0.3
        assert seen["messages"][0]["role"] == "system"
        assert "J'ai glissé" in seen["messages"][1]["content"]
        assert "Contexte de l'accident: Atelier" in seen["messages"][1]["content"]
        assert classifier.get_stats()["successful"] == 1
        assert classifier.get_stats()["fragments_proposed"] == 1

    @pytest.mark.asyncio
    async def test_classifier_transport_failure(self):
        """HTTP failures raise AIServiceUnavailable"""
        classifier = StatementClassifierLLM(_client(lambda request: httpx.Response(500, text="boom")))

        with pytest.raises(AIServiceUnavailable):
            await classifier.classify(ClassifierRequest(testimony="x"))
        assert classifier.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_generator_garbage_content(self):
        """Non-JSON replies raise AIResponseInvalid"""
        generator = CauseTreeGeneratorLLM(
            _client(lambda request: httpx.Response(200, json=_completion("désolé, je ne peux pas")))
        )

        with pytest.raises(AIResponseInvalid):
            await generator.generate(GeneratorRequest(facts=["Sol mouillé"], accident_description="Chute"))
        assert generator.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_generator_prompt_lists_facts(self):
        """The generator prompt numbers every fact"""
        seen = {}

        def handler(request):
            body = json.loads(request.content)
            seen["prompt"] = body["messages"][1]["content"]
            seen["temperature"] = body["temperature"]
            return httpx.Response(200, json=_completion('{"nodes": [{"id": "n1"}]}'))

        generator = CauseTreeGeneratorLLM(_client(handler))
        raw = await generator.generate(GeneratorRequest(
            facts=["Sol mouillé", "Gants inadaptés"], accident_description="Chute de plain-pied"
        ))
        await generator.close()

        assert raw == {"nodes": [{"id": "n1"}]}
        assert "1. Sol mouillé" in seen["prompt"]
        assert "2. Gants inadaptés" in seen["prompt"]
        assert "Chute de plain-pied" in seen["prompt"]
        assert seen["temperature"] == 0.4
        assert generator.get_stats()["nodes_proposed"] == 1


# =============================================================================
# Factory
# =============================================================================

class TestBuildAIServices:
    """build_ai_services per LLM_MODE"""

    @pytest.mark.asyncio
    async def test_mode_none_is_disabled(self):
        """LLM_MODE=none gives disabled services"""
        classifier, generator = build_ai_services(Settings(llm_mode=LLMMode.NONE))

        assert isinstance(classifier, DisabledAIService)
        assert isinstance(generator, DisabledAIService)
        with pytest.raises(AIServiceUnavailable):
            await classifier.classify(ClassifierRequest(testimony="x"))

    def test_missing_key_is_disabled(self):
        """A missing API key gives disabled services"""
        classifier, generator = build_ai_services(Settings(llm_mode=LLMMode.OPENAI, openai_api_key=None))
        assert isinstance(classifier, DisabledAIService)
        assert isinstance(generator, DisabledAIService)

    def test_openrouter_mode(self):
        """OpenRouter mode builds both LLM clients"""
        settings = Settings(
            llm_mode=LLMMode.OPENROUTER,
            openrouter_api_key="or-key",
            openrouter_model="openai/gpt-4o-mini",
            tree_temperature=0.2,
        )
        classifier, generator = build_ai_services(settings)

        assert isinstance(classifier, StatementClassifierLLM)
        assert isinstance(generator, CauseTreeGeneratorLLM)
        assert classifier.client.model == "openai/gpt-4o-mini"
        assert classifier.client.base_url == "https://openrouter.ai/api/v1"
        assert generator.temperature == 0.2
