"""
Tests for the oracle adapters and the generation client, against httpx.MockTransport.
"""

import json
from types import SimpleNamespace

import httpx
import pytest

from core.oracle import (
    CHAPTER_OUTPUT_SCHEMA,
    AnthropicOracle,
    GenerationClient,
    OllamaOracle,
    OpenAIOracle,
    OracleOptions,
    assert_model_available,
    build_oracle,
)
from util.enums import OracleKind
from util.errors import ConfigurationError, TransportError

OPTIONS = OracleOptions(model="qwen3:8b", temperature=0.15, token_budget=900, system="sys")
ANSWER = '{"chapter_explanation": "Abraham went up (v. 1, v. 2)."}'


def _recorder(responses):
    """Handler that answers from `responses` in order and keeps every request."""
    seen = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        nxt = queue.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    return handler, seen


class TestOllama:
    @pytest.mark.asyncio
    async def test_schema_request(self):
        handler, seen = _recorder([httpx.Response(200, json={"message": {"content": ANSWER}})])
        oracle = OllamaOracle("http://ollama:11434/", transport=httpx.MockTransport(handler))

        assert await oracle.call("prompt", OPTIONS) == ANSWER

        body = json.loads(seen[0].content)
        assert str(seen[0].url) == "http://ollama:11434/api/chat"
        assert body["format"] == CHAPTER_OUTPUT_SCHEMA
        assert body["think"] is False
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.15, "top_p": 0.75, "num_predict": 900}
        assert body["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_empty_schema_response_falls_back_to_json_format(self):
        handler, seen = _recorder(
            [
                httpx.Response(200, json={"message": {"content": ""}}),
                httpx.Response(200, json={"message": {"content": ANSWER}}),
            ]
        )
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))

        assert await oracle.call("prompt", OPTIONS) == ANSWER
        assert json.loads(seen[1].content)["format"] == "json"

    @pytest.mark.asyncio
    async def test_empty_twice(self):
        handler, _ = _recorder(
            [
                httpx.Response(200, json={"message": {"content": ""}}),
                httpx.Response(200, json={"done": True}),
            ]
        )
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="empty content twice"):
            await oracle.call("prompt", OPTIONS)

    @pytest.mark.asyncio
    async def test_reasoning_stripped(self):
        content = "<think>plan</think>" + ANSWER
        handler, _ = _recorder([httpx.Response(200, json={"message": {"content": content}})])
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        assert await oracle.call("prompt", OPTIONS) == ANSWER

    @pytest.mark.asyncio
    async def test_list_models(self):
        handler, _ = _recorder(
            [httpx.Response(200, json={"models": [{"name": "qwen3:8b"}, {"name": "llama3:latest"}]})]
        )
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        await oracle.assert_models_available("qwen3:8b", "llama3")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        handler, _ = _recorder([httpx.ConnectError("refused")])
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        with pytest.raises(ConfigurationError, match="ollama serve"):
            await oracle.list_models()

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        handler, _ = _recorder([httpx.Response(503)])
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        with pytest.raises(ConfigurationError, match="503"):
            await oracle.list_models()


class TestModelCheck:
    def test_bare_name_matches_any_tag(self):
        assert_model_available(["qwen3:8b"], "qwen3")

    def test_tagged_name_must_match(self):
        with pytest.raises(ConfigurationError, match="qwen3:14b"):
            assert_model_available(["qwen3:8b"], "qwen3:14b")

    def test_empty_list(self):
        with pytest.raises(ConfigurationError, match="none"):
            assert_model_available([], "qwen3")


class TestHosted:
    @pytest.mark.asyncio
    async def test_openai(self):
        handler, seen = _recorder(
            [httpx.Response(200, json={"choices": [{"message": {"content": ANSWER}}]})]
        )
        oracle = OpenAIOracle("https://api.example.com/v1/", "sk-test", transport=httpx.MockTransport(handler))

        assert await oracle.call("prompt", OPTIONS) == ANSWER

        req = seen[0]
        body = json.loads(req.content)
        assert str(req.url) == "https://api.example.com/v1/chat/completions"
        assert req.headers["authorization"] == "Bearer sk-test"
        assert body["response_format"] == {"type": "json_object"}
        assert body["max_tokens"] == 900

    @pytest.mark.asyncio
    async def test_openai_no_choices(self):
        handler, _ = _recorder([httpx.Response(200, json={"choices": []})])
        oracle = OpenAIOracle("https://api.example.com/v1", "sk-test", transport=httpx.MockTransport(handler))
        assert await oracle.call("prompt", OPTIONS) == ""

    @pytest.mark.asyncio
    async def test_openai_message_not_an_object(self):
        handler, _ = _recorder([httpx.Response(200, json={"choices": [{"message": "overloaded"}]})])
        oracle = OpenAIOracle("https://api.example.com/v1", "sk-test", transport=httpx.MockTransport(handler))
        assert await oracle.call("prompt", OPTIONS) == ""

    @pytest.mark.asyncio
    async def test_anthropic(self):
        handler, seen = _recorder(
            [
                httpx.Response(
                    200,
                    json={
                        "content": [
                            {"type": "text", "text": '{"chapter_explanation": '},
                            {"type": "tool_use", "id": "x"},
                            {"type": "text", "text": '"Abraham went up (v. 1, v. 2)."}'},
                        ]
                    },
                )
            ]
        )
        oracle = AnthropicOracle(
            "https://api.example.com/v1/messages", "key", transport=httpx.MockTransport(handler)
        )

        assert await oracle.call("prompt", OPTIONS) == ANSWER

        req = seen[0]
        body = json.loads(req.content)
        assert req.headers["x-api-key"] == "key"
        assert req.headers["anthropic-version"] == "2023-06-01"
        assert body["system"] == "sys"
        assert body["max_tokens"] == 900


class TestGenerationClient:
    @staticmethod
    def _client(responses):
        handler, seen = _recorder(responses)
        oracle = OllamaOracle("http://ollama:11434", transport=httpx.MockTransport(handler))
        return GenerationClient(oracle, top_p=0.6, system="sys"), seen

    @pytest.mark.asyncio
    async def test_options_passed_through(self):
        client, seen = self._client([httpx.Response(200, json={"message": {"content": ANSWER}})])
        text = await client.generate("p", model="m", temperature=0.0, token_budget=1300)
        assert text == ANSWER
        assert client.calls == 1
        body = json.loads(seen[0].content)
        assert body["model"] == "m"
        assert body["options"] == {"temperature": 0.0, "top_p": 0.6, "num_predict": 1300}

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client, _ = self._client([httpx.Response(500, text="boom")])
        with pytest.raises(TransportError, match="500"):
            await client.generate("p", model="m", temperature=0.0, token_budget=900)

    @pytest.mark.asyncio
    async def test_timeout(self):
        client, _ = self._client([httpx.ReadTimeout("slow")])
        with pytest.raises(TransportError, match="timed out"):
            await client.generate("p", model="m", temperature=0.0, token_budget=900)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        client, _ = self._client([httpx.ConnectError("refused")])
        with pytest.raises(TransportError, match="request failed"):
            await client.generate("p", model="m", temperature=0.0, token_budget=900)

    @pytest.mark.asyncio
    async def test_empty_body(self):
        handler, _ = _recorder([httpx.Response(200, json={"choices": []})])
        oracle = OpenAIOracle("https://api.example.com/v1", "k", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="empty content"):
            await GenerationClient(oracle).generate("p", model="m", temperature=0.0, token_budget=900)

    @pytest.mark.asyncio
    async def test_unexpected_reply_shape(self):
        """An adapter tripping over an odd reply still surfaces as TransportError."""
        handler, _ = _recorder([httpx.Response(200, json={"choices": {"first": "x"}})])
        oracle = OpenAIOracle("https://api.example.com/v1", "k", transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="unreadable"):
            await GenerationClient(oracle).generate("p", model="m", temperature=0.0, token_budget=900)


class TestBuildOracle:
    @staticmethod
    def _settings(**overrides):
        base = dict(
            ORACLE_TIMEOUT_SECONDS=5.0,
            OLLAMA_HOST="http://ollama:11434",
            OPENAI_BASE_URL="https://api.example.com/v1",
            OPENAI_API_KEY="",
            ANTHROPIC_API_URL="https://api.example.com/v1/messages",
            ANTHROPIC_API_KEY="",
            ANTHROPIC_VERSION="2023-06-01",
        )
        base.update(overrides)
        return SimpleNamespace(**base)

    def test_ollama(self):
        assert isinstance(build_oracle(OracleKind.OLLAMA, self._settings()), OllamaOracle)

    def test_openai_requires_key(self):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            build_oracle(OracleKind.OPENAI, self._settings())
        oracle = build_oracle(OracleKind.OPENAI, self._settings(OPENAI_API_KEY="k"))
        assert isinstance(oracle, OpenAIOracle)

    def test_anthropic_requires_key(self):
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            build_oracle(OracleKind.ANTHROPIC, self._settings())
        oracle = build_oracle(OracleKind.ANTHROPIC, self._settings(ANTHROPIC_API_KEY="k"))
        assert isinstance(oracle, AnthropicOracle)
        assert oracle.timeout == 5.0
