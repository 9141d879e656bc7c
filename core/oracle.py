# core/oracle.py
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol
import httpx
from core.output_parser import EXPLANATION_KEY, strip_reasoning
from util.enums import OracleKind
from util.errors import ConfigurationError, TransportError
import logging
from util.timing import timed

logger = logging.getLogger(__name__)

CHAPTER_OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {EXPLANATION_KEY: {"type": "string"}},
    "required": [EXPLANATION_KEY],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class OracleOptions:
    model: str
    temperature: float
    token_budget: int
    top_p: float = 0.75
    system: Optional[str] = None


class GenerationOracle(Protocol):
    """call(prompt, options) -> raw text. Raises httpx errors or TransportError."""

    async def call(self, prompt: str, options: OracleOptions) -> str:
        ...


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _summarize_keys(data: Dict[str, Any]) -> str:
    msg = data.get("message")
    msg_keys = list(msg.keys()) if isinstance(msg, dict) else []
    return f"top-level keys={list(data.keys())}; message keys={msg_keys}"


class OllamaOracle:
    """
    Local Ollama /api/chat. First asks for the JSON schema, then falls back to
    plain "json" format when a model returns empty content for the schema.
    """

    def __init__(
        self,
        host: str,
        *,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        msg = data.get("message")
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str):
                return strip_reasoning(content)
        # older endpoints answer { response: "..." }
        if isinstance(data.get("response"), str):
            return strip_reasoning(data["response"])
        return ""

    def _body(self, prompt: str, options: OracleOptions, fmt: Any) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": options.model,
            "messages": messages,
            "format": fmt,
            "stream": False,
            "think": False,
            "options": {
                "temperature": options.temperature,
                "top_p": options.top_p,
                "num_predict": options.token_budget,
            },
        }

    async def call(self, prompt: str, options: OracleOptions) -> str:
        url = f"{self.host}/api/chat"
        async with self._client() as client:
            r1 = await client.post(url, json=self._body(prompt, options, CHAPTER_OUTPUT_SCHEMA))
            r1.raise_for_status()
            data1 = _json_or_empty(r1)
            text = self._extract_text(data1)
            if text:
                return text

            logger.info("oracle.ollama.empty_schema_response model=%s", options.model)
            r2 = await client.post(url, json=self._body(prompt, options, "json"))
            r2.raise_for_status()
            data2 = _json_or_empty(r2)
            text = self._extract_text(data2)
            if text:
                return text

        raise TransportError(
            "Ollama returned empty content twice. "
            f"Schema attempt: {_summarize_keys(data1)}. JSON attempt: {_summarize_keys(data2)}."
        )

    async def list_models(self) -> List[str]:
        try:
            async with self._client() as client:
                r = await client.get(f"{self.host}/api/tags")
        except httpx.HTTPError as e:
            raise ConfigurationError(
                f"Cannot reach Ollama at {self.host}. Start it with: ollama serve"
            ) from e
        if r.status_code >= 400:
            raise ConfigurationError(f"Ollama health check failed with {r.status_code}")
        models = _json_or_empty(r).get("models") or []
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    async def assert_models_available(self, *model_ids: str) -> None:
        available = await self.list_models()
        for model in model_ids:
            assert_model_available(available, model)


def assert_model_available(available: List[str], model: str) -> None:
    """A bare name ("qwen3") matches any tag of it; a tagged name must match exactly."""
    if ":" in model:
        found = model in available
    else:
        found = any(m == model or m.startswith(f"{model}:") for m in available)
    if not found:
        raise ConfigurationError(
            f'Model "{model}" not found in Ollama. Available: {", ".join(available) or "(none)"}'
        )


class OpenAIOracle:
    """Hosted OpenAI-compatible /chat/completions with json_object output."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def call(self, prompt: str, options: OracleOptions) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }
        messages: List[Dict[str, str]] = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": options.model,
            "messages": messages,
            "temperature": options.temperature,
            "top_p": options.top_p,
            "max_tokens": options.token_budget,
            "response_format": {"type": "json_object"},
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
            resp.raise_for_status()
            data = _json_or_empty(resp)

        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return strip_reasoning(content) if isinstance(content, str) else ""


class AnthropicOracle:
    """Anthropic /v1/messages; text nodes of the reply are concatenated."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        version: str = "2023-06-01",
        timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.version = version
        self.timeout = timeout
        self.transport = transport

    async def call(self, prompt: str, options: OracleOptions) -> str:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
            "content-type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.token_budget,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": options.temperature,
        }
        if options.system:
            payload["system"] = options.system
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.api_url, headers=headers, json=payload)
            resp.raise_for_status()
            data = _json_or_empty(resp)

        content = data.get("content") or []
        parts = [
            node.get("text") or ""
            for node in content
            if isinstance(node, dict) and node.get("type") == "text"
        ]
        return strip_reasoning("".join(parts))


class GenerationClient:
    """
    The only place oracle calls happen. Every failure mode of the underlying
    adapter (timeout, connection error, non-2xx, empty or malformed body) surfaces as
    TransportError so the orchestrator treats it like any failed attempt.
    """

    def __init__(
        self,
        oracle: GenerationOracle,
        *,
        top_p: float = 0.75,
        system: Optional[str] = None,
    ) -> None:
        self.oracle = oracle
        self.top_p = top_p
        self.system = system
        self.calls = 0

    async def generate(self, prompt: str, *, model: str, temperature: float, token_budget: int) -> str:
        options = OracleOptions(
            model=model,
            temperature=temperature,
            token_budget=token_budget,
            top_p=self.top_p,
            system=self.system,
        )
        self.calls += 1
        try:
            with timed(logger, "oracle.call", model=model, temp=temperature, budget=token_budget):
                text = await self.oracle.call(prompt, options)
        except TransportError:
            raise
        except httpx.TimeoutException as e:
            raise TransportError(f"Oracle call timed out for model {model}") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Oracle returned {e.response.status_code}: {e.response.text[:300]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Oracle request failed: {e}") from e
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            # reply shape the adapter did not expect
            raise TransportError(f"Oracle reply unreadable for model {model}: {e!r}") from e

        if not (text or "").strip():
            raise TransportError(f"Oracle returned empty content for model {model}")
        return text


def build_oracle(
    kind: OracleKind,
    settings: Any,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GenerationOracle:
    """Adapter for `kind`; raises ConfigurationError when its credential is absent."""
    timeout = settings.ORACLE_TIMEOUT_SECONDS
    if kind == OracleKind.OLLAMA:
        return OllamaOracle(settings.OLLAMA_HOST, timeout=timeout, transport=transport)
    if kind == OracleKind.OPENAI:
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError("Missing OPENAI_API_KEY for the openai oracle.")
        return OpenAIOracle(
            settings.OPENAI_BASE_URL,
            settings.OPENAI_API_KEY,
            timeout=timeout,
            transport=transport,
        )
    if kind == OracleKind.ANTHROPIC:
        if not settings.ANTHROPIC_API_KEY:
            raise ConfigurationError("Missing ANTHROPIC_API_KEY for the anthropic oracle.")
        return AnthropicOracle(
            settings.ANTHROPIC_API_URL,
            settings.ANTHROPIC_API_KEY,
            version=settings.ANTHROPIC_VERSION,
            timeout=timeout,
            transport=transport,
        )
    raise ConfigurationError(f"Unknown oracle: {kind}")
