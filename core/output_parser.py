# core/output_parser.py
import json
import re
from typing import Any
from util.errors import ParseError

EXPLANATION_KEY = "chapter_explanation"

_THINK_BLOCK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_UNCLOSED_THINK_RE = re.compile(r"^\s*<think>[\s\S]*$", re.IGNORECASE)
_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_KEY_VALUE_RE = re.compile(
    r'"chapter_explanation"\s*:\s*"((?:[^"\\]|\\.)*)"', re.IGNORECASE
)
_LABEL_RE = re.compile(r'^\s*\{?\s*(?:json\s*:\s*)?"?chapter_explanation"?\s*:\s*', re.IGNORECASE)


def strip_reasoning(text: str) -> str:
    """
    Pre-parse step: drop <think>…</think> preambles some oracles prepend.
    Kept apart from the parse cascade; adapters call it on every response.
    """
    out = _THINK_BLOCK_RE.sub("", text or "")
    # A preamble cut off by the token budget never closes; nothing usable follows it.
    out = _UNCLOSED_THINK_RE.sub("", out)
    return out.strip()


def _explanation_from_object(obj: Any) -> str:
    if not isinstance(obj, dict):
        raise ParseError("Invalid output: expected JSON object")
    if list(obj.keys()) != [EXPLANATION_KEY]:
        raise ParseError(f"Invalid output: expected exactly one top-level key '{EXPLANATION_KEY}'")
    value = obj.get(EXPLANATION_KEY)
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"Invalid output: missing non-empty {EXPLANATION_KEY}")
    return value.strip()


def parse_structured(raw: str) -> str:
    """
    Strategies 1-2: strict JSON, then the outermost {...} span.
    Raises ParseError when neither yields the explanation field.
    """
    text = (raw or "").strip()
    try:
        return _explanation_from_object(json.loads(text))
    except json.JSONDecodeError:
        pass

    first, last = text.find("{"), text.rfind("}")
    if first == -1 or last <= first:
        raise ParseError("Invalid output: response is not parseable JSON")
    try:
        obj = json.loads(text[first : last + 1])
    except json.JSONDecodeError as e:
        raise ParseError("Invalid output: response is not parseable JSON") from e
    return _explanation_from_object(obj)


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value.replace('\\"', '"').replace("\\n", " ").replace("\\t", " ")


def coerce_explanation(raw: str) -> str:
    """
    Strategies 3-4 (lenient): regex out the quoted field value from JSON-ish
    text, else treat the cleaned response as plain prose.
    """
    text = (raw or "").strip()
    text = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text)).strip()
    if not text:
        raise ParseError("Invalid output: response is not parseable JSON")

    m = _KEY_VALUE_RE.search(text)
    if m:
        extracted = re.sub(r"\s+", " ", _unescape(m.group(1))).strip()
        if extracted:
            return extracted

    prose, labelled = _LABEL_RE.subn("", text)
    if labelled:
        # {"chapter_explanation": "cut off mid-sentence
        prose = re.sub(r'^\s*"|"?\s*\}?\s*$', "", prose)
    elif len(prose) >= 2 and prose[0] == '"' and prose[-1] == '"':
        prose = prose[1:-1]
    prose = re.sub(r"\s+", " ", prose).strip()
    if not prose:
        raise ParseError("Invalid output: response is not parseable JSON")
    return prose
