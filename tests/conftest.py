"""
Pytest configuration and shared fixtures: sample chapters, a scripted
oracle, and an in-memory stand-in for the async Redis client.
"""

import json
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

# Keep tests independent of a developer's .env
os.environ.setdefault("APP_ENV", "prod")

import pytest

from core.entities import PromptContext
from core.oracle import GenerationClient, OracleOptions
from model.chapter import ChapterPayload, Entity, ModernPlace, Verse
from model.explanation import Confidence, ExplanationMeta, ExplanationRecord
from util.enums import ConfidenceBand, OperatingMode


# =============================================================================
# Sample text
# =============================================================================

GOOD_EXPLANATION = (
    "God tested Abraham by telling him to take his son Isaac to the land of Moriah. "
    "Abraham rose early, saddled his donkey, and traveled with Isaac and two servants "
    "for three days until he saw the place from far away. "
    "Isaac carried the wood for the offering while his father carried the fire and the knife. "
    "When Isaac asked where the lamb was, Abraham answered that God would provide it. "
    "At the place Abraham built an altar and arranged the wood. "
    "The angel of the Lord called to him from heaven, and Abraham saw a ram caught by its "
    "horns in a thicket, which he offered instead of his son (v. 1-2, v. 13)."
)

SHORT_EXPLANATION = "Abraham took Isaac to Moriah and God provided a ram (v. 1, v. 13)."

UNGROUNDED_EXPLANATION = (
    "A traveler walked for many days across a dry plain with a young companion. "
    "They carried bread and water in heavy bags. "
    "At night they rested under the open sky and talked about home. "
    "The companion asked many questions about the road ahead. "
    "At last they reached a quiet valley where a small stream ran. "
    "There they built a fire and cooked a simple meal before sleeping (v. 1, v. 10)."
)

LIST_EXPLANATION = (
    "This chapter records the inheritance of the tribe of Judah and traces its south border "
    "from the Salt Sea past Kadesh-barnea and Hezron toward the wilderness of Zin at the edge "
    "of Edom. It then lists the cities in the far south, naming Kabzeel, Eder, Jagur, Kinah, "
    "Dimonah, Adadah, Kedesh, Hazor, Ithnan, Ziph, Telem and Bealoth as towns in the territory "
    "given to Judah. The list closes by counting twenty-nine cities together with their "
    "villages, showing how the southern land of the tribe was divided and settled by families "
    "(v. 1-2, v. 21-32)."
)

TEST_TEMPLATE = (
    "Explain this chapter in about {{WORD_TARGET}} words.\n"
    'Return JSON with one key "chapter_explanation".\n'
    "{{CHAPTER_PAYLOAD_JSON}}"
)


def as_json(explanation: str) -> str:
    return json.dumps({"chapter_explanation": explanation})


# =============================================================================
# Payloads
# =============================================================================

def _verses(texts: Sequence[str], unit: str, chapter: int) -> Tuple[Verse, ...]:
    return tuple(
        Verse(verse=i, ref=f"{unit} {chapter}:{i}", text=t)
        for i, t in enumerate(texts, start=1)
    )


def make_narrative_payload(unit: str = "GEN", chapter: int = 22, corpus: str = "WEB") -> ChapterPayload:
    texts = [
        "After these things God tested Abraham and called to him.",
        "He told Abraham to take his son Isaac to the land of Moriah.",
        "Abraham rose early in the morning and saddled his donkey.",
        "On the third day Abraham saw the place from far away.",
        "Isaac carried the wood while Abraham carried the fire and the knife.",
        "Isaac asked his father where the lamb for the offering was.",
        "Abraham answered that God would provide the lamb.",
        "They came to the place and Abraham built an altar there.",
        "The angel of the Lord called to Abraham from heaven.",
        "Abraham saw a ram caught in a thicket by its horns.",
    ]
    return ChapterPayload(
        corpus=corpus,
        unit=unit,
        chapter=chapter,
        verses=_verses(texts, unit, chapter),
        entities=(
            Entity(id="p1", canonical_name="Isaac", type="person", verse_hits=4, aliases=("Yitzhak",)),
            Entity(id="p2", canonical_name="Abraham", type="person", verse_hits=8, aliases=("Abram",)),
            Entity(
                id="pl1",
                canonical_name="Moriah",
                type="place",
                verse_hits=1,
                modern=ModernPlace(name="Temple Mount"),
            ),
        ),
    )


def make_list_heavy_payload(unit: str = "JOS", chapter: int = 15, corpus: str = "WEB") -> ChapterPayload:
    texts = [
        "This is the inheritance of the tribe of Judah by their families, to the border of Edom, the wilderness of Zin, southward.",
        "Their south border went from the shore of the Salt Sea, from the bay, to Kadesh-barnea, and to Hezron.",
        "The cities at the far south were Kabzeel, Eder, Jagur, and Kinah.",
        "Dimonah, Adadah, Kedesh, Hazor, and Ithnan.",
        "Ziph, Telem, Bealoth, and Hazor-hadattah.",
        "All the cities were twenty-nine, with their villages.",
    ]
    return ChapterPayload(
        corpus=corpus,
        unit=unit,
        chapter=chapter,
        verses=_verses(texts, unit, chapter),
        entities=(
            Entity(id="t1", canonical_name="Judah", type="tribe", verse_hits=1),
            Entity(id="pl2", canonical_name="Edom", type="place", verse_hits=1),
            Entity(id="pl3", canonical_name="Kabzeel", type="place", verse_hits=1),
        ),
    )


@pytest.fixture
def narrative_payload() -> ChapterPayload:
    return make_narrative_payload()


@pytest.fixture
def list_heavy_payload() -> ChapterPayload:
    return make_list_heavy_payload()


@pytest.fixture
def prompt_context() -> PromptContext:
    return PromptContext(template=TEST_TEMPLATE, prompt_version="test-v1", schema_version="v1")


# =============================================================================
# Scripted oracle
# =============================================================================

Scripted = Union[str, Exception]


class ScriptedOracle:
    """Replays canned responses in order; an Exception entry is raised instead."""

    def __init__(self, responses: Sequence[Scripted] = (), default: Optional[Scripted] = None) -> None:
        self.responses: List[Scripted] = list(responses)
        self.default = default
        self.calls: List[Tuple[str, OracleOptions]] = []

    async def call(self, prompt: str, options: OracleOptions) -> str:
        self.calls.append((prompt, options))
        if self.responses:
            nxt = self.responses.pop(0)
        elif self.default is not None:
            nxt = self.default
        else:
            raise AssertionError(f"unexpected oracle call #{len(self.calls)}")
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    @property
    def models(self) -> List[str]:
        return [opts.model for _, opts in self.calls]


@pytest.fixture
def scripted():
    def _make(responses: Sequence[Scripted] = (), default: Optional[Scripted] = None):
        oracle = ScriptedOracle(responses, default=default)
        return oracle, GenerationClient(oracle, top_p=0.75, system="test system")

    return _make


# =============================================================================
# In-memory async Redis
# =============================================================================

class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._ops: List[Tuple[str, tuple]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        self._ops.clear()
        return False

    def set(self, key: str, value: str) -> "FakePipeline":
        self._ops.append(("set", (key, value)))
        return self

    def hset(self, name: str, key: str, value: str) -> "FakePipeline":
        self._ops.append(("hset", (name, key, value)))
        return self

    def zadd(self, name: str, mapping: Dict[str, float]) -> "FakePipeline":
        self._ops.append(("zadd", (name, mapping)))
        return self

    async def execute(self) -> List[Any]:
        ops, self._ops = self._ops, []
        return [await getattr(self._redis, op)(*args) for op, args in ops]


class FakeRedis:
    """The subset of redis.asyncio.Redis the repositories use, decode_responses=True."""

    def __init__(self) -> None:
        self.kv: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        return self.kv.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.kv[key] = value
        return True

    async def hset(self, name: str, key: str, value: str) -> int:
        h = self.hashes.setdefault(name, {})
        created = key not in h
        h[key] = value
        return int(created)

    async def hgetall(self, name: str) -> Dict[str, str]:
        return dict(self.hashes.get(name, {}))

    async def zadd(self, name: str, mapping: Dict[str, float]) -> int:
        z = self.zsets.setdefault(name, {})
        added = sum(1 for m in mapping if m not in z)
        z.update(mapping)
        return added

    async def zrange(self, name: str, start: int, end: int) -> List[str]:
        members = sorted(self.zsets.get(name, {}).items(), key=lambda kv: (kv[1], kv[0]))
        names = [m for m, _ in members]
        return names[start:] if end == -1 else names[start : end + 1]

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# =============================================================================
# Records
# =============================================================================

def make_record(unit="GEN", chapter=22, model="small", status="ready", band=ConfidenceBand.HIGH, **kw):
    meta = None
    if band is not None:
        meta = ExplanationMeta(
            model=model,
            secondaryModel="big",
            mode=OperatingMode.STANDARD,
            temperatureUsed=0.15,
            tokenBudgetUsed=900,
            confidence=Confidence(score=90, band=band),
        )
    return ExplanationRecord(
        corpus="WEB",
        unit=unit,
        chapter=chapter,
        model=model,
        promptVersion="test-v1",
        status=status,
        explanation="text" if status == "ready" else None,
        meta=meta,
        **kw,
    )
