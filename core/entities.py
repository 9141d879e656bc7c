# core/entities.py
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Ratio is kept for telemetry; the semantic flag gates list-heavy handling.
LIST_HEAVY_RATIO_THRESHOLD = 0.30


@dataclass(frozen=True)
class ComplexityAssessment:
    score: int
    verse_count: int
    total_chars: int
    avg_verse_chars: int
    entity_count: int
    entity_density: float
    list_heavy_ratio: float
    list_heavy_semantic: bool

    @property
    def list_heavy(self) -> bool:
        """Effectively list-heavy: comma density AND list vocabulary."""
        return (
            self.list_heavy_ratio >= LIST_HEAVY_RATIO_THRESHOLD
            and self.list_heavy_semantic
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "list_heavy": self.list_heavy}


@dataclass(frozen=True)
class WordPolicy:
    chapter_words: int
    chapter_words_estimated: bool
    target_words: int
    prompt_target_words: int
    min_words: int
    max_words: int
    list_heavy: bool
    target_mode: str  # "dynamic" | "override"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PromptContext:
    template: str
    prompt_version: str
    schema_version: str
    path: Optional[str] = None


@dataclass(frozen=True)
class GenerationAttempt:
    raw: str
    explanation: str
    model: str
    temperature: float
    token_budget: int
    strategy: str  # which parser strategy produced `explanation`

    def with_explanation(self, explanation: str) -> "GenerationAttempt":
        return GenerationAttempt(
            raw=self.raw,
            explanation=explanation,
            model=self.model,
            temperature=self.temperature,
            token_budget=self.token_budget,
            strategy=self.strategy,
        )


@dataclass(frozen=True)
class MetaTalkReport:
    ok: bool
    hits: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TruncationReport:
    ok: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class SentenceReport:
    ok: bool
    sentence_count: int
    min: int
    max: int


@dataclass(frozen=True)
class CitationReport:
    ok: bool
    block_count: int
    final_block_at_end: bool
    verse_ref_count: int
    inline_verse_outside_final_block: bool
    book_chapter_verse_hit: bool
    required_blocks: int = 1
    required_refs: int = 2


@dataclass(frozen=True)
class GroundingReport:
    ok: bool
    token_hits: int
    required_hits: int
    matched_tokens: List[str]
    entity_density: float
    relaxed_for_list_or_dense: bool
    list_heavy_keyword_hit: bool
    disallowed_phrase_hit: bool
    verse_ref_hit: bool


@dataclass(frozen=True)
class QualityReport:
    meta_talk: MetaTalkReport
    truncation: TruncationReport
    sentences: SentenceReport
    citations: CitationReport
    grounding: GroundingReport
    word_count: int

    @property
    def ok(self) -> bool:
        return all(
            r.ok
            for r in (
                self.meta_talk,
                self.truncation,
                self.sentences,
                self.citations,
                self.grounding,
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "ok": self.ok}
