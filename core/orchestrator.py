# core/orchestrator.py
from dataclasses import dataclass
from typing import Any, Dict, Optional
from core import citations
from core.complexity import (
    choose_model,
    compute_complexity,
    payload_for_prompt,
    payload_tier_for_score,
    sanitize_payload,
)
from core.confidence import score_confidence
from core.entities import (
    ComplexityAssessment,
    GenerationAttempt,
    PromptContext,
    QualityReport,
    WordPolicy,
)
from core.evaluators import (
    evaluate_all,
    evaluate_citation_format,
    evaluate_meta_talk,
    evaluate_sentence_count,
    evaluate_truncation,
)
from core.grounding import GroundingTokenizer, evaluate_grounding
from core.oracle import GenerationClient
from core.output_parser import coerce_explanation, parse_structured
from core import prompt_builder as notes
from core.word_policy import estimate_word_policy
from model.chapter import ChapterPayload
from model.explanation import Confidence, ExplanationMeta, RetryFlags
from util.enums import OperatingMode, PayloadTier
from util.errors import ParseError, PayloadError, PipelineError, PolicyViolation, TransportError
from util.functions import count_words
import logging

logger = logging.getLogger(__name__)

TRUNCATION_TOKEN_BUDGET = 1100
TOOSHORT_TOKEN_BUDGET = 1100
TOOSHORT_STRICT_TOKEN_BUDGET = 1300
RECOVERY_TOKEN_BUDGET = 1300
FINAL_RESCUE_TOKEN_BUDGET = 1400
RECOVERY_MIN_TEMPERATURE = 0.45
REPAIR_TEMPERATURE = 0.0


@dataclass(frozen=True)
class AutoModel:
    simple: str
    complex: str


@dataclass(frozen=True)
class ChapterPlan:
    """Everything decided about a chapter before the first oracle call."""

    payload: ChapterPayload
    sanitized: ChapterPayload
    prompt_payload: Dict[str, Any]
    assessment: ComplexityAssessment
    tier: PayloadTier
    policy: WordPolicy
    prompt_context: PromptContext
    prompt: str
    model: str
    secondary_model: str
    token_budget: int

    @property
    def list_heavy(self) -> bool:
        return self.assessment.list_heavy


@dataclass
class ChapterTrace:
    """Best-known state of a chapter; attached to PipelineError for the error record."""

    explanation: Optional[str] = None
    raw: str = ""
    word_count: Optional[int] = None
    meta: Optional[ExplanationMeta] = None


@dataclass(frozen=True)
class ChapterOutcome:
    explanation: str
    raw: str
    word_count: int
    report: QualityReport
    confidence: Confidence
    meta: ExplanationMeta


def plan_chapter(
    payload: Optional[ChapterPayload],
    *,
    prompt_context: PromptContext,
    model: str,
    secondary_model: str,
    token_budget: int,
    word_target: Optional[int] = None,
    auto_model: Optional[AutoModel] = None,
) -> ChapterPlan:
    """
    Sanitize, score, tier, size and route one chapter.
    Raises PayloadError when there is nothing to explain.
    """
    if payload is None or not payload.verses:
        raise PayloadError("Missing chapter payload verses")

    sanitized = sanitize_payload(payload)
    assessment = compute_complexity(sanitized)
    tier = payload_tier_for_score(assessment.score)
    prompt_payload = payload_for_prompt(sanitized, tier)
    policy = estimate_word_policy(
        sanitized, list_heavy=assessment.list_heavy, override_target=word_target
    )

    chosen, budget = model, token_budget
    if auto_model is not None:
        chosen, budget = choose_model(
            assessment,
            simple_model=auto_model.simple,
            complex_model=auto_model.complex,
            token_budget=token_budget,
        )

    prompt = notes.build_chapter_prompt(
        prompt_context.template,
        prompt_payload,
        policy.prompt_target_words,
        assessment,
    )
    return ChapterPlan(
        payload=payload,
        sanitized=sanitized,
        prompt_payload=prompt_payload,
        assessment=assessment,
        tier=tier,
        policy=policy,
        prompt_context=prompt_context,
        prompt=prompt,
        model=chosen,
        secondary_model=secondary_model,
        token_budget=budget,
    )


class RetryOrchestrator:
    """
    Drives one chapter from first generation to a scored explanation.

    Every stage below triggers at most one corrective regeneration, built as
    the original prompt plus exactly one note. Each regeneration goes through
    the same parse guard as the first call, so a malformed or failed retry
    falls back to the last valid attempt instead of failing the chapter.
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        mode: OperatingMode = OperatingMode.STANDARD,
        temperature: float = 0.15,
        verbosity_temperature: float = 0.2,
        tokenizer: Optional[GroundingTokenizer] = None,
    ) -> None:
        self.client = client
        self.mode = mode
        self.temperature = temperature
        self.verbosity_temperature = verbosity_temperature
        self.tokenizer = tokenizer

    async def explain(self, plan: ChapterPlan) -> ChapterOutcome:
        run = _ChapterRun(self, plan)
        try:
            if self.mode == OperatingMode.FAST:
                return await run.execute_fast()
            return await run.execute_standard()
        except PipelineError as e:
            if e.trace is None:
                e.trace = run.trace()
            raise


class _ChapterRun:
    """Chapter-scoped retry state. One instance per explain() call."""

    def __init__(self, owner: RetryOrchestrator, plan: ChapterPlan) -> None:
        self.owner = owner
        self.plan = plan
        self.policy = plan.policy
        self.flags = RetryFlags()
        self.attempt: Optional[GenerationAttempt] = None
        self.raw = ""
        self.token_budget = plan.token_budget
        self.temperature_used = owner.temperature
        self.meta: Optional[ExplanationMeta] = None

    # ---------------- state helpers ----------------

    @property
    def text(self) -> str:
        return self.attempt.explanation if self.attempt else ""

    @property
    def word_count(self) -> int:
        return count_words(self.text)

    def _below_floor(self) -> bool:
        return self.word_count < self.policy.min_words

    def _raise_budget(self, floor: int) -> int:
        self.token_budget = max(self.token_budget, floor)
        return self.token_budget

    def _build_meta(
        self,
        report: Optional[QualityReport] = None,
        confidence: Optional[Confidence] = None,
    ) -> ExplanationMeta:
        wc = self.word_count if self.attempt else None
        return ExplanationMeta(
            model=self.plan.model,
            secondaryModel=self.plan.secondary_model,
            mode=self.owner.mode,
            temperatureUsed=self.temperature_used,
            tokenBudgetUsed=self.token_budget,
            payloadTier=self.plan.tier,
            wordCount=wc,
            tooShortFinal=None if wc is None else wc < self.policy.min_words,
            retries=self.flags.model_copy(),
            assessment=self.plan.assessment.to_dict(),
            wordPolicy=self.policy.to_dict(),
            quality=report.to_dict() if report is not None else None,
            confidence=confidence,
        )

    def trace(self) -> ChapterTrace:
        return ChapterTrace(
            explanation=self.text or None,
            raw=self.raw,
            word_count=self.word_count if self.attempt else None,
            meta=self.meta or self._build_meta(),
        )

    # ---------------- oracle + parse guard ----------------

    async def _call(self, prompt: str, model: str, temperature: float, budget: int) -> str:
        raw = await self.owner.client.generate(
            prompt, model=model, temperature=temperature, token_budget=budget
        )
        self.raw = raw
        return raw

    def _accept(self, raw: str, text: str, model: str, temperature: float, budget: int, strategy: str) -> None:
        self.attempt = GenerationAttempt(
            raw=raw,
            explanation=text,
            model=model,
            temperature=temperature,
            token_budget=budget,
            strategy=strategy,
        )
        self.temperature_used = temperature

    def _try_structured(self, raw: str, model: str, temperature: float, budget: int) -> bool:
        try:
            text = parse_structured(raw)
        except ParseError:
            return False
        self._accept(raw, text, model, temperature, budget, "structured")
        return True

    async def _generate(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float,
        budget: Optional[int] = None,
    ) -> None:
        """
        Call, then parse. On a structured-parse failure: one repair retry at
        temperature 0 on the same model, one more on the chapter's primary
        model when the retry ran elsewhere, lenient coercion of the last raw
        text, and finally the previous valid attempt.
        """
        budget = budget or self.token_budget
        previous = self.attempt
        try:
            raw = await self._call(prompt, model, temperature, budget)
            if self._try_structured(raw, model, temperature, budget):
                return

            self.flags.jsonInvalidRetry = True
            repair_prompt = notes.with_note(prompt, notes.JSON_REPAIR_NOTE)
            raw = await self._call(repair_prompt, model, REPAIR_TEMPERATURE, budget)
            if self._try_structured(raw, model, REPAIR_TEMPERATURE, budget):
                return
            if model != self.plan.model:
                raw = await self._call(repair_prompt, self.plan.model, REPAIR_TEMPERATURE, budget)
                if self._try_structured(raw, self.plan.model, REPAIR_TEMPERATURE, budget):
                    return

            text = coerce_explanation(raw)
            self.flags.jsonCoerceFallback = True
            self._accept(raw, text, model, REPAIR_TEMPERATURE, budget, "coerced")
        except (ParseError, TransportError) as e:
            if previous is None:
                raise
            logger.warning(
                "chapter.fallback_to_previous chapter=%s reason=%s",
                self.plan.payload.chapter,
                e.message,
            )
            self.flags.jsonFallbackToPrevious = True
            self.attempt = previous
            self.temperature_used = previous.temperature

    async def _retry(
        self,
        kind: str,
        note: str,
        *,
        model: Optional[str] = None,
        temperature: float = REPAIR_TEMPERATURE,
        budget: Optional[int] = None,
    ) -> None:
        model = model or self.plan.model
        logger.info(
            "chapter.retry kind=%s model=%s words=%d unit=%s chapter=%s",
            kind,
            model,
            self.word_count,
            self.plan.payload.unit,
            self.plan.payload.chapter,
        )
        await self._generate(
            notes.with_note(self.plan.prompt, note),
            model=model,
            temperature=temperature,
            budget=budget,
        )

    def _normalize(self) -> None:
        """Rewrite citations in code when the format check fails; no oracle call."""
        if self.attempt is None or evaluate_citation_format(self.text).ok:
            return
        normalized = citations.consolidate_verse_refs(self.text)
        if normalized != self.text:
            self.flags.verseRefNormalized = True
            self.attempt = self.attempt.with_explanation(normalized)

    async def _format_lock(self) -> None:
        self._normalize()
        if not evaluate_citation_format(self.text).ok:
            self.flags.verseRefCountRetry = True
            await self._retry(
                "format_lock",
                notes.format_lock_note(self.policy),
                model=self.plan.secondary_model,
            )

    def _finish(self) -> ChapterOutcome:
        report = evaluate_all(
            self.text,
            self.plan.sanitized,
            list_heavy=self.plan.list_heavy,
            tokenizer=self.owner.tokenizer,
        )
        confidence = score_confidence(self.text, report, self.policy, self.flags)
        self.meta = self._build_meta(report, confidence)
        return ChapterOutcome(
            explanation=self.text,
            raw=self.raw,
            word_count=report.word_count,
            report=report,
            confidence=confidence,
            meta=self.meta,
        )

    # ---------------- pipelines ----------------

    async def _first_generation(self) -> None:
        await self._generate(
            self.plan.prompt,
            model=self.plan.model,
            temperature=self.owner.temperature,
        )

    async def execute_fast(self) -> ChapterOutcome:
        # Lower-assurance mode: parse guard and citation format-lock only.
        await self._first_generation()
        await self._format_lock()
        return self._finish()

    async def execute_standard(self) -> ChapterOutcome:
        plan, policy = self.plan, self.policy
        list_heavy = plan.list_heavy

        await self._first_generation()

        if not evaluate_truncation(self.text).ok:
            self.flags.truncationRetry = True
            await self._retry(
                "truncation",
                notes.TRUNCATION_NOTE,
                budget=self._raise_budget(TRUNCATION_TOKEN_BUDGET),
            )

        if not evaluate_meta_talk(self.text).ok:
            self.flags.metaTalkRetry = True
            await self._retry("meta_talk", notes.META_TALK_NOTE)

        grounding = evaluate_grounding(
            self.text, plan.sanitized, list_heavy=list_heavy, tokenizer=self.owner.tokenizer
        )
        if not grounding.ok:
            self.flags.groundingRetry = True
            await self._retry(
                "grounding",
                notes.grounding_note(policy),
                model=plan.secondary_model,
            )

        if self._below_floor():
            self.flags.tooshortRetry = True
            await self._retry(
                "tooshort",
                notes.verbosity_note(policy),
                temperature=self.owner.verbosity_temperature,
                budget=self._raise_budget(TOOSHORT_TOKEN_BUDGET),
            )
            if self._below_floor():
                self.flags.tooshortRetry2 = True
                await self._retry(
                    "tooshort_strict",
                    notes.verbosity_note(policy, strict=True),
                    temperature=self.owner.verbosity_temperature,
                    budget=self._raise_budget(TOOSHORT_STRICT_TOKEN_BUDGET),
                )

        if self.word_count > policy.max_words:
            self.flags.wordcountRetry = True
            await self._retry("wordcount", notes.wordcount_note(policy))

        if not evaluate_sentence_count(self.text, list_heavy=list_heavy).ok:
            self.flags.sentenceCountRetry = True
            await self._retry("sentence_count", notes.sentence_count_note(policy))

        await self._format_lock()
        # retries can regress formatting; clean up before measuring length again
        self._normalize()

        if self._below_floor():
            self.flags.postFormatRecoveryRetry = True
            await self._retry(
                "post_format_recovery",
                notes.verbosity_note(policy, strict=True),
                temperature=max(self.owner.verbosity_temperature, RECOVERY_MIN_TEMPERATURE),
                budget=self._raise_budget(RECOVERY_TOKEN_BUDGET),
            )
            self._normalize()

        if self._below_floor():
            self.flags.finalLengthRescueRetry = True
            await self._retry(
                "final_rescue",
                notes.final_rescue_note(policy),
                model=plan.secondary_model,
                budget=self._raise_budget(FINAL_RESCUE_TOKEN_BUDGET),
            )
            self._normalize()

        outcome = self._finish()
        if outcome.word_count < policy.min_words:
            raise PolicyViolation(
                f"Explanation too short after retries: {outcome.word_count} words "
                f"(minimum {policy.min_words}, target {policy.target_words})."
            )
        return outcome
