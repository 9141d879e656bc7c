# service/explanation_service.py
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Collection, List, Literal, Optional, Set
from core.entities import PromptContext
from core.grounding import GroundingTokenizer
from core.oracle import GenerationClient
from core.orchestrator import AutoModel, ChapterPlan, ChapterTrace, RetryOrchestrator, plan_chapter
from model.chapter import ChapterPayload, ChapterRef
from model.explanation import ExplanationRecord
from repository.chapter_repository import ChapterRepository
from repository.explanation_repository import ExplanationRepository, RosterKey
from util.enums import ConfidenceBand, OperatingMode
from util.errors import PayloadError, PipelineError
from util.timing import Stopwatch, epoch_seconds

logger = logging.getLogger(__name__)

ChapterStatus = Literal["ok", "error", "skipped"]


@dataclass(frozen=True)
class RunOptions:
    corpus: str
    prompt: PromptContext
    model: str
    secondary_model: str
    unit: Optional[str] = None
    chapter: Optional[int] = None
    limit: Optional[int] = None
    force: bool = False
    auto_model: Optional[AutoModel] = None
    mode: OperatingMode = OperatingMode.STANDARD
    temperature: float = 0.15
    verbosity_temperature: float = 0.2
    token_budget: int = 900
    word_target: Optional[int] = None


@dataclass(frozen=True)
class ChapterResult:
    ref: ChapterRef
    status: ChapterStatus
    model: str
    duration_ms: int = 0
    word_count: Optional[int] = None
    band: Optional[ConfidenceBand] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    ok: int = 0
    errors: int = 0
    skipped: int = 0
    total: int = 0
    results: List[ChapterResult] = field(default_factory=list)


@dataclass
class RunContext:
    """
    State of one run. The ready roster is read once at start and only
    consulted afterwards; nothing here outlives the run.
    """

    options: RunOptions
    orchestrator: RetryOrchestrator
    ready: Set[RosterKey] = field(default_factory=set)
    summary: RunSummary = field(default_factory=RunSummary)

    def is_ready(self, ref: ChapterRef, model: str) -> bool:
        if self.options.force:
            return False
        return (ref.unit, ref.chapter, model, self.options.prompt.prompt_version) in self.ready

    def record(self, result: ChapterResult) -> None:
        self.summary.results.append(result)
        if result.status == "ok":
            self.summary.ok += 1
        elif result.status == "error":
            self.summary.errors += 1
        else:
            self.summary.skipped += 1


Reporter = Callable[[ChapterResult], None]


class ExplanationService:
    def __init__(
        self,
        chapters: ChapterRepository,
        explanations: ExplanationRepository,
        client: GenerationClient,
        *,
        tokenizer: Optional[GroundingTokenizer] = None,
    ) -> None:
        self._chapters = chapters
        self._explanations = explanations
        self._client = client
        self._tokenizer = tokenizer

    def _context(self, options: RunOptions, ready: Set[RosterKey]) -> RunContext:
        orchestrator = RetryOrchestrator(
            self._client,
            mode=options.mode,
            temperature=options.temperature,
            verbosity_temperature=options.verbosity_temperature,
            tokenizer=self._tokenizer,
        )
        return RunContext(options=options, orchestrator=orchestrator, ready=ready)

    async def run(self, options: RunOptions, reporter: Optional[Reporter] = None) -> RunSummary:
        """
        Explain every targeted chapter, one at a time. A chapter that fails is
        stored as an error record and the run moves on.
        """
        refs = await self._chapters.list_chapters(
            options.corpus, unit=options.unit, chapter=options.chapter, limit=options.limit
        )
        ready = set() if options.force else await self._explanations.ready_roster(options.corpus)
        ctx = self._context(options, ready)
        return await self._run_refs(ctx, refs, reporter)

    async def escalate(
        self,
        options: RunOptions,
        *,
        source_model: str,
        bands: Collection[ConfidenceBand] = (ConfidenceBand.LOW,),
        reporter: Optional[Reporter] = None,
    ) -> RunSummary:
        """
        Rerun chapters whose `source_model` record errored or scored in `bands`,
        always through the full retry chain.
        """
        candidates = await self._explanations.escalation_candidates(
            options.corpus, source_model=source_model, bands=set(bands)
        )
        wanted = {(c.unit, c.chapter) for c in candidates}
        refs = [
            ref
            for ref in await self._chapters.list_chapters(
                options.corpus, unit=options.unit, chapter=options.chapter
            )
            if (ref.unit, ref.chapter) in wanted
        ]
        if options.limit is not None:
            refs = refs[: options.limit]
        logger.info(
            "escalate.candidates corpus=%s source=%s count=%d",
            options.corpus,
            source_model,
            len(refs),
        )

        full_chain = replace(options, mode=OperatingMode.STANDARD)
        ready = set() if options.force else await self._explanations.ready_roster(options.corpus)
        ctx = self._context(full_chain, ready)
        return await self._run_refs(ctx, refs, reporter)

    async def _run_refs(
        self, ctx: RunContext, refs: List[ChapterRef], reporter: Optional[Reporter]
    ) -> RunSummary:
        ctx.summary.total = len(refs)
        for ref in refs:
            result = await self._process(ctx, ref)
            ctx.record(result)
            if reporter is not None:
                reporter(result)
        logger.info(
            "run.done corpus=%s ok=%d errors=%d skipped=%d total=%d",
            ctx.options.corpus,
            ctx.summary.ok,
            ctx.summary.errors,
            ctx.summary.skipped,
            ctx.summary.total,
        )
        return ctx.summary

    async def _process(self, ctx: RunContext, ref: ChapterRef) -> ChapterResult:
        options = ctx.options
        if options.auto_model is None and ctx.is_ready(ref, options.model):
            return ChapterResult(ref=ref, status="skipped", model=options.model)

        sw = Stopwatch()
        payload: Optional[ChapterPayload] = None
        plan: Optional[ChapterPlan] = None
        try:
            payload = await self._chapters.get_payload(ref)
            plan = plan_chapter(
                payload,
                prompt_context=options.prompt,
                model=options.model,
                secondary_model=options.secondary_model,
                token_budget=options.token_budget,
                word_target=options.word_target,
                auto_model=options.auto_model,
            )
            # auto-model only knows the model once the chapter is scored
            if ctx.is_ready(ref, plan.model):
                return ChapterResult(ref=ref, status="skipped", model=plan.model)

            logger.info(
                "chapter.start ref=%s model=%s score=%d tier=%s budget=%d words=%d/%d-%d",
                ref.label,
                plan.model,
                plan.assessment.score,
                plan.tier.value,
                plan.token_budget,
                plan.policy.target_words,
                plan.policy.min_words,
                plan.policy.max_words,
            )
            outcome = await ctx.orchestrator.explain(plan)
        except PipelineError as e:
            model = plan.model if plan is not None else options.model
            record = self._error_record(ref, options, model, payload, e, sw.stop())
            await self._explanations.upsert(record)
            logger.warning("chapter.error ref=%s error=%s", ref.label, e.message)
            return ChapterResult(
                ref=ref,
                status="error",
                model=model,
                duration_ms=record.durationMs or 0,
                word_count=record.meta.wordCount if record.meta else None,
                error=e.message,
            )

        duration = sw.stop()
        record = ExplanationRecord(
            corpus=ref.corpus,
            unit=ref.unit,
            chapter=ref.chapter,
            model=plan.model,
            promptVersion=options.prompt.prompt_version,
            schemaVersion=options.prompt.schema_version,
            status="ready",
            explanation=outcome.explanation,
            inputPayload=payload.model_dump(mode="json"),
            meta=outcome.meta,
            rawResponse=outcome.raw,
            durationMs=duration,
            generatedAt=epoch_seconds(),
        )
        await self._explanations.upsert(record)
        logger.info(
            "chapter.ready ref=%s words=%d band=%s ms=%d",
            ref.label,
            outcome.word_count,
            outcome.confidence.band.value,
            duration,
        )
        return ChapterResult(
            ref=ref,
            status="ok",
            model=plan.model,
            duration_ms=duration,
            word_count=outcome.word_count,
            band=outcome.confidence.band,
        )

    @staticmethod
    def _error_record(
        ref: ChapterRef,
        options: RunOptions,
        model: str,
        payload: Optional[ChapterPayload],
        error: PipelineError,
        duration_ms: int,
    ) -> ExplanationRecord:
        trace = error.trace if isinstance(error.trace, ChapterTrace) else ChapterTrace()
        return ExplanationRecord(
            corpus=ref.corpus,
            unit=ref.unit,
            chapter=ref.chapter,
            model=model,
            promptVersion=options.prompt.prompt_version,
            schemaVersion=options.prompt.schema_version,
            status="error",
            explanation=trace.explanation,
            inputPayload=payload.model_dump(mode="json") if payload is not None else {},
            meta=trace.meta,
            rawResponse=trace.raw or None,
            errorText=error.message,
            durationMs=duration_ms,
            generatedAt=epoch_seconds(),
        )


async def import_payloads(chapters: ChapterRepository, path: str) -> int:
    """
    Import a JSONL export (one chapter payload per line) into the chapter
    store. New units are cataloged after every unit the corpus already has,
    in the order they first appear.
    """
    count = 0
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = ChapterPayload.model_validate(json.loads(line))
            except ValueError as e:
                raise PayloadError(f"{path}:{lineno}: invalid chapter payload: {e}") from e
            await chapters.put_payload(payload)
            count += 1
    logger.info("load.done path=%s chapters=%d", path, count)
    return count
