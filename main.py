# main.py
"""
Batch driver for chapter explanations.

Usage:
    python main.py load --file payloads.jsonl
    python main.py generate --corpus KJV --unit GEN --limit 5
    python main.py generate --corpus KJV --mode fast --auto-model
    python main.py escalate --corpus KJV --source-model qwen3:8b --min-band medium --oracle openai --model gpt-4o-mini
"""
import argparse
import asyncio
import sys
from typing import List, Optional
from redis.exceptions import RedisError
from config.cache import close_redis, get_redis
from config.settings import settings
from core.oracle import GenerationClient, OllamaOracle, build_oracle
from core.orchestrator import AutoModel
from core.prompt_builder import load_prompt
from repository.chapter_repository import ChapterRepository
from repository.explanation_repository import ExplanationRepository
from service.explanation_service import (
    ChapterResult,
    ExplanationService,
    RunOptions,
    RunSummary,
    import_payloads,
)
from util.enums import Color, ConfidenceBand, OperatingMode, OracleKind
from util.errors import ConfigurationError, PayloadError
from util.logger import init_logger

EXIT_STARTUP_FAILURE = 2


def _print_result(result: ChapterResult) -> None:
    label = f"{result.ref.unit} {result.ref.chapter}"
    if result.status == "ok":
        band = result.band.value if result.band else "-"
        print(
            f"  {Color.GREEN}ok{Color.RESET}      {label}  {result.model}  "
            f"{result.word_count} words, {band}  {result.duration_ms / 1000:.1f}s"
        )
    elif result.status == "skipped":
        print(f"  {Color.YELLOW}skipped{Color.RESET} {label}  already ready for {result.model}")
    else:
        print(f"  {Color.RED}error{Color.RESET}   {label}  {result.model}  {result.error}")


def _print_summary(title: str, summary: RunSummary) -> None:
    print("")
    print(f"{Color.BOLD}{title}{Color.RESET}")
    print(f"  OK: {summary.ok}")
    print(f"  Errors: {summary.errors}")
    print(f"  Skipped (already ready): {summary.skipped}")
    print(f"  Total targeted: {summary.total}")


def _required_models(args: argparse.Namespace) -> List[str]:
    models = [args.model, args.secondary_model]
    if args.auto_model:
        models += [args.model_simple, args.model_complex]
    return list(dict.fromkeys(models))


async def _connect_redis() -> None:
    try:
        await get_redis()
    except (RedisError, OSError) as e:
        raise ConfigurationError(f"Cannot reach Redis at {settings.REDIS_URL}: {e}") from e


async def _build_service(args: argparse.Namespace) -> ExplanationService:
    """Startup checks: Redis, oracle credential, and (for Ollama) that every model is pulled."""
    await _connect_redis()
    kind = OracleKind(args.oracle)
    oracle = build_oracle(kind, settings)
    if isinstance(oracle, OllamaOracle):
        await oracle.assert_models_available(*_required_models(args))
    client = GenerationClient(oracle, top_p=settings.CHAPTER_TOP_P, system=settings.SYSTEM_PROMPT)
    return ExplanationService(ChapterRepository(), ExplanationRepository(), client)


def _run_options(args: argparse.Namespace) -> RunOptions:
    try:
        prompt = load_prompt(args.prompt, version_override=args.prompt_version)
    except (OSError, ValueError) as e:
        raise ConfigurationError(str(e)) from e

    auto_model = (
        AutoModel(simple=args.model_simple, complex=args.model_complex)
        if args.auto_model
        else None
    )
    return RunOptions(
        corpus=args.corpus,
        prompt=prompt,
        model=args.model,
        secondary_model=args.secondary_model,
        unit=args.unit,
        chapter=args.chapter,
        limit=args.limit,
        force=args.force,
        auto_model=auto_model,
        mode=OperatingMode(args.mode),
        temperature=settings.CHAPTER_TEMP,
        verbosity_temperature=settings.CHAPTER_VERBOSE_RETRY_TEMP,
        token_budget=args.token_budget,
        word_target=args.word_target,
    )


def _print_header(args: argparse.Namespace, options: RunOptions) -> None:
    print(f"{Color.GREEN}Chapter explanations{Color.RESET} corpus={options.corpus}")
    print(f"  Oracle: {args.oracle}")
    if options.auto_model:
        print(
            f"  Auto-model: simple={options.auto_model.simple} complex={options.auto_model.complex}"
        )
    else:
        print(f"  Model: {options.model}")
    print(f"  Secondary model: {options.secondary_model}")
    print(f"  Prompt: {options.prompt.prompt_version} (schema {options.prompt.schema_version})")
    print(f"  Mode: {options.mode.value}")
    if options.mode == OperatingMode.FAST:
        print("  Fast mode: JSON repair + citation format-lock only; short results are stored ready")


async def cmd_generate(args: argparse.Namespace) -> int:
    options = _run_options(args)
    try:
        service = await _build_service(args)
        _print_header(args, options)
        summary = await service.run(options, reporter=_print_result)
    finally:
        await close_redis()
    _print_summary("Chapter explanation run finished.", summary)
    return 0


async def cmd_escalate(args: argparse.Namespace) -> int:
    options = _run_options(args)
    bands = (
        {ConfidenceBand.LOW, ConfidenceBand.MEDIUM}
        if args.min_band == ConfidenceBand.MEDIUM.value
        else {ConfidenceBand.LOW}
    )
    try:
        service = await _build_service(args)
        _print_header(args, options)
        print(f"  Escalating from: {args.source_model} (bands: {', '.join(sorted(b.value for b in bands))})")
        summary = await service.escalate(
            options, source_model=args.source_model, bands=bands, reporter=_print_result
        )
    finally:
        await close_redis()
    _print_summary("Chapter escalation run finished.", summary)
    return 0


async def cmd_load(args: argparse.Namespace) -> int:
    try:
        await _connect_redis()
        count = await import_payloads(ChapterRepository(), args.file)
    except PayloadError as e:
        print(f"{Color.RED}Load failed:{Color.RESET} {e.message}", file=sys.stderr)
        return 1
    finally:
        await close_redis()
    print(f"{Color.GREEN}Loaded {count} chapter payloads{Color.RESET} from {args.file}")
    return 0


def _add_run_arguments(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--corpus", required=True, help="Corpus / translation id")
    sub.add_argument("--unit", help="Only this unit (book id)")
    sub.add_argument("--chapter", type=int, help="Only this chapter (requires --unit)")
    sub.add_argument("--limit", type=int, help="Stop after N chapters")
    sub.add_argument("--force", action="store_true", help="Rerun chapters that are already ready")
    sub.add_argument("--oracle", choices=[k.value for k in OracleKind], default=settings.ORACLE.value)
    sub.add_argument("--model", default=settings.CHAPTER_MODEL, help="Primary model id")
    sub.add_argument(
        "--secondary-model",
        default=settings.CHAPTER_SECONDARY_MODEL,
        help="Model for grounding, format-lock and final rescue retries",
    )
    sub.add_argument("--auto-model", action="store_true", help="Route each chapter by complexity")
    sub.add_argument("--model-simple", default=settings.CHAPTER_MODEL_SIMPLE)
    sub.add_argument("--model-complex", default=settings.CHAPTER_MODEL_COMPLEX)
    sub.add_argument(
        "--mode",
        choices=[m.value for m in OperatingMode],
        default=OperatingMode.STANDARD.value,
        help="standard: full retry chain; fast: JSON + citation retries only",
    )
    sub.add_argument("--prompt", default=settings.CHAPTER_PROMPT, help="Prompt template file")
    sub.add_argument("--prompt-version", help="Override PROMPT_VERSION from the template")
    sub.add_argument("--word-target", type=int, help="Fixed explanation length target")
    sub.add_argument("--token-budget", type=int, default=settings.CHAPTER_TOKEN_BUDGET)
    sub.add_argument("--log-level", help="Override LOG_LEVEL")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chapter-explainer",
        description="Generate quality-gated chapter explanations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # generate
    sub = subparsers.add_parser("generate", help="Explain chapters")
    _add_run_arguments(sub)
    sub.set_defaults(func=cmd_generate)

    # escalate
    sub = subparsers.add_parser("escalate", help="Rerun weak or failed chapters of another model")
    _add_run_arguments(sub)
    sub.add_argument("--source-model", required=True, help="Model whose records are escalated")
    sub.add_argument(
        "--min-band",
        choices=[ConfidenceBand.LOW.value, ConfidenceBand.MEDIUM.value],
        default=ConfidenceBand.LOW.value,
        help="low: error+low records; medium: error+low+medium records",
    )
    sub.set_defaults(func=cmd_escalate)

    # load
    sub = subparsers.add_parser("load", help="Import chapter payloads from JSONL")
    sub.add_argument("--file", required=True, help="JSONL file, one chapter payload per line")
    sub.add_argument("--log-level", help="Override LOG_LEVEL")
    sub.set_defaults(func=cmd_load)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if getattr(args, "chapter", None) is not None and not getattr(args, "unit", None):
        parser.error("--chapter requires --unit")

    init_logger(args.log_level)
    try:
        return asyncio.run(args.func(args))
    except ConfigurationError as e:
        print(f"{Color.RED}Startup failed:{Color.RESET} {e}", file=sys.stderr)
        return EXIT_STARTUP_FAILURE


if __name__ == "__main__":
    sys.exit(main())
