# util/errors.py
from typing import Any, Optional


class PipelineError(Exception):
    """
    Base for chapter-scoped failures.

    Flow: the orchestrator attaches its trace (partial explanation, raw oracle
    text, metadata) before re-raising so the service can persist an error record.
    """

    def __init__(self, message: str, *, trace: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.trace = trace


class TransportError(PipelineError):
    # Oracle unreachable, timed out, or returned a non-2xx / empty body.
    pass


class ParseError(PipelineError):
    # Output not reducible to the explanation field.
    pass


class QualityViolation(PipelineError):
    def __init__(self, evaluator: str, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.evaluator = evaluator


class PolicyViolation(QualityViolation):
    # Final word count still below the floor (standard mode only).
    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__("word_count", message, **kwargs)


class PayloadError(PipelineError):
    # Chapter payload missing or has no verses.
    pass


class ConfigurationError(Exception):
    # Startup-time problem (missing credential, oracle unreachable, unknown model).
    pass
