# model/explanation.py
from typing import Any, Literal
from pydantic import BaseModel, Field
from util.enums import ConfidenceBand, OperatingMode, PayloadTier

RecordStatus = Literal["ready", "error"]


class RetryFlags(BaseModel):
    """One flag per corrective regeneration (or repair) consumed by a chapter."""

    jsonInvalidRetry: bool = False
    jsonCoerceFallback: bool = False
    jsonFallbackToPrevious: bool = False
    truncationRetry: bool = False
    metaTalkRetry: bool = False
    groundingRetry: bool = False
    tooshortRetry: bool = False
    tooshortRetry2: bool = False
    wordcountRetry: bool = False
    sentenceCountRetry: bool = False
    verseRefCountRetry: bool = False
    postFormatRecoveryRetry: bool = False
    finalLengthRescueRetry: bool = False
    verseRefNormalized: bool = False


class Confidence(BaseModel):
    score: int
    band: ConfidenceBand
    reasons: list[str] = Field(default_factory=list)


class ExplanationMeta(BaseModel):
    model: str
    secondaryModel: str
    mode: OperatingMode
    temperatureUsed: float
    tokenBudgetUsed: int
    payloadTier: PayloadTier | None = None
    wordCount: int | None = None
    tooShortFinal: bool | None = None
    retries: RetryFlags = Field(default_factory=RetryFlags)
    assessment: dict[str, Any] | None = None
    wordPolicy: dict[str, Any] | None = None
    quality: dict[str, Any] | None = None
    confidence: Confidence | None = None


class ExplanationRecord(BaseModel):
    corpus: str
    unit: str
    chapter: int
    model: str
    promptVersion: str
    schemaVersion: str = "v1"
    status: RecordStatus
    explanation: str | None = None
    inputPayload: dict[str, Any] = Field(default_factory=dict)
    meta: ExplanationMeta | None = None
    rawResponse: str | None = None
    errorText: str | None = None
    durationMs: int | None = None
    generatedAt: int = 0

    @property
    def band(self) -> ConfidenceBand | None:
        if self.meta is None or self.meta.confidence is None:
            return None
        return self.meta.confidence.band


class RecordIndexEntry(BaseModel):
    """Compact per-key status kept in the corpus index for roster/escalation reads."""

    unit: str
    chapter: int
    model: str
    promptVersion: str
    status: RecordStatus
    band: ConfidenceBand | None = None
