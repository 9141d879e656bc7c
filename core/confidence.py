# core/confidence.py
from typing import List
from core.entities import QualityReport, WordPolicy
from model.explanation import Confidence, RetryFlags
from util.constants import HEDGING_WORDS_RE
from util.enums import ConfidenceBand
from util.functions import clamp

HIGH_BAND_MIN = 85
MEDIUM_BAND_MIN = 65

# (flag attribute, penalty, reason)
_RETRY_PENALTIES: tuple[tuple[str, int, str], ...] = (
    ("jsonInvalidRetry", 8, "json_retry_used"),
    ("truncationRetry", 6, "truncation_retry_used"),
    ("metaTalkRetry", 6, "meta_talk_retry_used"),
    ("groundingRetry", 8, "grounding_retry_used"),
    ("wordcountRetry", 6, "wordcount_retry_used"),
    ("tooshortRetry", 8, "tooshort_retry_used"),
    ("tooshortRetry2", 10, "tooshort_retry2_used"),
    ("sentenceCountRetry", 6, "sentence_count_retry_used"),
    ("verseRefCountRetry", 6, "verse_ref_count_retry_used"),
    ("postFormatRecoveryRetry", 10, "post_format_recovery_retry_used"),
)


def band_for(score: int) -> ConfidenceBand:
    if score >= HIGH_BAND_MIN:
        return ConfidenceBand.HIGH
    if score >= MEDIUM_BAND_MIN:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


def score_confidence(
    explanation: str,
    report: QualityReport,
    policy: WordPolicy,
    retries: RetryFlags,
) -> Confidence:
    """
    Start at 100 and subtract fixed penalties for every failed check and every
    retry consumed. Grounding comfortably above its minimum earns a small bonus.
    """
    score = 100
    reasons: List[str] = []

    def penalize(amount: int, reason: str) -> None:
        nonlocal score
        score -= amount
        reasons.append(reason)

    wc = report.word_count
    if wc < policy.min_words:
        penalize(25, f"word_count_below_min({wc}<{policy.min_words})")
    elif wc > policy.max_words:
        penalize(15, f"word_count_above_max({wc}>{policy.max_words})")

    if not report.sentences.ok:
        penalize(20, f"sentence_count_out_of_range({report.sentences.sentence_count})")

    if not report.citations.ok:
        penalize(
            35,
            "verse_ref_format_or_count_invalid("
            f"blocks={report.citations.block_count},refs={report.citations.verse_ref_count})",
        )

    g = report.grounding
    if not g.ok:
        penalize(30, "grounding_failed")
    elif g.required_hits > 0 and g.token_hits > g.required_hits:
        score += 3
        reasons.append("grounding_token_hits_above_minimum")

    if not report.meta_talk.ok:
        penalize(20, "meta_talk_detected")

    if HEDGING_WORDS_RE.search(explanation or ""):
        penalize(8, "speculation_word_detected")

    for attr, amount, reason in _RETRY_PENALTIES:
        if getattr(retries, attr):
            penalize(amount, reason)

    if retries.verseRefNormalized:
        penalize(4, "verse_refs_normalized_in_postprocess")

    final = int(round(clamp(score, 0, 100)))
    return Confidence(score=final, band=band_for(final), reasons=reasons)
