# core/grounding.py
import re
from collections import Counter
from typing import List, Optional, Protocol
from core.entities import GroundingReport
from model.chapter import ChapterPayload
from util.constants import (
    GENEALOGY_KEYWORDS,
    GROUNDING_TOKEN_LIMIT,
    LIST_HEAVY_KEYWORDS,
    STRUCTURAL_GROUNDING_TOKENS,
    TOKEN_STOPWORDS,
    UNGROUNDED_LIST_HEAVY_PHRASES,
)
from util.functions import fold_accents

_VERSE_ANCHOR_RE = re.compile(r"\bv\.\s*\d+", re.IGNORECASE)
_EDGE_PUNCT_RE = re.compile(r"^[\W_]+|[\W_]+$")
_DENSE_ENTITY_THRESHOLD = 0.45


class GroundingTokenizer(Protocol):
    """Ranks the payload tokens an explanation is expected to mention."""

    def tokens(self, payload: ChapterPayload, limit: int = GROUNDING_TOKEN_LIMIT) -> List[str]:
        ...


class CapitalizedPhraseTokenizer:
    """
    Default tokenizer for Latin-script corpora: proper nouns are runs of
    capitalized words (up to three), plus structural nouns of allotment
    chapters and the entity names. Tokens are accent-folded and lower-cased.
    """

    CANDIDATE_RE = re.compile(
        r"\b[A-Z][A-Za-z'-]{2,}(?:\s+[A-Z][A-Za-z'-]{2,}){0,2}\b"
    )

    def _push(self, freq: Counter, raw: str) -> None:
        token = _EDGE_PUNCT_RE.sub("", raw or "")
        if len(token) < 3:
            return
        lowered = fold_accents(token)
        if lowered in TOKEN_STOPWORDS:
            return
        freq[lowered] += 1
        # Beth-shemesh, En-gedi, Baal's: keep the parts as anchors too
        if "-" in token or "'" in token:
            for part in re.split(r"[-']", token):
                part_norm = fold_accents(part)
                if len(part_norm) >= 3 and part_norm not in TOKEN_STOPWORDS:
                    freq[part_norm] += 1

    def tokens(self, payload: ChapterPayload, limit: int = GROUNDING_TOKEN_LIMIT) -> List[str]:
        freq: Counter = Counter()
        for verse in payload.verses:
            text = verse.text or ""
            for cand in self.CANDIDATE_RE.findall(text):
                self._push(freq, cand)
            folded = fold_accents(text)
            for anchor in STRUCTURAL_GROUNDING_TOKENS:
                if anchor in folded:
                    freq[anchor] += 1

        for entity in payload.entities:
            name = entity.canonical_name or ""
            self._push(freq, name)
            for part in re.split(r"[\s-]+", name):
                self._push(freq, part)

        # Counter keeps insertion order, so ties resolve in first-seen order.
        ranked = sorted(freq.items(), key=lambda kv: (-kv[1], -len(kv[0])))
        return [token for token, _ in ranked[:limit]]


_default_tokenizer = CapitalizedPhraseTokenizer()


def required_hits(token_count: int, relaxed: bool) -> int:
    if relaxed:
        return 1 if token_count >= 1 else 0
    return min(2, token_count)


def evaluate_grounding(
    explanation: str,
    payload: ChapterPayload,
    *,
    list_heavy: bool = False,
    tokenizer: Optional[GroundingTokenizer] = None,
) -> GroundingReport:
    """
    Grounded means: enough top-ranked payload tokens appear, at least one
    verse anchor is cited, list-heavy chapters talk about what is listed, and
    list-heavy chapters avoid the known invented-narrative phrases.
    """
    text = (explanation or "").strip()
    normalized = fold_accents(text)
    tokens = (tokenizer or _default_tokenizer).tokens(payload)

    verse_count = len(payload.verses)
    entity_density = len(payload.entities) / verse_count if verse_count else 0.0
    relaxed = list_heavy or entity_density >= _DENSE_ENTITY_THRESHOLD

    matched = [t for t in tokens if t in normalized]
    needed = required_hits(len(tokens), relaxed)
    token_grounded = bool(text) if needed == 0 else len(matched) >= needed

    if list_heavy:
        list_language = any(kw in normalized for kw in LIST_HEAVY_KEYWORDS) or any(
            fold_accents(kw) in normalized for kw in GENEALOGY_KEYWORDS
        )
        disallowed = any(rx.search(text) for rx in UNGROUNDED_LIST_HEAVY_PHRASES)
    else:
        list_language = True
        disallowed = False

    verse_ref = _VERSE_ANCHOR_RE.search(text) is not None

    return GroundingReport(
        ok=token_grounded and list_language and not disallowed and verse_ref,
        token_hits=len(matched),
        required_hits=needed,
        matched_tokens=matched,
        entity_density=round(entity_density, 3),
        relaxed_for_list_or_dense=relaxed,
        list_heavy_keyword_hit=list_language,
        disallowed_phrase_hit=disallowed,
        verse_ref_hit=verse_ref,
    )
