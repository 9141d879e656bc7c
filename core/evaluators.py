# core/evaluators.py
import re
from typing import Optional
from core import citations
from core.entities import (
    CitationReport,
    MetaTalkReport,
    QualityReport,
    SentenceReport,
    TruncationReport,
)
from core.grounding import GroundingTokenizer, evaluate_grounding
from model.chapter import ChapterPayload
from util.functions import count_words

_META_TERMS = r"json|payload|dataset|schema|array|object|fields?|keys?|input|output"

# Order matters only for the reported hit list.
_META_TALK_CHECKS: tuple[tuple[str, re.Pattern], ...] = tuple(
    (key, re.compile(rx, re.IGNORECASE))
    for key, rx in (
        ("json", r"\bjson\b"),
        ("payload", r"\bpayload\b"),
        ("dataset", r"\bdataset\b"),
        ("schema", r"\bschema\b"),
        ("array", r"\barray\b"),
        ("object", r"\bobject\b"),
        ("fields", r"\bfields?\b"),
        ("keys", r"\bkeys?\b"),
        ("input_output", r"\b(?:input|output)\b"),
        ("provided_data", r"\bprovided\s+data\b"),
        ("response_describes", r"\bresponse\s+describes\b"),
        ("chapter_payload", r"\bchapter\s+payload\b"),
        ("verses_array_list", r"\bverses?\s+(?:array|list)\b"),
        ("entities_array_list", r"\bentities?\s+(?:array|list)\b"),
        ("contains_data_about", r"\bcontains\s+data\s+about\b"),
        # structure words only count when tied to a meta term
        (
            "meta_structure_framing",
            rf"\b(?:structure|format|entries?|entry)\b[\s\S]{{0,40}}\b(?:{_META_TERMS})\b",
        ),
        (
            "meta_structure_framing_reverse",
            rf"\b(?:{_META_TERMS})\b[\s\S]{{0,40}}\b(?:structure|format|entries?|entry)\b",
        ),
    )
)

_TERMINAL_PUNCT_RE = re.compile(r"[.!?][\"')\]’”]*$")
_OPEN_CITATION_RE = re.compile(r"\(v\.\s*$|\($", re.IGNORECASE)


def evaluate_meta_talk(explanation: str) -> MetaTalkReport:
    text = explanation or ""
    hits = [key for key, rx in _META_TALK_CHECKS if rx.search(text)]
    return MetaTalkReport(ok=not hits, hits=hits)


def evaluate_truncation(explanation: str) -> TruncationReport:
    text = (explanation or "").strip()
    if not text:
        return TruncationReport(ok=True)
    if _OPEN_CITATION_RE.search(text):
        return TruncationReport(ok=False, reason="ends_mid_citation")
    if not _TERMINAL_PUNCT_RE.search(text):
        return TruncationReport(ok=False, reason="no_terminal_punctuation")
    return TruncationReport(ok=True)


def sentence_bounds(list_heavy: bool) -> tuple[int, int]:
    return (2, 5) if list_heavy else (3, 7)


def count_sentences(explanation: str) -> int:
    cleaned = citations.strip_citations_for_counting(explanation)
    return len([p for p in re.split(r"[.!?]+", cleaned) if p.strip()])


def evaluate_sentence_count(explanation: str, *, list_heavy: bool = False) -> SentenceReport:
    lo, hi = sentence_bounds(list_heavy)
    n = count_sentences(explanation)
    return SentenceReport(ok=lo <= n <= hi, sentence_count=n, min=lo, max=hi)


def evaluate_citation_format(explanation: str) -> CitationReport:
    text = (explanation or "").strip()
    block = citations.final_block(text)
    ref_count = len(citations.find_anchors(block)) if block else 0
    inline = citations.has_inline_mention(citations.text_before_final_block(text))
    book_cv = citations.has_book_chapter_verse(text)
    block_count = len(citations.find_blocks(text))
    return CitationReport(
        ok=block_count == 1
        and block is not None
        and ref_count == 2
        and not inline
        and not book_cv,
        block_count=block_count,
        final_block_at_end=block is not None,
        verse_ref_count=ref_count,
        inline_verse_outside_final_block=inline,
        book_chapter_verse_hit=book_cv,
    )


def evaluate_all(
    explanation: str,
    payload: ChapterPayload,
    *,
    list_heavy: bool = False,
    tokenizer: Optional[GroundingTokenizer] = None,
) -> QualityReport:
    return QualityReport(
        meta_talk=evaluate_meta_talk(explanation),
        truncation=evaluate_truncation(explanation),
        sentences=evaluate_sentence_count(explanation, list_heavy=list_heavy),
        citations=evaluate_citation_format(explanation),
        grounding=evaluate_grounding(
            explanation, payload, list_heavy=list_heavy, tokenizer=tokenizer
        ),
        word_count=count_words(explanation),
    )
