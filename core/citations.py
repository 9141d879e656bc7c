# core/citations.py
"""
Verse-reference handling.

Accepted shape: exactly one parenthesized block with two anchors as the last
thing in the text, e.g. "... east of Eden (v. 3-4, v. 24-28)."

`consolidate_verse_refs` is the deterministic (non-oracle) repair. It runs
before any format retry and again after, since regenerations can regress the
formatting.
"""

import re
from typing import List, Optional

BLOCK_RE = re.compile(r"\(\s*v\.\s*[^)]+\)", re.IGNORECASE)
ANCHOR_RE = re.compile(r"\bv\.\s*\d[\d\-–]*", re.IGNORECASE)
FINAL_BLOCK_RE = re.compile(r"(\(\s*v\.\s*[^)]+\))\.?\s*$", re.IGNORECASE)
# "v. 9", "vv. 3-5", "verse 9", "verses 3-5" outside a block.
INLINE_MENTION_RE = re.compile(r"\b(?:vv?\.|verses?)\s*\d[\d\-–]*", re.IGNORECASE)
# "Genesis 10:10", "Gen. 10:10", "1 Kings 2:3".
BOOK_CHAPTER_VERSE_RE = re.compile(
    r"\b(?:[1-3]\s+)?[A-Za-z]{2,}\.?\s+\d{1,3}:\d{1,3}(?:[-–]\d{1,3})?\b"
)

_LEADING_PREPOSITION = r"(?:\b(?:in|at|from|see|cf\.)\s+)?"
_STRIP_INLINE_RE = re.compile(
    _LEADING_PREPOSITION + INLINE_MENTION_RE.pattern, re.IGNORECASE
)
_STRIP_BOOK_CV_RE = re.compile(
    _LEADING_PREPOSITION + BOOK_CHAPTER_VERSE_RE.pattern, re.IGNORECASE
)
_STRIP_BLOCK_RE = re.compile(r"\s*\(\s*v\.\s*[^)]+\)", re.IGNORECASE)
_TERMINAL_RE = re.compile(r"([.!?])$")


def find_blocks(text: str) -> List[str]:
    return BLOCK_RE.findall(text or "")


def find_anchors(text: str) -> List[str]:
    return ANCHOR_RE.findall(text or "")


def final_block(text: str) -> Optional[str]:
    m = FINAL_BLOCK_RE.search((text or "").strip())
    return m.group(1) if m else None


def text_before_final_block(text: str) -> str:
    trimmed = (text or "").strip()
    m = FINAL_BLOCK_RE.search(trimmed)
    return trimmed[: m.start()].strip() if m else trimmed


def has_inline_mention(text: str) -> bool:
    return INLINE_MENTION_RE.search(text or "") is not None


def has_book_chapter_verse(text: str) -> bool:
    return BOOK_CHAPTER_VERSE_RE.search(text or "") is not None


def is_canonical(text: str) -> bool:
    """One block, at the end, two anchors, no other citation-like mention."""
    trimmed = (text or "").strip()
    block = final_block(trimmed)
    if block is None or len(find_blocks(trimmed)) != 1:
        return False
    if len(find_anchors(block)) != 2:
        return False
    before = text_before_final_block(trimmed)
    return not has_inline_mention(before) and not has_book_chapter_verse(trimmed)


def strip_citations_for_counting(text: str) -> str:
    out = text or ""
    out = re.sub(r",?\s*\(\s*v\.\s*[^)]*\)\s*,?", " ", out, flags=re.IGNORECASE)
    out = re.sub(r"\bvv?\.\s*\d[\d\s,\-–]*", " ", out, flags=re.IGNORECASE)
    out = re.sub(r"\(\s*\)", "", out)
    # ". ." left behind when a block sat between two sentence ends
    out = re.sub(r"([.!?])\s+([.!?])", r"\1", out)
    out = re.sub(r"\s{2,}", " ", out)
    return out.strip()


def _anchor_key(anchor: str) -> str:
    return re.sub(r"\s", "", anchor).lower()


def _canonical_anchor(anchor: str) -> str:
    return re.sub(r"^v\.\s*", "v. ", anchor.strip(), flags=re.IGNORECASE)


def _tidy(text: str) -> str:
    out = re.sub(r"\(\s*\)", "", text)
    out = re.sub(r"\s{2,}", " ", out)
    out = re.sub(r"\s+([.,;:!?])", r"\1", out)
    out = re.sub(r",\s*,", ",", out)
    out = re.sub(r"[,;:]\s*([.!?])", r"\1", out)
    # "south., Abram" once a leading "In v. 9," has been removed
    out = re.sub(r"([.!?])[,;:]\s*", r"\1 ", out)
    out = re.sub(r"^[,;:\s]+", "", out)
    return re.sub(r"\s{2,}", " ", out).strip()


def consolidate_verse_refs(text: str) -> str:
    """
    Rewrite citations so the text ends with exactly one two-anchor block.

    - no-op when the text is already canonical or carries no anchors at all
    - anchors are gathered from every parenthesized block in document order
      (falling back to inline anchors when there is no block), deduplicated,
      and reduced to first + last when more than two remain
    - every original block, inline "v. N"-style mention and "Book C:V"
      mention is removed from the body
    - the new block goes right before the final terminal punctuation, which
      is appended when missing
    """
    source = (text or "").strip()
    if not source or is_canonical(source):
        return source

    anchors: List[str] = []
    for block in find_blocks(source):
        anchors.extend(find_anchors(block))
    if not anchors:
        anchors = find_anchors(source)
    if not anchors:
        return source

    seen: set[str] = set()
    unique: List[str] = []
    for a in anchors:
        key = _anchor_key(a)
        if key in seen:
            continue
        seen.add(key)
        unique.append(_canonical_anchor(a))
    chosen = unique if len(unique) <= 2 else [unique[0], unique[-1]]
    consolidated = f"({', '.join(chosen)})"

    base = _STRIP_BLOCK_RE.sub("", source)
    base = _STRIP_INLINE_RE.sub("", base)
    base = _STRIP_BOOK_CV_RE.sub("", base)
    base = _tidy(base)

    if _TERMINAL_RE.search(base):
        return _TERMINAL_RE.sub(lambda m: f" {consolidated}{m.group(1)}", base)
    return f"{base} {consolidated}."
