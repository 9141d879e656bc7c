# core/complexity.py
import re
from typing import Any, Dict, List
from core.entities import ComplexityAssessment
from model.chapter import ChapterPayload, Entity
from util.constants import (
    GENEALOGY_CUES,
    LIST_HEAVY_KEYWORDS,
    MAX_ALIASES_PER_ENTITY,
    MAX_ENTITIES_IN_PROMPT,
)
from util.enums import PayloadTier
from util.functions import fold_accents, round_half_up

_CONJUNCTION_LINE = re.compile(r"^\s*(?:and|e)\s+[^\W\d_]+", re.IGNORECASE)
_CONJUNCTION_LINES_FOR_LIST = 10


def _entity_sort_key(e: Entity):
    return (-e.verse_hits, e.canonical_name)


def sanitize_payload(payload: ChapterPayload) -> ChapterPayload:
    """
    Reduce a stored payload to what the oracle should see:
    - aliases trimmed and capped at MAX_ALIASES_PER_ENTITY
    - rich description wins over the plain one
    - entities re-sorted by verse hits, capped at MAX_ENTITIES_IN_PROMPT
    """
    entities: List[Entity] = []
    for e in payload.entities:
        aliases = tuple(a.strip() for a in e.aliases if a and a.strip())
        rich = (e.description_rich or "").strip() or None
        plain = (e.description or "").strip() or None
        entities.append(
            e.model_copy(
                update={
                    "aliases": aliases[:MAX_ALIASES_PER_ENTITY],
                    "description_rich": rich,
                    "description": None if rich else plain,
                }
            )
        )
    entities.sort(key=_entity_sort_key)
    return payload.model_copy(
        update={"entities": tuple(entities[:MAX_ENTITIES_IN_PROMPT])}
    )


def has_list_heavy_semantic_cue(verses_text: str) -> bool:
    """
    True for border/city/inheritance listings, genealogies, or many formulaic
    "and ..." lines. Joshua 15 and Genesis 10 pass; Genesis 1 does not.
    """
    normalized = fold_accents(verses_text)
    if not normalized.strip():
        return False

    if any(kw in normalized for kw in LIST_HEAVY_KEYWORDS):
        return True

    if any(rx.search(normalized) for rx in GENEALOGY_CUES):
        return True

    intro_lines = sum(
        1 for line in verses_text.splitlines() if _CONJUNCTION_LINE.match(line)
    )
    return intro_lines >= _CONJUNCTION_LINES_FOR_LIST


def compute_complexity(payload: ChapterPayload) -> ComplexityAssessment:
    verses = payload.verses
    verse_count = len(verses)
    total_chars = sum(len(v.text or "") for v in verses)
    avg_verse_chars = total_chars / verse_count if verse_count else 0.0
    entity_count = len(payload.entities)
    entity_density = entity_count / verse_count if verse_count else 0.0

    comma_heavy = sum(1 for v in verses if (v.text or "").count(",") >= 3)
    list_heavy_ratio = comma_heavy / verse_count if verse_count else 0.0
    semantic = has_list_heavy_semantic_cue("\n".join(v.text or "" for v in verses))

    score = 0
    if verse_count >= 40:
        score += 2
    elif verse_count >= 28:
        score += 1

    if total_chars >= 8000:
        score += 3
    elif total_chars >= 5000:
        score += 2
    elif total_chars >= 3000:
        score += 1

    if entity_count >= 20:
        score += 2
    elif entity_count >= 10:
        score += 1

    if entity_density >= 0.6:
        score += 2
    elif entity_density >= 0.35:
        score += 1

    if avg_verse_chars >= 170:
        score += 1
    if list_heavy_ratio >= 0.35:
        score += 1

    return ComplexityAssessment(
        score=score,
        verse_count=verse_count,
        total_chars=total_chars,
        avg_verse_chars=round_half_up(avg_verse_chars),
        entity_count=entity_count,
        entity_density=round(entity_density, 3),
        list_heavy_ratio=round(list_heavy_ratio, 3),
        list_heavy_semantic=semantic,
    )


def payload_tier_for_score(score: int) -> PayloadTier:
    if score < 4:
        return PayloadTier.FULL
    if score <= 5:
        return PayloadTier.NO_ALIASES
    return PayloadTier.NO_ALIASES_NO_MODERN


def payload_for_prompt(payload: ChapterPayload, tier: PayloadTier) -> Dict[str, Any]:
    """
    JSON-ready view of the payload for the prompt. Higher tiers drop aliases,
    then cross-links to modern places, to keep large chapters inside the context.
    """
    entities: List[Dict[str, Any]] = []
    for e in payload.entities:
        item: Dict[str, Any] = {
            "id": e.id,
            "canonical_name": e.canonical_name,
            "type": e.type,
            "verses_in_chapter": list(e.verses_in_chapter),
            "verse_hits": e.verse_hits,
        }
        if tier == PayloadTier.FULL:
            item["aliases"] = list(e.aliases)
        if e.description_rich:
            item["description_rich"] = e.description_rich
        elif e.description:
            item["description"] = e.description
        if e.modern is not None and tier != PayloadTier.NO_ALIASES_NO_MODERN:
            item["modern"] = {"name": e.modern.name}
        entities.append(item)

    return {
        "translation": payload.corpus,
        "book_id": payload.unit,
        "chapter": payload.chapter,
        "verses": [{"verse": v.verse, "ref": v.ref, "text": v.text} for v in payload.verses],
        "entities": entities,
    }


def choose_model(
    assessment: ComplexityAssessment,
    *,
    simple_model: str,
    complex_model: str,
    token_budget: int,
) -> tuple[str, int]:
    """
    Auto-model routing. List-heavy chapters stay on the simple model; dense
    narrative goes to the complex model with a larger token budget.
    """
    if assessment.list_heavy:
        return simple_model, token_budget
    if assessment.score >= 5:
        return complex_model, max(token_budget, 1000)
    return simple_model, token_budget
