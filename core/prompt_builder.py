# core/prompt_builder.py
import json
import os
import re
from typing import Any, Dict, Optional
from core.entities import ComplexityAssessment, PromptContext, WordPolicy
from core.evaluators import sentence_bounds
from util.constants import HARD_MAX_EXPLANATION_WORDS

WORD_TARGET_PLACEHOLDER = "{{WORD_TARGET}}"
PAYLOAD_PLACEHOLDER = "{{CHAPTER_PAYLOAD_JSON}}"

_PROMPT_VERSION_RE = re.compile(r"^PROMPT_VERSION=(.+)$", re.MULTILINE)
_SCHEMA_VERSION_RE = re.compile(r"^SCHEMA_VERSION=(.+)$", re.MULTILINE)

LIST_HEAVY_NOTE = (
    "NOTE: This chapter is list-heavy (genealogies/descendants or places/borders/cities). "
    "Summarize the repeated listing collectively and explain what is being listed. "
    "Avoid inventing narrative events."
)

JSON_REPAIR_NOTE = (
    "IMPORTANT: Your previous response was invalid JSON. No extra text before/after JSON. "
    'Exactly one top-level key: "chapter_explanation".'
)

TRUNCATION_NOTE = (
    "IMPORTANT: Ensure the explanation is complete and ends with a full sentence. "
    "Output only valid JSON."
)

META_TALK_NOTE = (
    "IMPORTANT: Do NOT mention payload, dataset, JSON, arrays, objects, schema, fields, keys, "
    "input/output, provided data, or how the input is organized. Avoid framing like "
    '"the structure/format/pattern/each entry"; instead directly describe what the chapter says. '
    "Use concrete details from the verses and include verse refs like (v. 1, v. 13). "
    "Output valid JSON only."
)

_NO_INLINE_REFS = (
    'Do not write inline verse mentions like "in v. 3". '
    'Do not use book/chapter notation like "Genesis 10:10".'
)


def load_prompt(path: str, version_override: Optional[str] = None) -> PromptContext:
    """
    Read a template file. PROMPT_VERSION= / SCHEMA_VERSION= header lines are
    metadata and are removed from the template body.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Prompt file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    return parse_prompt(raw, path=path, version_override=version_override)


def parse_prompt(
    raw: str, *, path: Optional[str] = None, version_override: Optional[str] = None
) -> PromptContext:
    pv = _PROMPT_VERSION_RE.search(raw)
    sv = _SCHEMA_VERSION_RE.search(raw)
    template = _SCHEMA_VERSION_RE.sub("", _PROMPT_VERSION_RE.sub("", raw)).strip()
    if WORD_TARGET_PLACEHOLDER not in template:
        raise ValueError(f"Prompt template must include {WORD_TARGET_PLACEHOLDER} placeholder.")
    return PromptContext(
        template=template,
        prompt_version=version_override or (pv.group(1).strip() if pv else "v1"),
        schema_version=sv.group(1).strip() if sv else "v1",
        path=path,
    )


def render_prompt(template: str, payload: Dict[str, Any], word_target: int) -> str:
    if WORD_TARGET_PLACEHOLDER not in template:
        raise ValueError(f"Prompt template must include {WORD_TARGET_PLACEHOLDER} placeholder.")
    body = template.replace(WORD_TARGET_PLACEHOLDER, str(word_target))
    return body.replace(PAYLOAD_PLACEHOLDER, json.dumps(payload, indent=2, ensure_ascii=False), 1)


def build_chapter_prompt(
    template: str,
    payload: Dict[str, Any],
    word_target: int,
    assessment: Optional[ComplexityAssessment],
) -> str:
    base = render_prompt(template, payload, word_target)
    if assessment is not None and assessment.list_heavy:
        return f"{base}\n\n{LIST_HEAVY_NOTE}"
    return base


def with_note(prompt: str, note: str) -> str:
    """Corrections are appended to the ORIGINAL prompt; they never stack."""
    return f"{prompt}\n\n{note}"


# ---------------- Corrective notes ----------------


def _sentence_rule(list_heavy: bool) -> str:
    return "Use EXACTLY 3 sentences." if list_heavy else "Use BETWEEN 4 and 6 sentences."


def _aim_min(policy: WordPolicy, margin: int = 25) -> int:
    # Ask above the floor; the oracle tends to stop right at whatever minimum it is given.
    return min(policy.min_words + margin, policy.max_words)


def grounding_note(policy: WordPolicy) -> str:
    return (
        "IMPORTANT: Grounding check failed. Your previous explanation referenced events, people, "
        "or places NOT present in THIS chapter's verses, or drifted into themes from other chapters. "
        "Rewrite from scratch using ONLY the verses provided in this chapter. Do not describe events "
        f"from other chapters or books. Keep AT LEAST {_aim_min(policy)} words "
        f"(target {policy.target_words}). If needed, add one extra sentence with a concrete detail "
        "from these verses. Include exactly 2 verse references total in ONE parenthesized block, "
        'e.g. (v. 3-4, v. 24-28), and no other "(v." in the text. '
        f"{_NO_INLINE_REFS} End with the verse-reference block as the final characters of the output. "
        f"{_sentence_rule(policy.list_heavy)} No speculation: avoid possibly, likely, means, suggests. "
        "Output valid JSON only."
    )


def verbosity_note(policy: WordPolicy, *, strict: bool = False) -> str:
    aim = _aim_min(policy, margin=30)
    if strict:
        return (
            "IMPORTANT: Still too short. Rewrite from scratch with EXACTLY 6 full sentences and "
            f"{aim}-{policy.max_words} words. Every sentence must anchor to a concrete verse detail "
            "(named item, number, or specific action). Do not mention payload/format. "
            "Do not use semicolons. Output valid JSON only."
        )
    return (
        f"IMPORTANT: Your explanation is too short. Write EXACTLY 6 sentences totaling "
        f"{aim}-{policy.max_words} words. Each sentence must include at least one named "
        "person/place/object OR one explicit number/action from the verses. Do not use semicolons "
        "to cram multiple sentences. Include 1-3 verse refs like (v. 1, v. 13). Output valid JSON only."
    )


def wordcount_note(policy: WordPolicy) -> str:
    return (
        f"IMPORTANT: Keep the explanation between {policy.min_words} and {policy.max_words} words. "
        f"Do not exceed {HARD_MAX_EXPLANATION_WORDS}. Output only valid JSON."
    )


def sentence_count_note(policy: WordPolicy) -> str:
    lo, hi = sentence_bounds(policy.list_heavy)
    rule = (
        "Rewrite from scratch using EXACTLY 3 sentences."
        if policy.list_heavy
        else "Rewrite from scratch using BETWEEN 4 and 6 sentences."
    )
    return (
        f"IMPORTANT: Your previous answer had the wrong number of sentences (allowed {lo}-{hi}). "
        f"{rule} Include EXACTLY 2 verse references total using one parenthesized block "
        '(v. ..., v. ...), with no other "(v." anywhere. '
        f"{_NO_INLINE_REFS} End with the verse-reference block as the final characters of the output. "
        f"Keep between {_aim_min(policy)} and {policy.max_words} words. Output valid JSON only."
    )


def format_lock_note(policy: WordPolicy) -> str:
    return (
        "IMPORTANT: FORMAT LOCK. Rewrite from scratch. Include EXACTLY 2 verse references total in "
        'ONE parenthesized block, e.g. (v. 3-4, v. 24-28). Do not include any other "(v." anywhere '
        f"else in the text. {_NO_INLINE_REFS} The verse-reference block must be the final characters "
        f"of the output string. {_sentence_rule(policy.list_heavy)} Keep between "
        f"{_aim_min(policy)} and {policy.max_words} words. Output valid JSON only."
    )


def final_rescue_note(policy: WordPolicy) -> str:
    lo, hi = sentence_bounds(policy.list_heavy)
    return (
        f"IMPORTANT: Rewrite from scratch. Keep AT LEAST {policy.min_words} words "
        f"(target {policy.target_words}) and no more than {policy.max_words}. "
        f"{_sentence_rule(policy.list_heavy)} (never fewer than {lo} or more than {hi}). "
        "Use ONLY the verses of this chapter and name the people and places they mention. "
        "Do not mention payload, JSON, schema, arrays, fields, keys, or input/output. "
        'Include exactly 2 verse references total in ONE parenthesized block and no other "(v." '
        f"anywhere. {_NO_INLINE_REFS} The verse-reference block must be at the end and the text must "
        "end with a full sentence. Output valid JSON only."
    )
