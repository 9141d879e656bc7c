# core/word_policy.py
from typing import Optional
from core.entities import WordPolicy
from model.chapter import ChapterPayload
from util.constants import (
    HARD_MAX_EXPLANATION_WORDS,
    MIN_EXPLANATION_WORDS_FLOOR,
    MIN_EXPLANATION_WORDS_FLOOR_LIST_HEAVY,
)
from util.functions import clamp, count_words, round_half_up

_EST_WORDS_PER_VERSE = 22
_EST_WORDS_PER_VERSE_LIST_HEAVY = 16


def target_words_for(chapter_words: int, list_heavy: bool) -> int:
    if list_heavy:
        return int(clamp(round_half_up(50 + 0.06 * chapter_words), 95, 165))
    return int(clamp(round_half_up(60 + 0.08 * chapter_words), 110, 190))


def estimate_word_policy(
    payload: ChapterPayload,
    *,
    list_heavy: bool = False,
    override_target: Optional[int] = None,
) -> WordPolicy:
    """
    Derive min/target/max explanation length from chapter size.

    promptTargetWords is what the prompt asks for; it sits at least 40 words
    above the floor so the oracle's usual undershoot still clears minWords.
    """
    chapter_words = sum(count_words(v.text) for v in payload.verses)
    estimated = False
    if chapter_words <= 0:
        per_verse = (
            _EST_WORDS_PER_VERSE_LIST_HEAVY if list_heavy else _EST_WORDS_PER_VERSE
        )
        chapter_words = max(1, len(payload.verses)) * per_verse
        estimated = True

    return word_policy_for(
        chapter_words,
        list_heavy=list_heavy,
        override_target=override_target,
        estimated=estimated,
    )


def word_policy_for(
    chapter_words: int,
    *,
    list_heavy: bool = False,
    override_target: Optional[int] = None,
    estimated: bool = False,
) -> WordPolicy:
    use_override = override_target is not None and override_target > 0
    if use_override:
        target = min(int(override_target), HARD_MAX_EXPLANATION_WORDS)
    else:
        target = target_words_for(chapter_words, list_heavy)

    floor = MIN_EXPLANATION_WORDS_FLOOR_LIST_HEAVY if list_heavy else MIN_EXPLANATION_WORDS_FLOOR
    min_words = max(floor, target - 40)
    # A tiny override would otherwise put the floor above the target and ceiling.
    max_words = min(HARD_MAX_EXPLANATION_WORDS, max(target + 40, min_words))
    target = int(clamp(target, min_words, max_words))
    prompt_target = min(HARD_MAX_EXPLANATION_WORDS, max(target, min_words + 40))

    return WordPolicy(
        chapter_words=chapter_words,
        chapter_words_estimated=estimated,
        target_words=target,
        prompt_target_words=prompt_target,
        min_words=min_words,
        max_words=max_words,
        list_heavy=list_heavy,
        target_mode="override" if use_override else "dynamic",
    )
