# util/functions.py
import unicodedata


def count_words(text: str | None) -> int:
    return len((text or "").split())


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; policies expect .5 to round up.
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def fold_accents(value: str | None) -> str:
    """
    Lower-case and strip combining marks so "Herança" matches "heranca".
    """
    decomposed = unicodedata.normalize("NFD", (value or "").lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
