import re
from typing import Final

# Hard ceiling for any explanation, whatever the chapter size.
HARD_MAX_EXPLANATION_WORDS: Final[int] = 260
MIN_EXPLANATION_WORDS_FLOOR: Final[int] = 80
MIN_EXPLANATION_WORDS_FLOOR_LIST_HEAVY: Final[int] = 70
MAX_ALIASES_PER_ENTITY: Final[int] = 2
MAX_ENTITIES_IN_PROMPT: Final[int] = 80
GROUNDING_TOKEN_LIMIT: Final[int] = 16

# Borders / cities / inheritance. Used for list-heavy detection and for the
# list-heavy vocabulary check in grounding. Matched against accent-folded text.
LIST_HEAVY_KEYWORDS: Final[tuple[str, ...]] = (
    "border",
    "borders",
    "boundary",
    "boundaries",
    "city",
    "cities",
    "town",
    "towns",
    "inheritance",
    "allotment",
    "territory",
    "settlement",
    "settlements",
    "fronteira",
    "fronteiras",
    "cidade",
    "cidades",
    "heranca",
    "territorio",
    "territorios",
)

GENEALOGY_KEYWORDS: Final[tuple[str, ...]] = (
    "begat",
    "genealogy",
    "generations",
    "descendant",
    "descendants",
    "sons",
    "sons of",
    "father",
    "lived",
    "years",
    "geracoes",
    "geracao",
    "descendentes",
    "filhos",
    "filhos de",
    "pai",
    "anos",
)

GENEALOGY_CUES: Final[tuple[re.Pattern, ...]] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bbegat\b",
        r"\bgenealogy\b",
        r"\bgenerations\b",
        r"\bdescendants?\b",
        r"\bsons of\b",
        r"\bthese are the sons of\b",
        r"\baccording to their families\b",
        r"\bby their clans\b",
        r"\bby their tongues\b",
        r"\bby their languages\b",
        r"\bgeracoes\b",
        r"\bdescendentes\b",
        r"\bfilhos de\b",
        r"\bsegundo as suas familias\b",
        r"\bsegundo as suas linguas\b",
    )
)

# Structural nouns that anchor border/city/allotment chapters even without names.
STRUCTURAL_GROUNDING_TOKENS: Final[tuple[str, ...]] = (
    "border",
    "borders",
    "boundary",
    "boundaries",
    "city",
    "cities",
    "inheritance",
    "allotment",
    "territory",
    "settlement",
    "settlements",
    "fronteira",
    "fronteiras",
    "cidade",
    "cidades",
    "heranca",
    "herancas",
    "territorio",
    "territorios",
    "limite",
    "limites",
    "divisa",
    "divisas",
    "lote",
    "lotes",
)

# Narrative the oracle tends to invent for allotment chapters (Joshua 13-21).
UNGROUNDED_LIST_HEAVY_PHRASES: Final[tuple[re.Pattern, ...]] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"joshua['’]?s leadership",
        r"\bunity under joshua\b",
        r"levitical priests?",
        r"\bpriests?\s+maintaining\s+order\b",
        r"\bpriestly duties\b",
        r"\bprepare(?:d|s|ing)?\s+for\s+(?:the\s+)?(?:conquest|campaign)\b",
        r"\bpreparing for conquest\b",
        r"\bpreparing for campaign\b",
        r"\bdivine assurance\b",
        r"\bgod['’]?s presence(?:\s+with\s+them)?\b",
        r"\bpresence of god\b",
        r"cross(?:ing)?\s+the\s+jordan",
        r"\bark\s+of\s+the\s+covenant\b",
        r"\bspiritual order before the campaign\b",
    )
)

TOKEN_STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "the",
        "and",
        "for",
        "with",
        "from",
        "into",
        "unto",
        "that",
        "this",
        "these",
        "those",
        "they",
        "their",
        "them",
        "his",
        "her",
        "its",
        "was",
        "were",
        "are",
        "had",
        "have",
        "has",
        "not",
        "but",
        "you",
        "your",
        "shall",
        "will",
        "then",
        "when",
        "where",
        "which",
        "each",
        "every",
        "among",
        "also",
        "chapter",
        "verse",
        "verses",
    }
)

HEDGING_WORDS_RE: Final[re.Pattern] = re.compile(
    r"\b(?:possibly|likely|means|suggests)\b", re.IGNORECASE
)
