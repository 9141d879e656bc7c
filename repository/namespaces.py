# repository/namespaces.py
from typing import Final

ROOT: Final[str] = "chapterexplainer"

CHAPTERS: Final[str] = f"{ROOT}:chapters"  # payload JSON per corpus:unit:chapter
CATALOG: Final[str] = f"{ROOT}:catalog"  # per-corpus sorted set in reading order, plus a unit position hash
EXPLANATIONS: Final[str] = f"{ROOT}:explanations"
EXPLANATION_INDEX: Final[str] = f"{EXPLANATIONS}:index"  # per-corpus status hash
