# model/chapter.py
from pydantic import BaseModel, ConfigDict, Field


class Verse(BaseModel):
    model_config = ConfigDict(frozen=True)

    verse: int
    ref: str | None = None
    text: str = ""


class ModernPlace(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    canonical_name: str
    type: str | None = None
    aliases: tuple[str, ...] = ()
    verse_hits: int = 0
    verses_in_chapter: tuple[int, ...] = ()
    description: str | None = None
    description_rich: str | None = None
    modern: ModernPlace | None = None


class ChapterPayload(BaseModel):
    """
    Everything the oracle sees about one chapter.
    Entities are ordered by verse_hits desc, then name.
    """

    model_config = ConfigDict(frozen=True)

    corpus: str
    unit: str
    chapter: int = Field(gt=0)
    verses: tuple[Verse, ...] = ()
    entities: tuple[Entity, ...] = ()

    @property
    def verse_count(self) -> int:
        return len(self.verses)

    @property
    def entity_count(self) -> int:
        return len(self.entities)


class ChapterRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    corpus: str
    unit: str
    chapter: int

    @property
    def label(self) -> str:
        return f"{self.unit} {self.chapter}"
