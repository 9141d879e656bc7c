# repository/chapter_repository.py
from typing import Final, List, Optional
from redis.asyncio import Redis
from config.cache import get_redis
from model.chapter import ChapterPayload, ChapterRef
from repository.namespaces import CATALOG, CHAPTERS
from util.errors import PayloadError

KEY_PREFIX: Final[str] = CHAPTERS

# Catalog score = unit position * UNIT_STRIDE + chapter
UNIT_STRIDE: Final[int] = 1000


class ChapterRepository:
    """
    Read side of the pipeline. Payloads are assembled upstream (verses plus
    entity mentions) and imported with put_payload; the catalog keeps every
    chapter of a corpus in reading order so runs walk the corpus front to back.

    A unit's position is stored once per corpus and reused by later imports,
    so loading a corpus across several files keeps the order of first sight.
    """

    def __init__(self, client: Optional[Redis] = None) -> None:
        self._redis = client

    async def _client(self) -> Redis:
        return self._redis if self._redis is not None else await get_redis()

    @staticmethod
    def _key(corpus: str, unit: str, chapter: int) -> str:
        return f"{KEY_PREFIX}:{corpus}:{unit}:{chapter}"

    @staticmethod
    def _catalog_key(corpus: str) -> str:
        return f"{CATALOG}:{corpus}"

    @staticmethod
    def _units_key(corpus: str) -> str:
        return f"{CATALOG}:{corpus}:units"

    async def unit_position(self, corpus: str, unit: str) -> int:
        """Stored position of `unit`, or the next free one for a unit not seen yet."""
        r = await self._client()
        positions = await r.hgetall(self._units_key(corpus))
        if unit in positions:
            return int(positions[unit])
        return max((int(p) for p in positions.values()), default=-1) + 1

    async def put_payload(self, payload: ChapterPayload, *, unit_position: Optional[int] = None) -> None:
        r = await self._client()
        if unit_position is None:
            unit_position = await self.unit_position(payload.corpus, payload.unit)
        score = unit_position * UNIT_STRIDE + payload.chapter
        async with r.pipeline(transaction=True) as pipe:
            await (
                pipe.set(
                    self._key(payload.corpus, payload.unit, payload.chapter),
                    payload.model_dump_json(),
                )
                .hset(self._units_key(payload.corpus), payload.unit, str(unit_position))
                .zadd(
                    self._catalog_key(payload.corpus),
                    {f"{payload.unit}:{payload.chapter}": score},
                )
                .execute()
            )

    async def get_payload(self, ref: ChapterRef) -> Optional[ChapterPayload]:
        r = await self._client()
        raw = await r.get(self._key(ref.corpus, ref.unit, ref.chapter))
        if raw is None:
            return None
        try:
            return ChapterPayload.model_validate_json(raw)
        except ValueError as e:
            raise PayloadError(f"Stored payload for {ref.label} is invalid: {e}") from e

    async def list_chapters(
        self,
        corpus: str,
        *,
        unit: Optional[str] = None,
        chapter: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ChapterRef]:
        r = await self._client()
        members = await r.zrange(self._catalog_key(corpus), 0, -1)
        out: List[ChapterRef] = []
        for member in members:
            unit_id, _, num = str(member).rpartition(":")
            if not unit_id or not num.isdigit():
                continue
            if unit is not None and unit_id != unit:
                continue
            if chapter is not None and int(num) != chapter:
                continue
            out.append(ChapterRef(corpus=corpus, unit=unit_id, chapter=int(num)))
            if limit is not None and len(out) >= limit:
                break
        return out
