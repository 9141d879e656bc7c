# repository/explanation_repository.py
from typing import Collection, Final, List, Optional, Set, Tuple
from pydantic import ValidationError
from redis.asyncio import Redis
from config.cache import get_redis
from model.explanation import ExplanationRecord, RecordIndexEntry
from repository.namespaces import EXPLANATION_INDEX, EXPLANATIONS
from util.enums import ConfidenceBand
import logging

logger = logging.getLogger(__name__)

KEY_PREFIX: Final[str] = EXPLANATIONS

# (unit, chapter, model, promptVersion)
RosterKey = Tuple[str, int, str, str]


class ExplanationRepository:
    """
    Flow:
    - One JSON document per (corpus, unit, chapter, model, promptVersion); reruns overwrite.
    - A per-corpus hash mirrors each record's status/band so a run can read the
      ready roster, or pick escalation candidates, without loading every document.
    - Both writes go out in one MULTI/EXEC so the index never disagrees with the record.
    """

    def __init__(self, client: Optional[Redis] = None) -> None:
        self._redis = client

    async def _client(self) -> Redis:
        return self._redis if self._redis is not None else await get_redis()

    @staticmethod
    def _field(unit: str, chapter: int, model: str, prompt_version: str) -> str:
        return f"{unit}:{chapter}:{model}:{prompt_version}"

    @classmethod
    def _key(cls, corpus: str, unit: str, chapter: int, model: str, prompt_version: str) -> str:
        return f"{KEY_PREFIX}:{corpus}:{cls._field(unit, chapter, model, prompt_version)}"

    @staticmethod
    def _index_key(corpus: str) -> str:
        return f"{EXPLANATION_INDEX}:{corpus}"

    async def upsert(self, record: ExplanationRecord) -> None:
        entry = RecordIndexEntry(
            unit=record.unit,
            chapter=record.chapter,
            model=record.model,
            promptVersion=record.promptVersion,
            status=record.status,
            band=record.band,
        )
        r = await self._client()
        async with r.pipeline(transaction=True) as pipe:
            await (
                pipe.set(
                    self._key(record.corpus, record.unit, record.chapter, record.model, record.promptVersion),
                    record.model_dump_json(),
                )
                .hset(
                    self._index_key(record.corpus),
                    self._field(record.unit, record.chapter, record.model, record.promptVersion),
                    entry.model_dump_json(),
                )
                .execute()
            )

    async def get(
        self, corpus: str, unit: str, chapter: int, model: str, prompt_version: str
    ) -> Optional[ExplanationRecord]:
        r = await self._client()
        raw = await r.get(self._key(corpus, unit, chapter, model, prompt_version))
        if raw is None:
            return None
        return ExplanationRecord.model_validate_json(raw)

    async def _entries(self, corpus: str) -> List[RecordIndexEntry]:
        r = await self._client()
        h = await r.hgetall(self._index_key(corpus))
        out: List[RecordIndexEntry] = []
        for field, value in h.items():
            try:
                out.append(RecordIndexEntry.model_validate_json(value))
            except ValidationError:
                logger.warning("explanations.index.bad_entry corpus=%s field=%s", corpus, field)
        return out

    async def ready_roster(self, corpus: str) -> Set[RosterKey]:
        """Keys already stored as ready; read once at the start of a run."""
        return {
            (e.unit, e.chapter, e.model, e.promptVersion)
            for e in await self._entries(corpus)
            if e.status == "ready"
        }

    async def escalation_candidates(
        self,
        corpus: str,
        *,
        source_model: str,
        bands: Collection[ConfidenceBand],
        prompt_version: Optional[str] = None,
    ) -> List[RecordIndexEntry]:
        """Records of `source_model` that errored or landed in one of `bands`."""
        picked = [
            e
            for e in await self._entries(corpus)
            if e.model == source_model
            and (prompt_version is None or e.promptVersion == prompt_version)
            and (e.status == "error" or e.band in bands)
        ]
        return sorted(picked, key=lambda e: (e.unit, e.chapter))
