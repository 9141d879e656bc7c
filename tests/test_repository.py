"""
Tests for the Redis-backed chapter and explanation stores, using an in-memory double.
"""

import pytest

from model.chapter import ChapterRef
from repository.chapter_repository import ChapterRepository
from repository.explanation_repository import ExplanationRepository
from repository.namespaces import EXPLANATION_INDEX, EXPLANATIONS
from util.enums import ConfidenceBand
from util.errors import PayloadError

from conftest import make_list_heavy_payload, make_narrative_payload, make_record


class TestChapterRepository:
    @pytest.mark.asyncio
    async def test_put_and_get(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        payload = make_narrative_payload()
        await repo.put_payload(payload)

        got = await repo.get_payload(ChapterRef(corpus="WEB", unit="GEN", chapter=22))
        assert got == payload

    @pytest.mark.asyncio
    async def test_missing_payload(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        assert await repo.get_payload(ChapterRef(corpus="WEB", unit="GEN", chapter=1)) is None

    @pytest.mark.asyncio
    async def test_corrupt_payload(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        fake_redis.kv["chapterexplainer:chapters:WEB:GEN:1"] = "{not json"
        with pytest.raises(PayloadError):
            await repo.get_payload(ChapterRef(corpus="WEB", unit="GEN", chapter=1))

    @pytest.mark.asyncio
    async def test_catalog_in_reading_order(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        await repo.put_payload(make_list_heavy_payload(chapter=15), unit_position=5)
        await repo.put_payload(make_narrative_payload(chapter=22), unit_position=0)
        await repo.put_payload(make_narrative_payload(chapter=3), unit_position=0)
        await repo.put_payload(make_list_heavy_payload(chapter=2), unit_position=5)

        refs = await repo.list_chapters("WEB")
        assert [(r.unit, r.chapter) for r in refs] == [("GEN", 3), ("GEN", 22), ("JOS", 2), ("JOS", 15)]

    @pytest.mark.asyncio
    async def test_unit_positions_are_remembered(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        assert await repo.unit_position("WEB", "GEN") == 0

        await repo.put_payload(make_narrative_payload(unit="GEN", chapter=1))
        await repo.put_payload(make_list_heavy_payload(unit="JOS", chapter=1), unit_position=5)

        assert await repo.unit_position("WEB", "GEN") == 0
        assert await repo.unit_position("WEB", "JOS") == 5
        assert await repo.unit_position("WEB", "RUT") == 6
        assert await repo.unit_position("KJV", "GEN") == 0

    @pytest.mark.asyncio
    async def test_catalog_filters(self, fake_redis):
        repo = ChapterRepository(fake_redis)
        for ch in (1, 2, 3):
            await repo.put_payload(make_narrative_payload(chapter=ch))
        await repo.put_payload(make_list_heavy_payload(), unit_position=1)

        assert [r.chapter for r in await repo.list_chapters("WEB", unit="GEN")] == [1, 2, 3]
        assert [r.chapter for r in await repo.list_chapters("WEB", unit="GEN", chapter=2)] == [2]
        assert len(await repo.list_chapters("WEB", limit=2)) == 2
        assert await repo.list_chapters("KJV") == []


class TestExplanationRepository:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent_per_key(self, fake_redis):
        """Rerunning a key overwrites the one document and its index entry."""
        repo = ExplanationRepository(fake_redis)
        await repo.upsert(make_record(status="error", band=None, errorText="boom"))
        await repo.upsert(make_record(durationMs=1234))

        docs = [k for k in fake_redis.kv if k.startswith(f"{EXPLANATIONS}:WEB:")]
        assert docs == [f"{EXPLANATIONS}:WEB:GEN:22:small:test-v1"]
        got = await repo.get("WEB", "GEN", 22, "small", "test-v1")
        assert got.status == "ready"
        assert got.durationMs == 1234
        assert got.errorText is None
        assert len(fake_redis.hashes[f"{EXPLANATION_INDEX}:WEB"]) == 1

    @pytest.mark.asyncio
    async def test_get_missing(self, fake_redis):
        assert await ExplanationRepository(fake_redis).get("WEB", "GEN", 1, "m", "v") is None

    @pytest.mark.asyncio
    async def test_ready_roster(self, fake_redis):
        repo = ExplanationRepository(fake_redis)
        await repo.upsert(make_record(chapter=1))
        await repo.upsert(make_record(chapter=2, status="error", band=None))
        await repo.upsert(make_record(chapter=3, model="big"))

        roster = await repo.ready_roster("WEB")
        assert roster == {("GEN", 1, "small", "test-v1"), ("GEN", 3, "big", "test-v1")}

    @pytest.mark.asyncio
    async def test_bad_index_entry_skipped(self, fake_redis):
        repo = ExplanationRepository(fake_redis)
        await repo.upsert(make_record(chapter=1))
        fake_redis.hashes[f"{EXPLANATION_INDEX}:WEB"]["junk"] = "{}"
        assert await repo.ready_roster("WEB") == {("GEN", 1, "small", "test-v1")}

    @pytest.mark.asyncio
    async def test_escalation_candidates(self, fake_redis):
        repo = ExplanationRepository(fake_redis)
        await repo.upsert(make_record(chapter=3, band=ConfidenceBand.LOW))
        await repo.upsert(make_record(chapter=1, band=ConfidenceBand.MEDIUM))
        await repo.upsert(make_record(chapter=2, status="error", band=None))
        await repo.upsert(make_record(chapter=4, band=ConfidenceBand.HIGH))
        await repo.upsert(make_record(chapter=5, model="big", band=ConfidenceBand.LOW))

        low = await repo.escalation_candidates("WEB", source_model="small", bands={ConfidenceBand.LOW})
        assert [e.chapter for e in low] == [2, 3]

        wider = await repo.escalation_candidates(
            "WEB", source_model="small", bands={ConfidenceBand.LOW, ConfidenceBand.MEDIUM}
        )
        assert [e.chapter for e in wider] == [1, 2, 3]

        other_prompt = await repo.escalation_candidates(
            "WEB", source_model="small", bands={ConfidenceBand.LOW}, prompt_version="v9"
        )
        assert other_prompt == []
