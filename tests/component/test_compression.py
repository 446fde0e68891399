"""L2 Component Tests: progressive compression cycle."""

import pytest

from storymem.config import Settings
from storymem.core.errors import GatewayError
from storymem.memory.embeddings import EmbeddingIndex
from storymem.memory.lifecycle import LifecycleManager
from storymem.memory.types import CompressionLevel, MemoryStore, Page
from tests.fixtures.mock_llm import MockEmbedder, MockLLMClient

SUMMARY = "某人因为某事做了某个决定, 结果改变了关系。"


def _fresh_pages(n, start=0):
    return [
        Page(id=f"p{i}", title=f"页{i}", content="很长的原文" * 20, keywords=[f"k{i}"],
             created_at=1000 + i)
        for i in range(start, start + n)
    ]


def _summary_pages(n, start=0):
    return [
        Page(id=f"s{i}", title=f"摘{i}", content=SUMMARY, keywords=[f"s{i}"],
             compression_level=CompressionLevel.SUMMARY, created_at=500 + i)
        for i in range(start, start + n)
    ]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        compress_after_pages=5,
        archive_after_pages=4,
        max_timeline_entries=4,
    )


@pytest.fixture
def llm():
    client = MockLLMClient()
    client.set_default_response(SUMMARY)
    return client


@pytest.fixture
def lifecycle(llm, settings):
    return LifecycleManager(llm, settings)


class TestPageCompression:
    async def test_oldest_excess_compressed(self, lifecycle):
        store = MemoryStore(pages=_fresh_pages(8))
        store.pages.reverse()
        report = await lifecycle.run_cycle(store)

        assert report["compressed"] == 3
        levels = {p.id: p.compression_level for p in store.pages}
        assert [pid for pid, lvl in levels.items() if lvl == CompressionLevel.SUMMARY] == [
            "p2", "p1", "p0",
        ]
        assert len(store.pages_at(CompressionLevel.FRESH)) == 5
        for page in store.pages_at(CompressionLevel.FRESH):
            assert page.content == "很长的原文" * 20
        compressed = store.find_page("p0")
        assert compressed.content == SUMMARY
        assert compressed.compressed_at is not None

    async def test_at_ceiling_no_compression(self, lifecycle, llm):
        store = MemoryStore(pages=_fresh_pages(5))
        report = await lifecycle.run_cycle(store)
        assert report["compressed"] == 0
        assert llm.total_calls == 0

    async def test_failed_page_stays_fresh(self, lifecycle, llm):
        llm.preset_sequence([GatewayError("down"), "短"])
        store = MemoryStore(pages=_fresh_pages(8))
        report = await lifecycle.run_cycle(store)

        assert report == {"timeline_compacted": False, "compressed": 1, "failed": 2, "archived": 0}
        assert store.find_page("p0").compression_level == CompressionLevel.FRESH
        assert store.find_page("p1").compression_level == CompressionLevel.FRESH
        assert store.find_page("p2").compression_level == CompressionLevel.SUMMARY

    async def test_levels_never_regress(self, lifecycle):
        store = MemoryStore(pages=_fresh_pages(12))
        before = {}
        for _ in range(3):
            await lifecycle.run_cycle(store, force=True)
            for page in store.pages:
                assert page.compression_level >= before.get(page.id, CompressionLevel.FRESH)
                before[page.id] = page.compression_level

    async def test_disabled_unless_forced(self, llm):
        lifecycle = LifecycleManager(llm, Settings(_env_file=None, auto_compress=False,
                                                   compress_after_pages=1))
        store = MemoryStore(pages=_fresh_pages(3))
        assert (await lifecycle.run_cycle(store))["compressed"] == 0
        assert (await lifecycle.run_cycle(store, force=True))["compressed"] == 2


class TestArchiving:
    async def test_oldest_summaries_deleted_with_references(self, lifecycle, llm):
        store = MemoryStore(pages=_summary_pages(6))
        store.embeddings = {p.id: [1.0] for p in store.pages}
        store.recall_log = {"1": ["s0", "s5"], "2": ["s1"]}

        report = await lifecycle.run_cycle(store)

        assert report["archived"] == 2
        assert [p.id for p in store.pages] == ["s2", "s3", "s4", "s5"]
        assert set(store.embeddings) == {"s2", "s3", "s4", "s5"}
        assert store.recall_log == {"1": ["s5"]}
        assert llm.total_calls == 0

    async def test_persist_after_each_unit(self, lifecycle):
        store = MemoryStore(pages=_fresh_pages(7) + _summary_pages(5))
        saves = []
        await lifecycle.run_cycle(store, on_mutation=lambda: saves.append(len(store.pages)))
        # 2 compressions, then 7 summaries over a ceiling of 4 -> 3 archives
        assert len(saves) == 5
        assert len(store.pages_at(CompressionLevel.SUMMARY)) == 4


class TestTimelineCompaction:
    async def test_compacted_when_over_limit(self, lifecycle, llm):
        llm.preset_response("D1-D3: 早期\nD4: d\nD5: e")
        store = MemoryStore(timeline="\n".join(f"D{i}: e{i}" for i in range(1, 7)))
        report = await lifecycle.run_cycle(store)
        assert report["timeline_compacted"] is True
        assert store.timeline == "D1-D3: 早期\nD4: d\nD5: e"

    async def test_expansion_rejected(self, lifecycle, llm):
        original = "\n".join(f"D{i}: e{i}" for i in range(1, 7))
        llm.preset_response("\n".join(f"D{i}: longer" for i in range(1, 9)))
        store = MemoryStore(timeline=original)
        report = await lifecycle.run_cycle(store)
        assert report["timeline_compacted"] is False
        assert store.timeline == original

    async def test_under_limit_untouched(self, lifecycle, llm):
        store = MemoryStore(timeline="D1: a\nD2: b")
        await lifecycle.run_cycle(store)
        assert llm.total_calls == 0

    async def test_gateway_failure_keeps_original(self, lifecycle, llm):
        llm.preset_error()
        original = "\n".join(f"D{i}: e{i}" for i in range(1, 7))
        store = MemoryStore(timeline=original)
        await lifecycle.run_cycle(store)
        assert store.timeline == original


class TestReembedding:
    async def test_compressed_page_reembedded(self, llm, settings):
        embedder = MockEmbedder(axes=["原文", "决定"])
        lifecycle = LifecycleManager(llm, settings, EmbeddingIndex(embedder))
        store = MemoryStore(pages=_fresh_pages(6))
        store.embeddings = {p.id: [1.0, 0.0] for p in store.pages}

        await lifecycle.run_cycle(store)

        assert store.embeddings["p0"] == [0.0, 1.0]
        assert store.embeddings["p1"] == [1.0, 0.0]

    async def test_failed_reembed_drops_stale_vector(self, llm, settings):
        embedder = MockEmbedder(axes=["原文"])
        embedder.fail = True
        lifecycle = LifecycleManager(llm, settings, EmbeddingIndex(embedder))
        store = MemoryStore(pages=_fresh_pages(6))
        store.embeddings = {p.id: [1.0] for p in store.pages}

        await lifecycle.run_cycle(store)

        assert "p0" not in store.embeddings
        assert store.find_page("p0").compression_level == CompressionLevel.SUMMARY
