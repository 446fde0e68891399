"""L2 Component Tests: RetrievalEngine tier chain."""

import pytest

from storymem.config import Settings
from storymem.memory.embeddings import EmbeddingIndex
from storymem.memory.recall_agent import RetrievalAgent
from storymem.memory.retrieval import RetrievalEngine, recent_window
from storymem.memory.types import ChatMessage, MemoryStore, NPCDossier, Page
from tests.fixtures.mock_llm import MockEmbedder, MockLLMClient, MockResponse, tool_call


def _msgs(*texts):
    return [ChatMessage(name="user", text=t) for t in texts]


def _store():
    return MemoryStore(
        timeline="D1: A met B\nD2: B betrayed A",
        pages=[
            Page(id="p1", day="D1", title="Meeting", content="A met B at the inn.",
                 keywords=["inn", "meeting"]),
            Page(id="p2", day="D2", title="Betrayal", content="B sold A out to the guards.",
                 keywords=["betrayal", "guards"], characters=["Brann"], significance="high"),
            Page(id="p3", day="D2", title="Escape", content="A fled through the sewers.",
                 keywords=["sewers", "guards"]),
        ],
        characters=[NPCDossier(name="Brann", attitude="traitor")],
    )


@pytest.fixture
def settings():
    return Settings(_env_file=None, max_pages=2, recent_window=3, embedding_top_k=2)


class TestRecentWindow:
    def test_skips_system_and_blank(self):
        msgs = _msgs("one", "two") + [ChatMessage(name="sys", text="x", is_system=True)]
        msgs += _msgs("   ", "three")
        assert [m.text for m in recent_window(msgs, 2)] == ["two", "three"]

    def test_zero_size(self):
        assert recent_window(_msgs("a"), 0) == []


class TestTierChain:
    async def test_keyword_fallback_without_gateway(self, settings):
        llm = MockLLMClient(available=False)
        engine = RetrievalEngine(settings, None, RetrievalAgent(llm))
        result = await engine.retrieve(_store(), _msgs("Remember the betrayal?"))

        assert result.tier == "keyword"
        assert [p.id for p in result.pages] == ["p2"]
        assert [c.name for c in result.characters] == ["Brann"]
        assert llm.total_calls == 0

    async def test_agent_result_preferred(self, settings):
        llm = MockLLMClient()
        llm.preset_response(MockResponse(tool_calls=[tool_call("recall_story_page", page_id="p1")]))
        engine = RetrievalEngine(settings, None, RetrievalAgent(llm))
        result = await engine.retrieve(_store(), _msgs("Remember the betrayal?"))
        assert result.tier == "agent"
        assert [p.id for p in result.pages] == ["p1"]

    async def test_empty_agent_falls_back_to_keywords(self, settings):
        engine = RetrievalEngine(settings, None, RetrievalAgent(MockLLMClient()))
        result = await engine.retrieve(_store(), _msgs("the guards again"))
        assert result.tier == "keyword"
        assert [p.id for p in result.pages] == ["p2", "p3"]

    async def test_nothing_found(self, settings):
        engine = RetrievalEngine(settings, None, None)
        result = await engine.retrieve(_store(), _msgs("lovely weather"))
        assert result.tier == "none"
        assert result.empty

    async def test_empty_store_or_window(self, settings):
        llm = MockLLMClient()
        engine = RetrievalEngine(settings, None, RetrievalAgent(llm))
        assert (await engine.retrieve(MemoryStore(), _msgs("betrayal"))).tier == "none"
        assert (await engine.retrieve(_store(), [])).tier == "none"
        assert llm.total_calls == 0

    async def test_store_not_modified(self, settings):
        store = _store()
        before = store.to_dict()
        engine = RetrievalEngine(settings, None, None)
        await engine.retrieve(store, _msgs("betrayal"))
        assert store.to_dict() == before


class TestPreFilter:
    async def test_candidates_narrow_agent_catalog(self, settings):
        store = _store()
        index = EmbeddingIndex(MockEmbedder(["inn", "betray", "sewers"]))
        await index.sync(store)
        llm = MockLLMClient()
        engine = RetrievalEngine(settings.model_copy(update={"embedding_top_k": 1}),
                                 index, RetrievalAgent(llm))

        await engine.retrieve(store, _msgs("back at the inn"))

        page_tool = next(t for t in llm.last_call["tools"] if t.name == "recall_story_page")
        assert page_tool.input_schema["properties"]["page_id"]["enum"] == ["p1"]

    async def test_prefilter_failure_uses_full_catalog(self, settings):
        store = _store()
        embedder = MockEmbedder(["inn"])
        index = EmbeddingIndex(embedder)
        await index.sync(store)
        embedder.fail = True
        llm = MockLLMClient()
        engine = RetrievalEngine(settings, index, RetrievalAgent(llm))

        await engine.retrieve(store, _msgs("back at the inn"))

        page_tool = next(t for t in llm.last_call["tools"] if t.name == "recall_story_page")
        assert page_tool.input_schema["properties"]["page_id"]["enum"] == ["p1", "p2", "p3"]


class TestCaps:
    async def test_agent_over_selection_is_capped(self, settings):
        store = _store()
        store.characters += [NPCDossier(name="Cass"), NPCDossier(name="Dorn")]
        llm = MockLLMClient()
        llm.preset_response(MockResponse(tool_calls=[
            tool_call("recall_story_page", page_id=p) for p in ("p1", "p2", "p3")
        ] + [tool_call("recall_character", name=n) for n in ("Brann", "Cass", "Dorn")]))
        engine = RetrievalEngine(settings, None, RetrievalAgent(llm))

        result = await engine.retrieve(store, _msgs("hello there"))

        assert len(result.pages) == 2
        assert len(result.characters) == 2
