"""L1 Unit Tests: retrieval tool palette and local search handler."""

from storymem.memory.types import KnownCharacterAttitude, NPCDossier, Page
from storymem.tools.definitions.recall import (
    DIRECT_FETCH_TOOLS,
    SEARCH_TOOLS,
    build_recall_tools,
)
from storymem.tools.handlers.recall import RecallSearchHandler


def _pages():
    return [
        Page(id="p1", day="D1", title="初遇", content="在酒馆相遇", keywords=["酒馆", "Lyra"],
             characters=["Lyra"], categories=["relationship"]),
        Page(id="p2", day="D2", title="争吵", content="为了地图争吵", keywords=["地图"],
             categories=["conflict"]),
        Page(id="p3", day="D2", title="和解", content="Kai 道歉", keywords=["Kai", "道歉"],
             characters=["Kai"], categories=["conflict", "emotional"]),
    ]


def _characters():
    return [NPCDossier(name="Lyra", attitude="从戒备到信任"), NPCDossier(name="Kai", attitude="敌对")]


def _by_name(tools):
    return {t.name: t for t in tools}


class TestBuildRecallTools:
    def test_live_enums(self):
        tools = _by_name(build_recall_tools(_pages(), _characters()))
        page_enum = tools["recall_story_page"].input_schema["properties"]["page_id"]["enum"]
        assert page_enum == ["p1", "p2", "p3"]
        assert tools["recall_character"].input_schema["properties"]["name"]["enum"] == ["Lyra", "Kai"]
        assert tools["search_by_category"].input_schema["properties"]["category"]["enum"] == [
            "emotional", "relationship", "conflict",
        ]
        assert tools["search_by_day"].input_schema["properties"]["day"]["enum"] == ["D1", "D2"]
        assert set(tools) == DIRECT_FETCH_TOOLS | SEARCH_TOOLS

    def test_direct_only(self):
        tools = build_recall_tools(_pages(), _characters(), include_search=False)
        assert {t.name for t in tools} == DIRECT_FETCH_TOOLS

    def test_enum_does_not_leak_between_builds(self):
        build_recall_tools(_pages(), _characters())
        tools = _by_name(build_recall_tools(_pages()[:1], []))
        assert tools["recall_story_page"].input_schema["properties"]["page_id"]["enum"] == ["p1"]
        assert "recall_character" not in tools

    def test_nothing_to_offer(self):
        assert build_recall_tools([], []) == []


class TestRecallSearchHandler:
    def setup_method(self):
        self.handler = RecallSearchHandler(
            _pages(), _characters(), [KnownCharacterAttitude("Mentor", "信任")]
        )

    def test_by_category(self):
        out = self.handler.handle("search_by_category", {"category": "conflict"})
        assert "[p2]" in out and "[p3]" in out and "[p1]" not in out
        assert out.startswith("分类 conflict: 2 页")

    def test_by_day(self):
        out = self.handler.handle("search_by_day", {"day": "d2"})
        assert "[p2]" in out and "[p3]" in out

    def test_by_relationship(self):
        out = self.handler.handle("search_by_relationship", {"query": "信任"})
        assert "Lyra" in out and "Mentor" in out
        assert "[p1]" in out and "[p3]" not in out

    def test_by_relationship_no_match(self):
        out = self.handler.handle("search_by_relationship", {"query": "暗恋"})
        assert "没有匹配" in out

    def test_by_keyword_searches_content(self):
        out = self.handler.handle("search_by_keyword", {"keyword": "道歉"})
        assert "[p3]" in out and "[p1]" not in out

    def test_listing_has_no_content(self):
        out = self.handler.handle("search_by_keyword", {"keyword": "酒馆"})
        assert "在酒馆相遇" not in out

    def test_unknown_tool(self):
        assert self.handler.handle("delete_everything", {}).startswith("❌")
