"""L1 Unit Tests: injection text formatting."""

from storymem.memory.types import (
    CompressionLevel,
    Item,
    KnownCharacterAttitude,
    MemoryStore,
    NPCDossier,
    Page,
)
from storymem.prompt.builder import (
    format_dossier,
    format_page_catalog,
    format_recalled,
    format_story_index,
    mentioned_names,
)


def _store():
    return MemoryStore(
        timeline="D1: 初遇\nD2: 争吵",
        items=[Item(name="地图", status="破损")],
        known_character_attitudes=[KnownCharacterAttitude("Mentor", "信任")],
        characters=[NPCDossier(name="Lyra", attitude="戒备"), NPCDossier(name="Kai", attitude="敌对")],
    )


class TestStoryIndex:
    def test_sections(self):
        text = format_story_index(_store())
        assert text.startswith("[故事索引]") and text.endswith("[/故事索引]")
        assert "D2: 争吵" in text
        assert "· 地图 | 破损" in text
        assert "· Mentor: 信任" in text and "· Lyra: 戒备" in text

    def test_attitudes_filtered_by_mention(self):
        text = format_story_index(_store(), {"Kai"})
        assert "· Kai: 敌对" in text
        assert "Lyra" not in text and "Mentor" not in text

    def test_mentioned_names_case_insensitive(self):
        assert mentioned_names(_store(), "i saw LYRA and mentor today") == {"Lyra", "Mentor"}


class TestRecalled:
    def test_pages_and_dossiers(self):
        page = Page(title="初遇", day="D1", content="在酒馆相遇")
        npc = NPCDossier(name="Lyra", appearance="银发", current_state="疲惫")
        text = format_recalled([page], [npc])
        assert "[记忆闪回]" in text and "「初遇」(D1)" in text and "在酒馆相遇" in text
        assert "[角色档案: Lyra]" in text and "外貌: 银发" in text and "当前状态: 疲惫" in text

    def test_empty(self):
        assert format_recalled([], []) == ""

    def test_dossier_skips_blank_fields(self):
        text = format_dossier(NPCDossier(name="Kai"))
        assert text == "[角色档案: Kai]\n[/角色档案]"


def test_page_catalog_line():
    page = Page(id="pg_1", day="D4", title="背叛", keywords=["Kai", "地图"],
                categories=["conflict"], compression_level=CompressionLevel.SUMMARY)
    assert format_page_catalog([page]) == "  [pg_1] D4 | 背叛 | 摘要 | conflict | keywords: Kai,地图"
