"""
Recall 搜索处理器

在本地候选集上执行四个搜索工具, 返回轻量的 id + 标题列表。
"""

import logging
from typing import Any

from ...memory.types import KnownCharacterAttitude, NPCDossier, Page

logger = logging.getLogger(__name__)


class RecallSearchHandler:
    """
    本地搜索处理器

    只在构造时传入的候选页上搜索, 保证列出的每个 id 都可以被直接取回。
    """

    MAX_RESULTS = 10

    def __init__(
        self,
        pages: list[Page],
        characters: list[NPCDossier],
        known_attitudes: list[KnownCharacterAttitude] | None = None,
    ):
        self.pages = pages
        self.characters = characters
        self.known_attitudes = known_attitudes or []

    def handle(self, tool_name: str, params: dict[str, Any]) -> str:
        """处理工具调用"""
        if tool_name == "search_by_category":
            return self._search_by_category(params)
        elif tool_name == "search_by_day":
            return self._search_by_day(params)
        elif tool_name == "search_by_relationship":
            return self._search_by_relationship(params)
        elif tool_name == "search_by_keyword":
            return self._search_by_keyword(params)
        else:
            return f"❌ Unknown search tool: {tool_name}"

    def _listing(self, label: str, pages: list[Page]) -> str:
        if not pages:
            return f"{label}: 无结果"
        shown = pages[: self.MAX_RESULTS]
        lines = [f"{label}: {len(pages)} 页"]
        lines.extend(f"  [{p.id}] {p.day} | {p.title}" for p in shown)
        if len(pages) > len(shown):
            lines.append(f"  ... 另有 {len(pages) - len(shown)} 页未列出")
        return "\n".join(lines)

    def _search_by_category(self, params: dict) -> str:
        category = str(params.get("category", "")).strip()
        matched = [p for p in self.pages if category in p.categories]
        return self._listing(f"分类 {category}", matched)

    def _search_by_day(self, params: dict) -> str:
        day = str(params.get("day", "")).strip().lower()
        if not day:
            return "天数 (空): 无结果"
        matched = [p for p in self.pages if p.day.lower() == day]
        if not matched:
            matched = [p for p in self.pages if day in p.day.lower()]
        return self._listing(f"天数 {day.upper()}", matched)

    def _search_by_relationship(self, params: dict) -> str:
        query = str(params.get("query", "")).strip().lower()
        if not query:
            return "关系 (空): 无结果"

        people = [
            c.name for c in self.characters
            if query in c.attitude.lower() or query in c.name.lower()
        ]
        people += [
            k.name for k in self.known_attitudes
            if query in k.attitude.lower() or query in k.name.lower()
        ]
        if not people:
            return f"关系 '{query}': 没有匹配的角色"

        keys = {n.lower() for n in people}
        matched = [
            p for p in self.pages
            if any(c.lower() in keys for c in p.characters)
            or any(k.lower() in keys for k in p.keywords)
        ]
        header = f"关系 '{query}' 匹配角色: {', '.join(people)}"
        return header + "\n" + self._listing("相关页", matched)

    def _search_by_keyword(self, params: dict) -> str:
        keyword = str(params.get("keyword", "")).strip().lower()
        if not keyword:
            return "关键词 (空): 无结果"
        matched = [
            p for p in self.pages
            if keyword in p.title.lower()
            or keyword in p.content.lower()
            or any(keyword in k.lower() or k.lower() in keyword for k in p.keywords)
        ]
        return self._listing(f"关键词 '{keyword}'", matched)
