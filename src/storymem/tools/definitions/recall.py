"""
Recall 工具定义

检索代理可用的工具:
- recall_story_page: 取回一个记忆页 (page_id 枚举为当前候选页)
- recall_character: 取回一份 NPC 档案 (name 枚举为当前 NPC)
- search_by_category: 按分类列出候选页
- search_by_day: 按天数标签列出候选页
- search_by_relationship: 按角色关系描述查找相关页
- search_by_keyword: 按关键词全文查找候选页

搜索工具只在本地执行, 返回 id + 标题列表, 不返回正文。
"""

from __future__ import annotations

import copy

from ...llm.types import Tool
from ...memory.types import PAGE_CATEGORIES, NPCDossier, Page

DIRECT_FETCH_TOOLS = frozenset({"recall_story_page", "recall_character"})

SEARCH_TOOLS = frozenset({
    "search_by_category", "search_by_day", "search_by_relationship", "search_by_keyword",
})

RECALL_TOOLS = [
    {
        "name": "recall_story_page",
        "description": "Fetch the full text of one story page so the reply can reference that past event. Call once per page.",
        "input_schema": {
            "type": "object",
            "properties": {
                "page_id": {"type": "string", "description": "记忆页 ID"},
            },
            "required": ["page_id"],
        },
    },
    {
        "name": "recall_character",
        "description": "Fetch the full dossier (appearance, personality, attitude, current state) of a character involved in the current scene.",
        "input_schema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "角色名"},
            },
            "required": ["name"],
        },
    },
    {
        "name": "search_by_category",
        "description": "List story pages tagged with a category. Returns page ids and titles only.",
        "input_schema": {
            "type": "object",
            "properties": {
                "category": {"type": "string", "description": "分类"},
            },
            "required": ["category"],
        },
    },
    {
        "name": "search_by_day",
        "description": "List story pages recorded under a day label such as D3 or D1-D5. Returns page ids and titles only.",
        "input_schema": {
            "type": "object",
            "properties": {
                "day": {"type": "string", "description": "天数标签"},
            },
            "required": ["day"],
        },
    },
    {
        "name": "search_by_relationship",
        "description": "Find characters whose relationship or attitude description contains the given text, and the story pages involving them.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "关系描述片段, 如 '信任' 或 '敌对'"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "search_by_keyword",
        "description": "Find story pages whose title, keywords or content contain the given text. Returns page ids and titles only.",
        "input_schema": {
            "type": "object",
            "properties": {
                "keyword": {"type": "string", "description": "关键词"},
            },
            "required": ["keyword"],
        },
    },
]

_BY_NAME = {t["name"]: t for t in RECALL_TOOLS}


def _tool(name: str, enum_field: str | None = None, values: list[str] | None = None) -> Tool:
    definition = _BY_NAME[name]
    schema = copy.deepcopy(definition["input_schema"])
    if enum_field and values:
        schema["properties"][enum_field]["enum"] = values
    return Tool(name=name, description=definition["description"], input_schema=schema)


def build_recall_tools(
    pages: list[Page],
    characters: list[NPCDossier],
    include_search: bool = True,
) -> list[Tool]:
    """
    构建带实时枚举的工具列表

    Args:
        pages: 当前候选页 (可能已被向量预筛缩小)
        characters: 当前 NPC 档案
        include_search: 第二轮只允许直接取回, 传 False
    """
    tools: list[Tool] = []

    page_ids = [p.id for p in pages]
    if page_ids:
        tools.append(_tool("recall_story_page", "page_id", page_ids))

    names = [c.name for c in characters if c.name]
    if names:
        tools.append(_tool("recall_character", "name", names))

    if not include_search or not pages:
        return tools

    categories = [c for c in PAGE_CATEGORIES if any(c in p.categories for p in pages)]
    if categories:
        tools.append(_tool("search_by_category", "category", categories))

    days = list(dict.fromkeys(p.day for p in pages if p.day))
    if days:
        tools.append(_tool("search_by_day", "day", days))

    tools.append(_tool("search_by_relationship"))
    tools.append(_tool("search_by_keyword"))
    return tools
