"""
检索代理 (工具调用)

两轮协议, 用显式状态机实现:

    AWAITING_ROUND1 -> EXECUTING_SEARCHES -> AWAITING_ROUND2 -> DONE
           |                   |
           +-------------------+--------------------------> DONE

- 第一轮: 给出目录、角色表与最近对话, 模型可混用直接取回与搜索工具
- 有搜索调用时在本地执行, 汇总结果进入第二轮
- 第二轮: 只允许直接取回, 且不超过剩余配额

网关不可用或调用失败是正常结果: 第一轮失败返回空选择,
第二轮失败保留第一轮已经取回的内容。
"""

from __future__ import annotations

import logging
from enum import Enum

from ..llm.types import ToolCall
from ..prompt.builder import format_character_catalog, format_page_catalog, format_story_index
from ..tools.definitions.recall import SEARCH_TOOLS, build_recall_tools
from ..tools.handlers.recall import RecallSearchHandler
from .types import CHARACTER_CAP, MemoryStore, NPCDossier, Page, RecallResult

logger = logging.getLogger(__name__)


class AgentState(Enum):
    AWAITING_ROUND1 = "awaiting_round1"
    EXECUTING_SEARCHES = "executing_searches"
    AWAITING_ROUND2 = "awaiting_round2"
    DONE = "done"


class _Selection:
    """去重并按上限收集直接取回的结果"""

    def __init__(self, pages: list[Page], characters: list[NPCDossier], max_pages: int):
        self._pages = {p.id: p for p in pages}
        self._characters = {c.name.lower(): c for c in characters if c.name}
        self.max_pages = max_pages
        self.pages: list[Page] = []
        self.characters: list[NPCDossier] = []

    @property
    def pages_left(self) -> int:
        return max(0, self.max_pages - len(self.pages))

    @property
    def characters_left(self) -> int:
        return max(0, CHARACTER_CAP - len(self.characters))

    def take(self, call: ToolCall) -> None:
        if call.name == "recall_story_page":
            page = self._pages.get(str(call.arguments.get("page_id", "")))
            if page is not None and page not in self.pages and self.pages_left:
                self.pages.append(page)
        elif call.name == "recall_character":
            npc = self._characters.get(str(call.arguments.get("name", "")).strip().lower())
            if npc is not None and npc not in self.characters and self.characters_left:
                self.characters.append(npc)


class RetrievalAgent:
    """工具调用检索代理"""

    ROUND1_PROMPT = """你是记忆检索系统。根据当前对话, 用工具调用选出回复时需要参考的记忆。

## 故事索引
{story_index}

## 可取回的记忆页
{page_catalog}

## 可取回的角色档案
{character_catalog}

## 最近对话
{recent_text}

## 指令
- recall_story_page: 取回与当前话题有关的过去事件, 最多 {max_pages} 页
- recall_character: 取回当前互动角色的档案, 最多 {max_characters} 个
- 目录不足以判断时, 可先用 search_by_category / search_by_day /
  search_by_relationship / search_by_keyword 搜索, 下一轮再取回
- 当前对话不需要回忆时, 不调用任何工具"""

    ROUND2_PROMPT = """你是记忆检索系统, 这是第二轮。上一轮的搜索结果如下:

{search_results}

## 已经取回
{selected}

## 最近对话
{recent_text}

## 指令
只能使用 recall_story_page 和 recall_character 完成选择。
最多再取回 {pages_left} 页、{characters_left} 个角色。不需要更多时不调用工具。"""

    MAX_TOKENS = 300

    def __init__(self, llm=None) -> None:
        self.llm = llm

    @property
    def available(self) -> bool:
        return self.llm is not None and self.llm.available

    async def _call(self, prompt: str, tools) -> list[ToolCall] | None:
        try:
            response = await self.llm.generate_with_tools(prompt, tools, self.MAX_TOKENS)
        except Exception as e:
            logger.info(f"[Recall] Agent call failed, falling through: {type(e).__name__}: {e}")
            return None
        return response.tool_calls

    async def select(
        self,
        store: MemoryStore,
        recent_text: str,
        candidate_pages: list[Page] | None,
        max_pages: int,
    ) -> RecallResult:
        """
        选出本轮要注入的页与角色

        Args:
            store: 存档副本 (只读)
            recent_text: 最近对话文本
            candidate_pages: 向量预筛结果, None 表示使用全部可检索页
            max_pages: 页数上限

        Returns:
            RecallResult (tier="agent"), 失败时为空
        """
        if not self.available:
            return RecallResult(tier="agent")

        pages = candidate_pages if candidate_pages is not None else store.eligible_pages()
        characters = list(store.characters)
        if not pages and not characters:
            return RecallResult(tier="agent")

        selection = _Selection(pages, characters, max_pages)
        searches: list[ToolCall] = []
        search_results = ""
        state = AgentState.AWAITING_ROUND1

        while state is not AgentState.DONE:
            if state is AgentState.AWAITING_ROUND1:
                prompt = self.ROUND1_PROMPT.format(
                    story_index=format_story_index(store),
                    page_catalog=format_page_catalog(pages) or "(无)",
                    character_catalog=format_character_catalog(characters) or "(无)",
                    recent_text=recent_text,
                    max_pages=max_pages,
                    max_characters=CHARACTER_CAP,
                )
                calls = await self._call(prompt, build_recall_tools(pages, characters))
                if calls is None:
                    return RecallResult(tier="agent")
                for call in calls:
                    if call.name in SEARCH_TOOLS:
                        searches.append(call)
                    else:
                        selection.take(call)
                state = AgentState.EXECUTING_SEARCHES if searches else AgentState.DONE

            elif state is AgentState.EXECUTING_SEARCHES:
                handler = RecallSearchHandler(pages, characters, store.known_character_attitudes)
                search_results = "\n\n".join(
                    handler.handle(call.name, call.arguments) for call in searches
                )
                logger.debug(f"[Recall] Executed {len(searches)} local searches")
                if selection.pages_left or selection.characters_left:
                    state = AgentState.AWAITING_ROUND2
                else:
                    state = AgentState.DONE

            elif state is AgentState.AWAITING_ROUND2:
                selected = [f"  [{p.id}] {p.title}" for p in selection.pages]
                selected += [f"  角色: {c.name}" for c in selection.characters]
                prompt = self.ROUND2_PROMPT.format(
                    search_results=search_results,
                    selected="\n".join(selected) or "(无)",
                    recent_text=recent_text,
                    pages_left=selection.pages_left,
                    characters_left=selection.characters_left,
                )
                calls = await self._call(
                    prompt, build_recall_tools(pages, characters, include_search=False)
                )
                for call in calls or []:
                    if call.name not in SEARCH_TOOLS:
                        selection.take(call)
                state = AgentState.DONE

        logger.info(
            f"[Recall] Agent selected pages={[p.title for p in selection.pages]} "
            f"characters={[c.name for c in selection.characters]}"
        )
        return RecallResult(pages=selection.pages, characters=selection.characters, tier="agent")
