"""
检索引擎

每轮一次, 在存档副本上依次尝试:
1. 向量预筛 (可选) -> 缩小候选页
2. 检索代理 (可选) -> 工具调用选择
3. 关键词兜底 -> 前两层没有选出任何内容时使用

无论由哪一层产出, 结果都截断到 max_pages 页与 2 个角色。
"""

from __future__ import annotations

import logging

from .keyword_fallback import keyword_fallback
from .types import CHARACTER_CAP, ChatMessage, MemoryStore, RecallResult

logger = logging.getLogger(__name__)


def recent_window(messages: list[ChatMessage], size: int) -> list[ChatMessage]:
    """最近 size 条非系统消息"""
    visible = [m for m in messages if not m.is_system and m.text.strip()]
    return visible[-size:] if size > 0 else []


class RetrievalEngine:
    """分层检索编排"""

    def __init__(self, settings, embedding_index=None, agent=None) -> None:
        self.settings = settings
        self.embedding_index = embedding_index
        self.agent = agent

    async def retrieve(self, store: MemoryStore, messages: list[ChatMessage]) -> RecallResult:
        """
        为当前轮选出记忆

        Args:
            store: 存档 (不会被修改)
            messages: 对话消息, 取最近 recent_window 条作为查询

        Returns:
            RecallResult, tier 为 "agent" / "keyword" / "none"
        """
        max_pages = self.settings.max_pages
        snapshot = store.copy()
        window = recent_window(messages, self.settings.recent_window)
        if not window or (not snapshot.eligible_pages() and not snapshot.characters):
            return RecallResult(tier="none")

        recent_text = "\n".join(f"{m.name}: {m.text}" for m in window)

        candidates = None
        if self.embedding_index is not None and self.embedding_index.available:
            candidates = await self.embedding_index.pre_filter(
                snapshot, recent_text, self.settings.embedding_top_k
            )
            if candidates is None:
                logger.info("[Retrieval] Pre-filter unavailable, using full catalog")

        if self.agent is not None and self.agent.available:
            result = await self.agent.select(snapshot, recent_text, candidates, max_pages)
            if not result.empty:
                return result.capped(max_pages, CHARACTER_CAP)
            logger.info("[Retrieval] Agent selected nothing, using keyword fallback")

        result = keyword_fallback(snapshot, window, max_pages)
        if not result.empty:
            logger.info(
                f"[Retrieval] Keyword fallback selected pages={[p.title for p in result.pages]}"
            )
            return result.capped(max_pages, CHARACTER_CAP)
        return RecallResult(tier="none")
