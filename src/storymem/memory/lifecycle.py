"""
记忆生命周期管理 (渐进压缩)

一个压缩周期依次执行:
1. 时间线压实: 行数超过上限时请模型合并旧条目, 结果行数不减少则保留原文
2. 页压缩: FRESH 页超过上限时, 最旧的超出部分逐页压缩为摘要 (SUMMARY)
3. 页归档: SUMMARY 页超过上限时, 最旧的超出部分直接删除 (不调用模型)

每完成一个单元 (时间线 / 一页) 就回调 on_mutation 持久化,
中途失败最多丢失一个单元的进度。
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from ..core.errors import GatewayError
from .types import CompressionLevel, MemoryStore, Page

logger = logging.getLogger(__name__)


class LifecycleManager:
    """压缩周期管理器"""

    PAGE_COMPRESSION_PROMPT = """[记忆压缩] 把下面这段剧情压缩成 30-50 字的摘要。

原文 ({day} / {title}):
{content}

要求:
- 保留: 谁、做了什么、出于什么原因、结果如何
- 去掉感官描写和修辞
- 直接输出纯文本, 不要 JSON, 不要代码块"""

    TIMELINE_COMPRESSION_PROMPT = """[时间线压实] 下面的剧情时间线太长, 请压缩。

## 当前时间线
{timeline}

## 规则
1. 最后 {recent_lines} 行原样保留
2. 更早的行: 相邻天数合并成 "D起-D止: 概括", 每行一句话, 不超过 60 字
3. 压缩后总行数不超过 {max_lines} 行
4. 不能丢掉转折点和关系变化

只输出压缩后的时间线, 每行一条, 不要任何解释。"""

    PAGE_MAX_TOKENS = 200
    TIMELINE_MAX_TOKENS = 1000

    def __init__(self, llm, settings, embedding_index=None) -> None:
        self.llm = llm
        self.settings = settings
        self.embedding_index = embedding_index

    # ==================== 时间线 ====================

    async def compact_timeline(self, store: MemoryStore) -> bool:
        """
        行数超过 max_timeline_entries 时压实时间线

        Returns:
            时间线是否被替换
        """
        lines = store.timeline_lines()
        limit = self.settings.max_timeline_entries
        if len(lines) <= limit:
            return False

        logger.info(f"[Lifecycle] Timeline has {len(lines)} lines (limit {limit}), compacting")
        prompt = self.TIMELINE_COMPRESSION_PROMPT.format(
            timeline=store.timeline,
            recent_lines=self.settings.timeline_recent_lines,
            max_lines=limit,
        )
        try:
            compacted = await self.llm.generate(
                "你是时间线压缩助手。只输出压缩后的时间线。", prompt, self.TIMELINE_MAX_TOKENS
            )
        except GatewayError as e:
            logger.warning(f"[Lifecycle] Timeline compaction failed: {e}")
            return False

        compacted = (compacted or "").strip()
        new_lines = [line for line in compacted.split("\n") if line.strip()]
        if not new_lines:
            return False
        if len(new_lines) > len(lines):
            logger.warning(
                f"[Lifecycle] Compaction produced {len(new_lines)} lines (> {len(lines)}), keeping original"
            )
            return False

        store.timeline = "\n".join(new_lines)
        logger.info(f"[Lifecycle] Timeline compacted: {len(lines)} -> {len(new_lines)} lines")
        return True

    # ==================== 页 ====================

    async def compress_page(self, store: MemoryStore, page: Page) -> bool:
        """
        FRESH -> SUMMARY

        失败时页保持 FRESH, 下个周期重试。
        """
        if page.compression_level != CompressionLevel.FRESH:
            return False

        prompt = self.PAGE_COMPRESSION_PROMPT.format(
            day=page.day, title=page.title, content=page.content
        )
        try:
            summary = await self.llm.generate(
                "你是文本压缩助手。只输出压缩结果。", prompt, self.PAGE_MAX_TOKENS
            )
        except GatewayError as e:
            logger.warning(f"[Lifecycle] Failed to compress page {page.id} ({page.title}): {e}")
            return False

        summary = (summary or "").strip()
        if len(summary) <= self.settings.min_page_content_length:
            logger.warning(f"[Lifecycle] Summary too short for page {page.id}, keeping FRESH")
            return False

        original_length = len(page.content)
        page.content = summary
        page.compression_level = CompressionLevel.SUMMARY
        page.compressed_at = int(time.time() * 1000)
        logger.info(
            f"[Lifecycle] Page compressed: {page.title} ({original_length} -> {len(summary)} chars)"
        )

        if self.embedding_index is not None:
            await self.embedding_index.refresh_page(store, page)
        return True

    def archive_page(self, store: MemoryStore, page: Page) -> bool:
        """SUMMARY -> ARCHIVED, 即从 store 中删除, 同时清理向量与召回记录"""
        if page.compression_level < CompressionLevel.SUMMARY:
            return False
        removed = store.remove_page(page.id)
        if removed:
            logger.info(f"[Lifecycle] Archived page {page.id} ({page.day} {page.title})")
        return removed

    # ==================== 周期 ====================

    async def run_cycle(
        self,
        store: MemoryStore,
        force: bool = False,
        on_mutation: Callable[[], None] | None = None,
    ) -> dict:
        """
        执行一次完整压缩周期

        Args:
            store: 目标存档 (原地修改)
            force: 忽略 auto_compress 开关
            on_mutation: 每个单元变更后的持久化回调

        Returns:
            {"timeline_compacted": bool, "compressed": int, "failed": int, "archived": int}
        """
        report = {"timeline_compacted": False, "compressed": 0, "failed": 0, "archived": 0}
        if not self.settings.auto_compress and not force:
            return report

        def persist() -> None:
            if on_mutation is not None:
                on_mutation()

        if await self.compact_timeline(store):
            report["timeline_compacted"] = True
            persist()

        fresh = sorted(store.pages_at(CompressionLevel.FRESH), key=lambda p: p.created_at)
        ceiling = self.settings.compress_after_pages
        if len(fresh) > ceiling:
            excess = fresh[: len(fresh) - ceiling]
            logger.info(f"[Lifecycle] Compressing {len(excess)} fresh pages to summary")
            for page in excess:
                if await self.compress_page(store, page):
                    report["compressed"] += 1
                    persist()
                else:
                    report["failed"] += 1

        summaries = sorted(store.pages_at(CompressionLevel.SUMMARY), key=lambda p: p.created_at)
        ceiling = self.settings.archive_after_pages
        if len(summaries) > ceiling:
            excess = summaries[: len(summaries) - ceiling]
            logger.info(f"[Lifecycle] Archiving {len(excess)} summary pages")
            for page in excess:
                if self.archive_page(store, page):
                    report["archived"] += 1
                    persist()

        logger.info(
            f"[Lifecycle] Cycle complete: {report}, pages={len(store.pages)}"
        )
        return report
