"""
记忆命令处理器

文本进, 文本出, 错误以字符串返回:
- mm-extract: 立即提取未处理的消息
- mm-recall: 查看上一轮召回的内容
- mm-index: 查看故事索引
- mm-pages: 列出全部记忆页
- mm-compress: 立即执行压缩周期
- mm-reset: 清空当前对话的记忆
"""

import logging
from typing import TYPE_CHECKING

from ...memory.types import ChatMessage
from ...prompt.builder import format_story_index

if TYPE_CHECKING:
    from ...memory.manager import MemoryManager

logger = logging.getLogger(__name__)


class MemoryCommandHandler:
    """
    记忆命令处理器

    每个命令作用于一个对话 key。
    """

    COMMANDS = [
        "mm-extract",
        "mm-recall",
        "mm-index",
        "mm-pages",
        "mm-compress",
        "mm-reset",
    ]

    def __init__(self, manager: "MemoryManager"):
        self.manager = manager

    async def handle(
        self, command: str, key: str, messages: list[ChatMessage] | None = None
    ) -> str:
        """处理命令"""
        command = command.strip().lstrip("/").lower()
        try:
            if command == "mm-extract":
                return await self._extract(key, messages or [])
            elif command == "mm-recall":
                return self._recall(key)
            elif command == "mm-index":
                return self._index(key)
            elif command == "mm-pages":
                return self._pages(key)
            elif command == "mm-compress":
                return await self._compress(key)
            elif command == "mm-reset":
                return self._reset(key)
            else:
                return f"❌ Unknown memory command: {command} (可用: {', '.join(self.COMMANDS)})"
        except Exception as e:
            logger.error(f"Memory command {command} failed: {e}", exc_info=True)
            return f"❌ 命令执行失败: {e}"

    async def _extract(self, key: str, messages: list[ChatMessage]) -> str:
        outcome = await self.manager.safe_extract(key, messages, force=True)
        if outcome.status == "done":
            pages = outcome.report.new_pages if outcome.report else []
            lines = [f"✅ 提取完成: 新增 {len(pages)} 页"]
            lines.extend(f"- [{p.id}] {p.day} {p.title}" for p in pages)
            return "\n".join(lines)
        if outcome.status == "skipped":
            return f"提取未执行: {outcome.reason}"
        return f"❌ 提取失败: {outcome.reason}"

    def _recall(self, key: str) -> str:
        result = self.manager.last_recall(key)
        if result is None or result.empty:
            return "上一轮没有召回任何记忆"
        lines = [f"上一轮召回 (来源: {result.tier}):"]
        lines.extend(f"- [{p.id}] {p.day} {p.title}" for p in result.pages)
        lines.extend(f"- 角色: {c.name}" for c in result.characters)
        return "\n".join(lines)

    def _index(self, key: str) -> str:
        store = self.manager.get_store(key)
        if store.is_empty:
            return "记忆为空"
        return format_story_index(store)

    def _pages(self, key: str) -> str:
        store = self.manager.get_store(key)
        if not store.pages:
            return "没有记忆页"
        lines = [f"共 {len(store.pages)} 页:"]
        for p in store.pages:
            lines.append(
                f"[{p.id}] {p.day} | {p.title} | {p.compression_level.label} | "
                f"{','.join(p.keywords)}"
            )
        return "\n".join(lines)

    async def _compress(self, key: str) -> str:
        report = await self.manager.compress(key, force=True)
        if report is None:
            return "提取或压缩正在进行中, 请稍后再试"
        return (
            "✅ 压缩完成: "
            f"时间线{'已' if report['timeline_compacted'] else '未'}压实, "
            f"压缩 {report['compressed']} 页, 失败 {report['failed']} 页, "
            f"归档 {report['archived']} 页"
        )

    def _reset(self, key: str) -> str:
        self.manager.reset(key)
        return "✅ 记忆已清空"
