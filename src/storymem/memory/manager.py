"""
记忆管理器: 每个对话一份存档的协调器

职责:
- 按对话 key 加载存档, 必要时迁移并立即持久化
- 自动 / 强制提取: 重入保护、触发间隔、连续失败计数与提示
- 提取成功后的压缩周期与向量同步
- 每轮检索并生成注入文本, 记录召回日志
- 历史回填、重置、导入导出、切换对话
- 手动编辑: 删除 / 修改页、改写时间线、计算可隐藏消息的边界

子组件:
- storage: MemoryStorage
- extractor: MemoryExtractor
- lifecycle: LifecycleManager
- embedding_index: EmbeddingIndex (可选)
- retrieval_engine: RetrievalEngine
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from ..config import Settings
from ..core.errors import (
    CorruptStoreError,
    GatewayError,
    MigrationError,
    ParseError,
    StoreLoadError,
)
from ..llm.client import LLMClient
from ..llm.embedding_client import EmbeddingClient
from ..prompt.builder import format_recalled, format_story_index, mentioned_names
from .embeddings import EmbeddingIndex
from .extractor import ExtractionReport, MemoryExtractor, format_messages
from .lifecycle import LifecycleManager
from .migration import migrate, needs_migration
from .recall_agent import RetrievalAgent
from .retrieval import RetrievalEngine, recent_window
from .storage import MemoryStorage
from .types import ChatMessage, MemoryStore, Page, RecallResult

logger = logging.getLogger(__name__)


@dataclass
class Injection:
    """一轮要注入给生成模型的文本"""

    story_index: str = ""
    recalled: str = ""
    result: RecallResult = field(default_factory=RecallResult)

    @property
    def text(self) -> str:
        return "\n\n".join(part for part in (self.story_index, self.recalled) if part)


@dataclass
class ExtractionOutcome:
    """status: done / skipped / failed"""

    status: str
    report: ExtractionReport | None = None
    reason: str = ""


class MemoryManager:
    """对话记忆管理器"""

    def __init__(
        self,
        settings: Settings | None = None,
        storage: MemoryStorage | None = None,
        llm=None,
        embedder=None,
        notifier: Callable[[str], None] | None = None,
    ):
        self.settings = settings or Settings()
        self.storage = storage or MemoryStorage(self.settings.database_path)
        self.llm = llm if llm is not None else LLMClient.from_settings(self.settings)

        if embedder is None and self.settings.embedding_configured:
            embedder = EmbeddingClient.from_settings(self.settings)
        self.embedding_index = EmbeddingIndex(embedder) if embedder is not None else None

        self.extractor = MemoryExtractor(self.llm, self.settings)
        self.lifecycle = LifecycleManager(self.llm, self.settings, self.embedding_index)
        self.retrieval_engine = RetrievalEngine(
            self.settings, self.embedding_index, RetrievalAgent(self.llm)
        )
        self.notifier = notifier

        self._stores: dict[str, MemoryStore] = {}
        self._stores_lock = threading.RLock()
        self._failures: dict[str, int] = {}
        self._last_recall: dict[str, RecallResult] = {}

    # ==================== 存档 ====================

    def get_store(self, key: str) -> MemoryStore:
        """
        获取对话存档, 首次访问时创建空存档, 旧版本存档迁移后立即保存

        加载失败时不写入任何内容, 原存档保持原样。

        Raises:
            MigrationError: 存档版本无法识别
            CorruptStoreError: 存档不是可解码的 JSON 对象
        """
        with self._stores_lock:
            store = self._stores.get(key)
            if store is not None:
                return store

            raw = self.storage.load(key)
            if raw is None:
                store = MemoryStore()
                self.storage.save(key, store.to_dict())
            else:
                migrated = needs_migration(raw)
                if migrated:
                    raw = migrate(raw)
                try:
                    store = MemoryStore.from_dict(raw)
                except (TypeError, ValueError, AttributeError) as e:
                    raise CorruptStoreError(f"Store {key} cannot be decoded: {e}") from e
                if migrated:
                    self.storage.save(key, raw)
                    logger.info(f"[MemoryManager] Migrated store {key} and saved")

            self._stores[key] = store
            return store

    def save(self, key: str) -> None:
        with self._stores_lock:
            store = self._stores.get(key)
            if store is not None:
                self.storage.save(key, store.to_dict())

    def _replace(self, key: str, store: MemoryStore) -> None:
        with self._stores_lock:
            self._stores[key] = store
            self.storage.save(key, store.to_dict())

    def _notify(self, message: str) -> None:
        if self.notifier is not None:
            self.notifier(message)
        else:
            logger.warning(f"[MemoryManager] {message}")

    def pending_count(self, key: str, messages: list[ChatMessage]) -> int:
        """尚未提取的消息条数"""
        store = self.get_store(key)
        return max(0, len(messages) - 1 - store.processing.last_extracted_index)

    # ==================== 提取 ====================

    async def safe_extract(
        self, key: str, messages: list[ChatMessage], force: bool = False
    ) -> ExtractionOutcome:
        """
        提取新消息

        重入时直接跳过 (不排队)。生成或解析失败时存档保持不变,
        连续失败达到阈值时提示一次并重新计数。
        """
        if not self.settings.enabled and not force:
            return ExtractionOutcome("skipped", reason="disabled")

        try:
            store = self.get_store(key)
        except StoreLoadError as e:
            logger.error(f"[MemoryManager] Cannot load store {key}: {e}")
            self._notify(f"记忆存档无法读取: {e}")
            return ExtractionOutcome("failed", reason=str(e))

        if store.processing.in_progress:
            logger.info(f"[MemoryManager] Extraction already in progress for {key}, skipping")
            return ExtractionOutcome("skipped", reason="in progress")
        if not messages:
            return ExtractionOutcome("skipped", reason="no messages")

        if not force and self.pending_count(key, messages) < self.settings.extraction_interval:
            return ExtractionOutcome("skipped", reason="interval")

        start = max(0, store.processing.last_extracted_index + 1)
        window = [(i, m) for i, m in enumerate(messages) if i >= start]
        content = format_messages(window)
        if not content.strip():
            return ExtractionOutcome("skipped", reason="nothing new")
        if not self.llm.available:
            logger.info("[MemoryManager] Text generation gateway not configured, skipping extraction")
            return ExtractionOutcome("skipped", reason="gateway not configured")

        store.processing.in_progress = True
        self.save(key)
        try:
            report = await self.extractor.extract(
                store, content, source_indices=[i for i, m in window if not m.is_system]
            )
            store.processing.last_extracted_index = len(messages) - 1
            self.save(key)
            self._failures[key] = 0

            if self.settings.auto_compress:
                await self._run_compression(key, store, force=False)
            await self._sync_embeddings(key, store)
            return ExtractionOutcome("done", report=report)

        except (GatewayError, ParseError) as e:
            failures = self._failures.get(key, 0) + 1
            logger.warning(f"[MemoryManager] Extraction failed for {key} ({failures}): {e}")
            if failures >= self.settings.failure_warning_threshold:
                self._notify(f"记忆提取连续失败 {failures} 次, 请检查 API 状态")
                failures = 0
            self._failures[key] = failures
            return ExtractionOutcome("failed", reason=str(e))

        finally:
            store.processing.in_progress = False
            self.save(key)

    async def initialize_from_history(
        self, key: str, messages: list[ChatMessage], lore_text: str = ""
    ) -> dict:
        """
        重置存档并从完整历史批量构建

        Returns:
            {"total", "succeeded", "pages"}, 跳过时 {"skipped": 原因}
        """
        try:
            current = self.get_store(key)
        except StoreLoadError as e:
            logger.error(f"[MemoryManager] Cannot load store {key}, not overwriting: {e}")
            return {"skipped": "store unreadable"}
        if current.processing.in_progress:
            return {"skipped": "in progress"}
        if not self.llm.available:
            return {"skipped": "gateway not configured"}

        store = MemoryStore()
        store.processing.in_progress = True
        self._replace(key, store)
        try:
            stats = await self.extractor.extract_batch(
                store, messages, lore_text=lore_text,
                on_batch_done=lambda done, total: self.save(key),
            )
            await self._sync_embeddings(key, store)
            logger.info(f"[MemoryManager] Initialized {key} from history: {stats}")
            return stats
        finally:
            store.processing.in_progress = False
            self.save(key)

    # ==================== 压缩 ====================

    async def _run_compression(self, key: str, store: MemoryStore, force: bool) -> dict:
        return await self.lifecycle.run_cycle(store, force=force, on_mutation=lambda: self.save(key))

    async def _sync_embeddings(self, key: str, store: MemoryStore) -> None:
        if self.embedding_index is None:
            store.prune_embeddings()
            return
        if await self.embedding_index.sync(store):
            self.save(key)

    async def compress(self, key: str, force: bool = True) -> dict | None:
        """手动压缩, 与提取共用重入保护; 正在提取时返回 None"""
        store = self.get_store(key)
        if store.processing.in_progress:
            logger.info(f"[MemoryManager] Busy, skipping compression for {key}")
            return None

        store.processing.in_progress = True
        self.save(key)
        try:
            report = await self._run_compression(key, store, force=force)
            await self._sync_embeddings(key, store)
            return report
        finally:
            store.processing.in_progress = False
            self.save(key)

    # ==================== 检索 ====================

    async def retrieve(
        self, key: str, messages: list[ChatMessage], turn_id: str | int | None = None
    ) -> Injection:
        """
        为当前轮检索记忆并生成注入文本

        任何层失败都只降级, 不抛出到宿主流程。
        """
        if not self.settings.enabled:
            return Injection()
        try:
            store = self.get_store(key)
        except StoreLoadError as e:
            logger.error(f"[MemoryManager] Cannot load store {key}: {e}")
            return Injection()

        result = await self.retrieval_engine.retrieve(store, messages)
        self._last_recall[key] = result

        if turn_id is not None and result.pages:
            store.record_recall(str(turn_id), [p.id for p in result.pages])
            self.save(key)

        story_index = ""
        if not store.is_empty:
            window = recent_window(messages, self.settings.recent_window)
            mentioned = mentioned_names(store, " ".join(m.text for m in window))
            story_index = format_story_index(store, mentioned)

        return Injection(
            story_index=story_index,
            recalled=format_recalled(result.pages, result.characters),
            result=result,
        )

    def last_recall(self, key: str) -> RecallResult | None:
        return self._last_recall.get(key)

    # ==================== 重置 / 导入导出 ====================

    def reset(self, key: str) -> MemoryStore:
        store = MemoryStore()
        self._replace(key, store)
        self._failures.pop(key, None)
        self._last_recall.pop(key, None)
        logger.info(f"[MemoryManager] Store {key} reset")
        return store

    def export_store(self, key: str) -> str:
        return json.dumps(self.get_store(key).to_dict(), ensure_ascii=False, indent=2)

    def import_store(self, key: str, text: str) -> MemoryStore:
        """
        导入外部存档 (当前或旧版本格式), 整体替换

        Raises:
            MigrationError: 内容不是可识别的存档
        """
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise MigrationError(f"Import is not valid JSON: {e}") from e
        if not isinstance(raw, dict) or not ({"pages", "storyBible", "memories"} & raw.keys()):
            raise MigrationError("Import does not look like a memory store")

        try:
            store = MemoryStore.from_dict(migrate(raw))
        except (TypeError, ValueError, AttributeError) as e:
            raise MigrationError(f"Import cannot be decoded: {e}") from e
        store.processing.in_progress = False
        store.prune_embeddings()
        self._replace(key, store)
        self._last_recall.pop(key, None)
        logger.info(f"[MemoryManager] Imported store {key}: {len(store.pages)} pages")
        return store

    def on_conversation_changed(self, key: str) -> None:
        """切换对话: 清除失败计数与上次召回, 清理残留的重入标记"""
        self._failures.pop(key, None)
        self._last_recall.pop(key, None)
        try:
            store = self.get_store(key)
        except StoreLoadError as e:
            logger.error(f"[MemoryManager] Cannot load store {key}: {e}")
            return
        if store.processing.in_progress:
            store.processing.in_progress = False
            self.save(key)
            logger.info(f"[MemoryManager] Cleared stale in-progress flag for {key}")

    # ==================== 手动编辑 ====================

    def delete_page(self, key: str, page_id: str) -> bool:
        """删除页 (连同向量与召回记录中的引用)"""
        store = self.get_store(key)
        if not store.remove_page(page_id):
            return False
        self.save(key)
        logger.info(f"[MemoryManager] Deleted page {page_id} from {key}")
        return True

    async def edit_page(self, key: str, page_id: str, content: str) -> Page | None:
        """
        修改页正文, 有向量索引时重新计算该页向量

        Returns:
            修改后的页, 找不到时返回 None

        Raises:
            ValueError: 正文为空
        """
        content = content.strip()
        if not content:
            raise ValueError("Page content cannot be empty")

        store = self.get_store(key)
        page = store.find_page(page_id)
        if page is None:
            return None

        page.content = content
        self.save(key)
        if self.embedding_index is not None:
            await self.embedding_index.refresh_page(store, page)
            self.save(key)
        logger.info(f"[MemoryManager] Edited page {page_id} in {key}")
        return page

    def edit_timeline(self, key: str, text: str) -> MemoryStore:
        """整体替换时间线"""
        store = self.get_store(key)
        store.timeline = text.strip()
        self.save(key)
        logger.info(f"[MemoryManager] Timeline of {key} replaced ({len(store.timeline_lines())} lines)")
        return store

    def hide_boundary(self, key: str, messages: list[ChatMessage]) -> int | None:
        """
        宿主可以隐藏的最后一条消息下标

        只覆盖已提取的消息, 并保留最近 keep_recent_messages 条可见。
        未开启 auto_hide、还没有提取过、或范围内只有系统消息时返回 None。
        """
        if not self.settings.auto_hide:
            return None
        try:
            store = self.get_store(key)
        except StoreLoadError as e:
            logger.error(f"[MemoryManager] Cannot load store {key}: {e}")
            return None

        last = store.processing.last_extracted_index
        if last < 0:
            return None
        hide_up_to = min(last, len(messages) - 1 - self.settings.keep_recent_messages)
        if hide_up_to < 0:
            return None
        if all(m.is_system for m in messages[: hide_up_to + 1]):
            return None
        return hide_up_to
