"""
向量索引 (可选的语义预筛)

为每个 compressionLevel <= SUMMARY 的页维护 store.embeddings[page_id]。
检索时把最近对话窗口作为一个查询向量, 按余弦相似度取 top_k 页。
任何失败 (未配置、网络错误、缓存为空) 都返回 None, 调用方回退到完整目录。
"""

from __future__ import annotations

import logging
import math

from ..core.errors import GatewayError
from .types import MemoryStore, Page

logger = logging.getLogger(__name__)


def page_text(page: Page) -> str:
    """用于计算页向量的文本"""
    header = " ".join(part for part in (page.day, page.title, " ".join(page.keywords)) if part)
    return f"{header}\n{page.content}"


class EmbeddingIndex:
    """基于 Embedding 网关的页向量索引"""

    def __init__(self, embedder=None) -> None:
        self.embedder = embedder

    @property
    def available(self) -> bool:
        return self.embedder is not None and self.embedder.available

    @staticmethod
    def cosine_similarity(a: list[float], b: list[float]) -> float:
        if not a or len(a) != len(b):
            return 0.0
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(x * x for x in b))
        if norm_a == 0 or norm_b == 0:
            return 0.0
        return dot / (norm_a * norm_b)

    # ==================== 维护 ====================

    async def index_pages(self, store: MemoryStore, pages: list[Page]) -> int:
        """
        为指定页计算并写入向量 (一次网关调用)

        Returns:
            成功写入的向量数, 失败返回 0
        """
        targets = [p for p in pages if store.find_page(p.id) is not None]
        if not self.available or not targets:
            return 0
        try:
            vectors = await self.embedder.embed([page_text(p) for p in targets])
        except GatewayError as e:
            logger.warning(f"[Embedding] Failed to index {len(targets)} pages: {e}")
            return 0

        for page, vector in zip(targets, vectors):
            store.embeddings[page.id] = vector
        logger.debug(f"[Embedding] Indexed {len(targets)} pages")
        return len(targets)

    async def refresh_page(self, store: MemoryStore, page: Page) -> bool:
        """页文本变化后重新计算向量, 失败时删除旧向量"""
        if not self.available:
            store.embeddings.pop(page.id, None)
            return False
        if await self.index_pages(store, [page]) == 1:
            return True
        store.embeddings.pop(page.id, None)
        return False

    async def sync(self, store: MemoryStore) -> int:
        """删除失效向量, 补齐缺失向量"""
        pruned = store.prune_embeddings()
        if pruned:
            logger.info(f"[Embedding] Pruned {pruned} stale vectors")
        missing = [p for p in store.eligible_pages() if p.id not in store.embeddings]
        if not missing:
            return 0
        return await self.index_pages(store, missing)

    # ==================== 检索 ====================

    async def pre_filter(self, store: MemoryStore, query: str, top_k: int) -> list[Page] | None:
        """
        语义预筛

        Returns:
            相似度最高的 top_k 页, 无法预筛时返回 None
        """
        if not self.available or not query.strip() or top_k <= 0:
            return None

        candidates = [p for p in store.eligible_pages() if p.id in store.embeddings]
        if not candidates:
            return None

        try:
            vectors = await self.embedder.embed([query])
        except GatewayError as e:
            logger.info(f"[Embedding] Pre-filter unavailable: {e}")
            return None
        if not vectors:
            return None

        query_vec = vectors[0]
        scored = [
            (self.cosine_similarity(query_vec, store.embeddings[p.id]), p) for p in candidates
        ]
        scored.sort(key=lambda x: x[0], reverse=True)
        selected = [p for _, p in scored[:top_k]]
        logger.debug(
            f"[Embedding] Pre-filter kept {len(selected)}/{len(candidates)} pages"
        )
        return selected
