"""
记忆子系统

- types: 存档数据模型
- parser / migration / storage: 解析、版本迁移、持久化
- extractor / lifecycle: 写入侧 (提取、渐进压缩)
- embeddings / recall_agent / keyword_fallback / retrieval: 读取侧分层检索
- manager: 每个对话的协调器
"""

from .manager import ExtractionOutcome, Injection, MemoryManager
from .types import (
    CompressionLevel,
    Item,
    KnownCharacterAttitude,
    MemoryStore,
    NPCDossier,
    Page,
    RecallResult,
)

__all__ = [
    "CompressionLevel",
    "ExtractionOutcome",
    "Injection",
    "Item",
    "KnownCharacterAttitude",
    "MemoryManager",
    "MemoryStore",
    "NPCDossier",
    "Page",
    "RecallResult",
]
