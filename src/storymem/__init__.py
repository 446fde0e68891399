"""
StoryMem - 长对话的有界可检索记忆

对不断增长的对话日志维护一份有界的记忆:
- 提取: 新消息 -> 时间线 / 角色 / 物品 / 记忆页
- 压缩: FRESH -> SUMMARY -> ARCHIVED, 时间线压实
- 检索: 向量预筛 -> 工具调用检索代理 -> 关键词兜底
"""

__version__ = "4.0.0"

from .config import Settings
from .memory.manager import Injection, MemoryManager
from .memory.types import CompressionLevel, MemoryStore, Page

__all__ = [
    "CompressionLevel",
    "Injection",
    "MemoryManager",
    "MemoryStore",
    "Page",
    "Settings",
    "__version__",
]
