"""工具处理器"""

from .commands import MemoryCommandHandler
from .recall import RecallSearchHandler

__all__ = ["MemoryCommandHandler", "RecallSearchHandler"]
