"""工具定义"""

from .recall import (
    DIRECT_FETCH_TOOLS,
    RECALL_TOOLS,
    SEARCH_TOOLS,
    build_recall_tools,
)

__all__ = ["DIRECT_FETCH_TOOLS", "RECALL_TOOLS", "SEARCH_TOOLS", "build_recall_tools"]
