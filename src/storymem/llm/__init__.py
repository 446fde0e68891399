"""
外部网关: 文本生成 (Chat Completions) 与 Embedding, 均为 OpenAI 兼容协议
"""

from .client import LLMClient
from .embedding_client import EmbeddingClient
from .types import Embedder, TextGenerator, Tool, ToolCall, ToolResponse

__all__ = [
    "EmbeddingClient",
    "Embedder",
    "LLMClient",
    "TextGenerator",
    "Tool",
    "ToolCall",
    "ToolResponse",
]
