"""
网关数据类型与协议
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class Tool:
    """工具定义 (内部格式)"""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCall:
    """模型发出的一次工具调用, arguments 已解码为 dict"""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = ""


@dataclass
class ToolResponse:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@runtime_checkable
class TextGenerator(Protocol):
    """文本生成网关"""

    @property
    def available(self) -> bool: ...

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str: ...

    async def generate_with_tools(
        self, prompt: str, tools: list[Tool], max_tokens: int
    ) -> ToolResponse: ...


@runtime_checkable
class Embedder(Protocol):
    """Embedding 网关"""

    @property
    def available(self) -> bool: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...
