"""格式转换器"""

from .tools import convert_tool_calls_from_openai, convert_tools_to_openai

__all__ = ["convert_tool_calls_from_openai", "convert_tools_to_openai"]
