"""
工具调用格式转换器

负责在内部格式和 OpenAI 格式之间转换工具定义和调用。
参数无法解析的调用直接丢弃, 不影响同一响应中的其他调用。
"""

import json
import logging

from ..types import Tool, ToolCall

logger = logging.getLogger(__name__)


def _try_repair_json(s: str) -> dict | None:
    """尝试修复被截断的 JSON 字符串。

    补齐缺少的引号和括号, 返回 None 表示修复失败。
    """
    s = s.strip()
    if not s or not s.startswith("{"):
        return None

    for suffix in ['"}', '"]}', '"}}', "}", "]}", "}}"]:
        try:
            result = json.loads(s + suffix)
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            continue

    return None


def convert_tools_to_openai(tools: list[Tool]) -> list[dict]:
    """
    将内部工具定义转换为 OpenAI 格式

    内部格式:
    {
        "name": "recall_story_page",
        "description": "...",
        "input_schema": {"type": "object", "properties": {...}}
    }

    OpenAI 格式:
    {
        "type": "function",
        "function": {
            "name": "recall_story_page",
            "description": "...",
            "parameters": {"type": "object", "properties": {...}}
        }
    }
    """
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            },
        }
        for tool in tools
    ]


def convert_tool_calls_from_openai(tool_calls: list[dict]) -> list[ToolCall]:
    """
    将 OpenAI 工具调用转换为内部格式

    OpenAI 格式:
    {
        "id": "call_xxx",
        "type": "function",
        "function": {"name": "recall_character", "arguments": "{\"name\": \"...\"}"}
    }
    """
    result = []
    for tc in tool_calls or []:
        if not isinstance(tc, dict):
            continue
        # 部分兼容网关缺失 type 字段, 但仍提供 function{name,arguments}
        func = tc.get("function") or {}
        tc_type = tc.get("type")
        if not isinstance(func, dict) or not func.get("name"):
            continue
        if tc_type not in (None, "", "function"):
            continue

        tool_name = func["name"]
        arguments = func.get("arguments") or "{}"
        if isinstance(arguments, str):
            try:
                input_dict = json.loads(arguments)
            except json.JSONDecodeError as je:
                input_dict = _try_repair_json(arguments)
                if input_dict is None:
                    logger.warning(
                        f"[TOOL_CALL] Dropping '{tool_name}': arguments not parseable "
                        f"({je}) preview={arguments[:200]!r}"
                    )
                    continue
                logger.info(f"[TOOL_CALL] JSON repair succeeded for tool '{tool_name}'")
        else:
            input_dict = arguments

        if not isinstance(input_dict, dict):
            logger.warning(f"[TOOL_CALL] Dropping '{tool_name}': arguments are not an object")
            continue

        result.append(ToolCall(name=tool_name, arguments=input_dict, id=tc.get("id", "")))

    return result
