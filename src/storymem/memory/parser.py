"""
模型输出 JSON 解析

模型输出是不可信文本: 可能包在 ``` 代码块里, 字符串里可能有未转义的换行、
引号, 对象末尾可能多一个逗号。parse_json_response 依次尝试三种策略,
每种都先经过 fix_json_string 清洗再严格解析, 全部失败返回 None。
"""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]+)\n?\s*```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SMART_DOUBLE_RE = re.compile(r"[\u201C\u201D\u201E\u201F\u2033\u2036]")
_SMART_SINGLE_RE = re.compile(r"[\u2018\u2019\u201A\u201B\u2032\u2035]")

# 字符串内遇到引号时, 后面紧跟这些字符才视为字符串结束
_STRUCTURAL = {":", ",", "}", "]"}


def fix_json_string(text: str) -> str:
    """
    单遍扫描修复 JSON 文本

    - 字符串内的换行 / 制表符转义, 回车丢弃
    - 字符串内的引号: 向后跳过空白, 若下一个字符是结构符或已到结尾则视为结束引号,
      否则转义为内容
    - 最后去掉 } ] 之前的多余逗号
    """
    out: list[str] = []
    in_string = False
    escaped = False
    n = len(text)

    for i, ch in enumerate(text):
        if escaped:
            out.append(ch)
            escaped = False
            continue

        if ch == "\\" and in_string:
            out.append(ch)
            escaped = True
            continue

        if ch == '"':
            if not in_string:
                in_string = True
                out.append(ch)
                continue

            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j >= n or text[j] in _STRUCTURAL:
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
            continue

        if in_string:
            if ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                continue
            elif ch == "\t":
                out.append("\\t")
            else:
                out.append(ch)
            continue

        out.append(ch)

    return _TRAILING_COMMA_RE.sub(r"\1", "".join(out))


def _try_load(candidate: str) -> dict | None:
    try:
        result = json.loads(fix_json_string(candidate), strict=False)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, dict) else None


def _outer_braces(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_response(text: str | None) -> dict | None:
    """
    从模型输出中提取一个 JSON 对象

    策略:
    1. ``` 代码块内的内容
    2. 全文第一个 { 到最后一个 }
    3. 同 2, 但先把弯引号替换为直引号, 由清洗步骤决定哪些需要转义

    Returns:
        解析出的 dict, 失败返回 None (不会返回部分结果)
    """
    if not text:
        return None

    match = _CODE_BLOCK_RE.search(text)
    if match:
        result = _try_load(match.group(1).strip())
        if result is not None:
            return result

    braces = _outer_braces(text)
    if braces:
        result = _try_load(braces)
        if result is not None:
            return result

    normalized = _SMART_SINGLE_RE.sub("'", _SMART_DOUBLE_RE.sub('"', text))
    braces = _outer_braces(normalized)
    if braces:
        result = _try_load(braces)
        if result is not None:
            return result

    logger.warning(f"[Parser] All strategies failed, preview={text[:200]!r}")
    return None
