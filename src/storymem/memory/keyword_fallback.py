"""
关键词兜底检索

纯函数, 不调用任何网关。检索代理不可用或没有选出内容时使用。

评分 (只看 compressionLevel <= SUMMARY 的页):
- 页关键词与查询词完全相同: +2
- 页关键词与查询词互为子串 (不相同): 每对 +1
- significance 为 high: +1
- 仍为 FRESH: +0.5
得分为 0 的页排除。拉丁字母比较不区分大小写。
"""

from __future__ import annotations

import re

from .types import CHARACTER_CAP, ChatMessage, CompressionLevel, MemoryStore, RecallResult

_QUERY_TOKEN_RE = re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf]{2,}|[a-zA-Z]{3,}")


def extract_query_keywords(messages: list[ChatMessage]) -> set[str]:
    """从最近消息中提取查询词: 连续 2 个以上汉字, 或 3 个以上拉丁字母"""
    text = " ".join(m.text for m in messages)
    return {token.lower() for token in _QUERY_TOKEN_RE.findall(text)}


def score_page(keywords: list[str], query: set[str]) -> int:
    score = 0
    for kw in (k.lower() for k in keywords):
        if kw in query:
            score += 2
        for q in query:
            if q != kw and (q in kw or kw in q):
                score += 1
    return score


def keyword_fallback(
    store: MemoryStore,
    recent_messages: list[ChatMessage],
    max_pages: int,
) -> RecallResult:
    query = extract_query_keywords(recent_messages)
    if not query:
        return RecallResult(tier="keyword")

    scored = []
    for page in store.eligible_pages():
        score = float(score_page(page.keywords, query))
        if score == 0:
            continue
        if page.significance == "high":
            score += 1
        if page.compression_level == CompressionLevel.FRESH:
            score += 0.5
        scored.append((score, page))

    # sort 是稳定的, 同分时保持存档顺序
    scored.sort(key=lambda x: x[0], reverse=True)
    pages = [page for _, page in scored[:max(0, max_pages)]]

    wanted = {c.lower() for p in pages for c in p.characters}
    wanted |= {c.name.lower() for c in store.characters if c.name.lower() in query}
    characters = [c for c in store.characters if c.name.lower() in wanted][:CHARACTER_CAP]

    return RecallResult(pages=pages, characters=characters, tier="keyword")
