"""
记忆提取器

功能:
1. 增量提取: 新消息 -> 时间线 / 已知角色态度 / NPC 档案 / 物品 / 新记忆页
2. 批量回填: 先处理一段静态设定资料, 再按固定块大小依次处理历史消息

每次提取只调用一次文本生成网关, 结果经 parse_json_response 解析后
由 apply_extraction 合并进 MemoryStore。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable

from ..core.errors import GatewayError, ParseError
from .parser import parse_json_response
from .types import (
    PAGE_CATEGORIES,
    SIGNIFICANCE_LEVELS,
    ChatMessage,
    CompressionLevel,
    Item,
    KnownCharacterAttitude,
    MemoryStore,
    NPCDossier,
    Page,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "你是剧情记忆整理系统。只输出要求的 JSON 代码块, 不要输出任何其他内容。"


def format_messages(messages: list[tuple[int, ChatMessage]]) -> str:
    """把 (下标, 消息) 列表格式化为提取输入文本, 跳过系统消息与空消息"""
    return "\n\n".join(
        f"{msg.name}: {msg.text}"
        for _, msg in messages
        if not msg.is_system and msg.text.strip()
    )


# ---------------------------------------------------------------------------
# 解析结果
# ---------------------------------------------------------------------------


def _dict_list(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


@dataclass
class ExtractionPayload:
    """模型返回的提取结果 (已做形状校验, 字段语义在合并时校验)"""

    timeline: str | None = None
    known_characters: list[dict] = field(default_factory=list)
    characters: list[dict] = field(default_factory=list)
    items: list[dict] | None = None
    new_pages: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict) -> ExtractionPayload:
        timeline = raw.get("timeline")
        if isinstance(timeline, list):
            timeline = "\n".join(str(line) for line in timeline)
        return cls(
            timeline=timeline.strip() if isinstance(timeline, str) and timeline.strip() else None,
            known_characters=_dict_list(raw.get("knownCharacters")),
            characters=_dict_list(raw.get("characters")),
            items=_dict_list(raw["items"]) if isinstance(raw.get("items"), list) else None,
            new_pages=_dict_list(raw.get("newPages")),
        )


@dataclass
class ExtractionReport:
    new_pages: list[Page] = field(default_factory=list)
    timeline_updated: bool = False
    known_updated: int = 0
    dropped_known: int = 0
    dropped_pages: int = 0


# ---------------------------------------------------------------------------
# 合并
# ---------------------------------------------------------------------------


def _clean_keywords(value) -> list[str]:
    if not isinstance(value, list):
        return []
    seen: set[str] = set()
    result = []
    for kw in value:
        if not isinstance(kw, str):
            continue
        kw = kw.strip()
        if kw and kw not in seen:
            seen.add(kw)
            result.append(kw)
    return result


def apply_extraction(
    store: MemoryStore,
    payload: ExtractionPayload,
    known_names: list[str] | None = None,
    protagonist: str = "",
    source_indices: list[int] | None = None,
    min_content_length: int = 10,
) -> ExtractionReport:
    """
    把提取结果合并进 store (原地修改)

    - timeline: 非空时整体替换
    - knownCharacters: 只接受预设名单内的名字, 按名字更新态度
    - characters: 非空列表整体替换 NPC 档案 (排除主角与预设角色)
    - items: 返回列表时整体替换
    - newPages: 校验后追加, categories 过滤, characters 取 keywords 与 NPC 名的交集
    """
    report = ExtractionReport()
    hero = protagonist.strip().lower()
    known = {n.strip().lower() for n in (known_names or []) if n.strip()}
    known.discard(hero)

    if payload.timeline is not None:
        store.timeline = payload.timeline
        report.timeline_updated = True

    # 已知角色: 只更新态度
    for record in payload.known_characters:
        name = str(record.get("name", "")).strip()
        if not name or name.lower() not in known:
            report.dropped_known += 1
            continue
        attitude = str(record.get("attitude", "") or "")
        existing = next(
            (k for k in store.known_character_attitudes if k.name.lower() == name.lower()), None
        )
        if existing is not None:
            existing.attitude = attitude or existing.attitude
        else:
            store.known_character_attitudes.append(KnownCharacterAttitude(name=name, attitude=attitude))
        report.known_updated += 1

    # NPC 档案: 本期列表整体替换
    if payload.characters:
        dossiers: list[NPCDossier] = []
        seen: set[str] = set()
        for record in payload.characters:
            npc = NPCDossier.from_dict(record)
            key = npc.name.lower()
            if not npc.name or key == hero or key in known or key in seen:
                continue
            if not npc.attitude and record.get("relationship"):
                npc.attitude = str(record["relationship"])
            seen.add(key)
            dossiers.append(npc)
        if dossiers:
            store.characters = dossiers

    # 同一个名字只能出现在一处, 主角不出现在任何一处
    npc_keys = {c.name.lower() for c in store.characters}
    store.known_character_attitudes = [
        k for k in store.known_character_attitudes
        if k.name.lower() != hero and (k.name.lower() in known or k.name.lower() not in npc_keys)
    ]
    known_keys = {k.name.lower() for k in store.known_character_attitudes}
    store.characters = [c for c in store.characters if c.name.lower() not in known_keys]

    if payload.items is not None:
        store.items = [Item.from_dict(i) for i in payload.items if str(i.get("name", "")).strip()]

    npc_by_key = {c.name.lower(): c.name for c in store.characters}
    for raw in payload.new_pages:
        title = str(raw.get("title", "") or "").strip()
        content = str(raw.get("content", "") or "").strip()
        keywords = _clean_keywords(raw.get("keywords"))
        if not title or len(content) < min_content_length or not keywords:
            report.dropped_pages += 1
            continue

        categories = []
        for cat in raw.get("categories") or []:
            if isinstance(cat, str) and cat in PAGE_CATEGORIES and cat not in categories:
                categories.append(cat)

        characters = []
        for kw in keywords:
            name = npc_by_key.get(kw.lower())
            if name and name not in characters:
                characters.append(name)

        significance = raw.get("significance")
        page = Page(
            day=str(raw.get("day", "") or ""),
            title=title,
            content=content,
            keywords=keywords,
            characters=characters,
            categories=categories,
            significance=significance if significance in SIGNIFICANCE_LEVELS else "medium",
            compression_level=CompressionLevel.FRESH,
            source_message_indices=list(source_indices or []),
        )
        store.pages.append(page)
        report.new_pages.append(page)

    return report


# ---------------------------------------------------------------------------
# MemoryExtractor
# ---------------------------------------------------------------------------


class MemoryExtractor:
    """调用文本生成网关的提取器"""

    EXTRACTION_PROMPT = """[剧情记忆整理] 暂停角色扮演。阅读下方的新内容, 更新故事记忆。

## 现有记忆

### 时间线
{timeline}

### 预设角色 (只记录态度变化)
名单: {known_names}
当前态度:
{known_json}

### NPC 档案
{characters_json}

### 重要物品
{items_json}

## 新内容
{content}

## 要求

1. timeline: 输出合并后的完整时间线, 每行一条。
   - 最近 {recent_lines} 天每天一行: "D天数: 事件"
   - 更早的天数合并为区间: "D起-D止: 概括"
   - 只写推动剧情的事件, 旧信息可以精简措辞但不能丢
   - 每行不超过 60 字, 总共不超过 {max_lines} 行
2. 角色分类 (名字比较不区分大小写):
   - 名字在预设名单里 -> 放进 knownCharacters, 只写 name 和 attitude
   - 其他新出现的人物 -> 放进 characters, 写完整档案
   - 主角 "{protagonist}" 不放进任何列表
3. characters 与 items 都输出完整列表, 包含没有变化的旧条目。
4. newPages: 为值得长期记住的事件各写一页。
   - 写清楚事情为什么发生、导致了什么, 不要按时间顺序流水账
   - 没有剧情意义的闲聊、重复动作直接跳过, 没有就输出空数组
   - title 4-8 字, content 80-200 字, keywords 3-8 个 (包含人物名、地点、物品)
   - categories 从以下取值中选择: {categories}
   - significance 取 "high" (转折/关系变化) 或 "medium"

## 输出格式
```json
{{
  "timeline": "D1-D3: ...\\nD4: ...",
  "knownCharacters": [{{"name": "...", "attitude": "..."}}],
  "characters": [{{"name": "...", "appearance": "...", "personality": "...", "attitude": "...", "currentState": "..."}}],
  "items": [{{"name": "...", "status": "...", "significance": "..."}}],
  "newPages": [{{"title": "...", "day": "D4", "content": "...", "keywords": ["..."], "categories": ["conflict"], "significance": "high"}}]
}}
```"""

    INIT_EXTRACTION_PROMPT = """[剧情记忆整理 - 批量初始化] 暂停角色扮演。正在从已有内容分批构建记忆, 这是其中一批。

## 之前批次积累的记忆

### 时间线
{timeline}

### 预设角色 (只记录态度变化)
名单: {known_names}
当前态度:
{known_json}

### NPC 档案
{characters_json}

### 重要物品
{items_json}

## 本批内容
{content}

## 要求

1. timeline: 把本批事件并入时间线, 每行 "D天数: 事件", 保留全部旧条目, 按时间排序。
2. 角色分类 (名字比较不区分大小写):
   - 名字在预设名单里 -> knownCharacters, 只写 name 和 attitude
   - 其他人物 -> characters, 写完整档案
   - 主角 "{protagonist}" 不放进任何列表
3. characters 与 items 输出完整列表。
4. newPages: 本批中每个转折、关系变化、情感高潮、关键对话都单独成页,
   即使时间线里已经提到也要建页。写清因果, 跳过无意义的片段。
   - title 4-8 字, content 80-200 字, keywords 3-8 个
   - categories 从以下取值中选择: {categories}
   - significance 取 "high" 或 "medium"

## 输出格式
```json
{{
  "timeline": "D1: ...\\nD2: ...",
  "knownCharacters": [{{"name": "...", "attitude": "..."}}],
  "characters": [{{"name": "...", "appearance": "...", "personality": "...", "attitude": "...", "currentState": "..."}}],
  "items": [{{"name": "...", "status": "...", "significance": "..."}}],
  "newPages": [{{"title": "...", "day": "D1", "content": "...", "keywords": ["..."], "categories": ["discovery"], "significance": "medium"}}]
}}
```"""

    def __init__(self, llm, settings) -> None:
        self.llm = llm
        self.settings = settings

    @property
    def known_names(self) -> list[str]:
        hero = self.settings.protagonist_name.strip().lower()
        return [n for n in self.settings.known_character_names if n.strip() and n.strip().lower() != hero]

    # ==================== Prompt ====================

    def build_prompt(self, store: MemoryStore, content: str, initializing: bool = False) -> str:
        template = self.INIT_EXTRACTION_PROMPT if initializing else self.EXTRACTION_PROMPT
        return template.format(
            timeline=store.timeline or "(暂无, 请从头建立)",
            known_names=", ".join(self.known_names) or "(无)",
            known_json=json.dumps(
                [k.to_dict() for k in store.known_character_attitudes], ensure_ascii=False, indent=2
            ),
            characters_json=json.dumps(
                [c.to_dict() for c in store.characters], ensure_ascii=False, indent=2
            ),
            items_json=json.dumps([i.to_dict() for i in store.items], ensure_ascii=False, indent=2),
            content=content,
            recent_lines=self.settings.timeline_recent_lines,
            max_lines=self.settings.max_timeline_entries,
            protagonist=self.settings.protagonist_name or "{{user}}",
            categories=", ".join(PAGE_CATEGORIES),
        )

    # ==================== 单次提取 ====================

    async def _generate_payload(
        self, store: MemoryStore, content: str, max_tokens: int, initializing: bool = False
    ) -> ExtractionPayload:
        prompt = self.build_prompt(store, content, initializing=initializing)
        response = await self.llm.generate(SYSTEM_PROMPT, prompt, max_tokens)
        logger.debug(f"[Extractor] Response length={len(response)}")

        parsed = parse_json_response(response)
        if parsed is None:
            raise ParseError("Failed to parse extraction response", raw_text=response)
        return ExtractionPayload.from_dict(parsed)

    def _apply(
        self, store: MemoryStore, payload: ExtractionPayload, source_indices: list[int] | None
    ) -> ExtractionReport:
        return apply_extraction(
            store,
            payload,
            known_names=self.known_names,
            protagonist=self.settings.protagonist_name,
            source_indices=source_indices,
            min_content_length=self.settings.min_page_content_length,
        )

    async def extract(
        self,
        store: MemoryStore,
        content: str,
        source_indices: list[int] | None = None,
    ) -> ExtractionReport:
        """
        对一段新内容执行一次提取并合并进 store

        生成或解析失败时 store 保持不变。

        Raises:
            GatewayError: 网关调用失败
            ParseError: 响应中没有可解析的 JSON 对象
        """
        payload = await self._generate_payload(store, content, self.settings.extraction_max_tokens)
        report = self._apply(store, payload, source_indices)
        logger.info(
            f"[Extractor] Extracted {len(report.new_pages)} new pages "
            f"(timeline_updated={report.timeline_updated}, dropped_pages={report.dropped_pages}, "
            f"dropped_known={report.dropped_known})"
        )
        return report

    # ==================== 批量回填 ====================

    async def extract_batch(
        self,
        store: MemoryStore,
        messages: list[ChatMessage],
        lore_text: str = "",
        on_batch_done: Callable[[int, int], None] | None = None,
    ) -> dict:
        """
        从已有历史批量构建记忆

        第 0 批是静态设定资料 (若有), 之后按 init_chunk_size 切分聊天消息。
        单批失败只记录日志, 继续处理后续批次。

        Args:
            store: 目标存档 (通常已由调用方重置)
            messages: 完整对话, 下标即消息下标
            lore_text: 静态设定资料
            on_batch_done: 每批结束后回调 (已处理批数, 总批数), 失败的批次也会回调

        Returns:
            {"total": 总批数, "succeeded": 成功批数, "pages": 新增页数}
        """
        chunk_size = max(1, self.settings.init_chunk_size)
        max_tokens = max(self.settings.extraction_max_tokens, self.settings.init_max_tokens)

        indexed = [
            (i, m) for i, m in enumerate(messages) if not m.is_system and m.text.strip()
        ]
        batches: list[tuple[str, str, list[int]]] = []
        if lore_text.strip():
            batches.append(("lore", lore_text, []))
        for start in range(0, len(indexed), chunk_size):
            chunk = indexed[start:start + chunk_size]
            batches.append(("chat", format_messages(chunk), [i for i, _ in chunk]))

        total = len(batches)
        succeeded = 0
        new_pages = 0
        logger.info(f"[Extractor] Batch init: {len(indexed)} messages in {total} batches")

        for n, (kind, text, indices) in enumerate(batches, start=1):
            try:
                payload = await self._generate_payload(store, text, max_tokens, initializing=True)
            except (GatewayError, ParseError) as e:
                logger.warning(f"[Extractor] Batch {n}/{total} ({kind}) failed: {e}")
            else:
                report = self._apply(store, payload, indices)
                if kind == "chat" and indices:
                    store.processing.last_extracted_index = indices[-1]
                succeeded += 1
                new_pages += len(report.new_pages)
                logger.info(f"[Extractor] Batch {n}/{total} ({kind}) done, pages={len(store.pages)}")

            if on_batch_done is not None:
                on_batch_done(n, total)

        return {"total": total, "succeeded": succeeded, "pages": new_pages}
