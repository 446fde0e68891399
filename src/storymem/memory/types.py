"""
记忆存储类型定义

MemoryStore 是每个对话一份的根文档, 持久化时字段名使用 camelCase,
顶层字段固定为:
version, timeline, knownCharacterAttitudes, characters, items, pages,
embeddings, processing, recallLog
"""

from __future__ import annotations

import copy
import math
import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum

STORE_VERSION = 4

CHARACTER_CAP = 2

PAGE_CATEGORIES: tuple[str, ...] = (
    "emotional",
    "relationship",
    "intimate",
    "promise",
    "conflict",
    "discovery",
    "turning_point",
    "daily",
)

SIGNIFICANCE_LEVELS: tuple[str, ...] = ("high", "medium")


class CompressionLevel(IntEnum):
    """压缩等级, 只增不减"""

    FRESH = 0
    SUMMARY = 1
    ARCHIVED = 2

    @property
    def label(self) -> str:
        return {0: "详细", 1: "摘要", 2: "归档"}[int(self)]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _page_id() -> str:
    return f"pg_{uuid.uuid4().hex[:16]}"


def _str_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _dicts(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _int(value, default: int | None) -> int | None:
    """宽松的整数转换, 无法识别时返回 default (bool 不算整数)"""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _vector(value) -> list[float] | None:
    if not isinstance(value, list) or not value:
        return None
    if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
        return None
    return [float(x) for x in value]


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------


@dataclass
class Page:
    """记忆页: 一段可压缩的叙事内容"""

    id: str = field(default_factory=_page_id)
    day: str = ""
    title: str = ""
    content: str = ""
    keywords: list[str] = field(default_factory=list)
    characters: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    significance: str = "medium"
    compression_level: CompressionLevel = CompressionLevel.FRESH
    source_message_indices: list[int] = field(default_factory=list)
    created_at: int = field(default_factory=_now_ms)
    compressed_at: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day": self.day,
            "title": self.title,
            "content": self.content,
            "keywords": list(self.keywords),
            "characters": list(self.characters),
            "categories": list(self.categories),
            "significance": self.significance,
            "compressionLevel": int(self.compression_level),
            "sourceMessageIndices": list(self.source_message_indices),
            "createdAt": self.created_at,
            "compressedAt": self.compressed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Page:
        try:
            level = CompressionLevel(_int(data.get("compressionLevel"), 0))
        except ValueError:
            level = CompressionLevel.FRESH
        indices = data.get("sourceMessageIndices")
        created_at = _int(data.get("createdAt"), None)
        return cls(
            id=str(data.get("id") or _page_id()),
            day=str(data.get("day", "") or ""),
            title=str(data.get("title", "") or ""),
            content=str(data.get("content", "") or ""),
            keywords=_str_list(data.get("keywords")),
            characters=_str_list(data.get("characters")),
            categories=[c for c in _str_list(data.get("categories")) if c in PAGE_CATEGORIES],
            significance=data.get("significance") if data.get("significance") in SIGNIFICANCE_LEVELS else "medium",
            compression_level=level,
            source_message_indices=[
                i for i in indices if isinstance(i, int) and not isinstance(i, bool)
            ] if isinstance(indices, list) else [],
            created_at=created_at if created_at and created_at > 0 else _now_ms(),
            compressed_at=_int(data.get("compressedAt"), None),
        )


# ---------------------------------------------------------------------------
# 角色 / 物品
# ---------------------------------------------------------------------------


@dataclass
class NPCDossier:
    """NPC 档案 (非预设角色的完整资料)"""

    name: str
    appearance: str = ""
    personality: str = ""
    attitude: str = ""
    current_state: str = ""

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "appearance": self.appearance,
            "personality": self.personality,
            "attitude": self.attitude,
        }
        if self.current_state:
            data["currentState"] = self.current_state
        return data

    @classmethod
    def from_dict(cls, data: dict) -> NPCDossier:
        return cls(
            name=str(data.get("name", "")).strip(),
            appearance=str(data.get("appearance", "") or ""),
            personality=str(data.get("personality", "") or ""),
            attitude=str(data.get("attitude", "") or ""),
            current_state=str(data.get("currentState", "") or ""),
        )


@dataclass
class KnownCharacterAttitude:
    """预设角色: 只跟踪对主角的态度"""

    name: str
    attitude: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "attitude": self.attitude}

    @classmethod
    def from_dict(cls, data: dict) -> KnownCharacterAttitude:
        return cls(
            name=str(data.get("name", "")).strip(),
            attitude=str(data.get("attitude", "") or ""),
        )


@dataclass
class Item:
    name: str
    status: str = ""
    significance: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "status": self.status, "significance": self.significance}

    @classmethod
    def from_dict(cls, data: dict) -> Item:
        return cls(
            name=str(data.get("name", "")).strip(),
            status=str(data.get("status", "") or ""),
            significance=str(data.get("significance", "") or ""),
        )


@dataclass
class ProcessingState:
    """提取进度与重入保护标记"""

    last_extracted_index: int = -1
    in_progress: bool = False

    def to_dict(self) -> dict:
        return {"lastExtractedIndex": self.last_extracted_index, "inProgress": self.in_progress}

    @classmethod
    def from_dict(cls, data: dict) -> ProcessingState:
        index = _int(data.get("lastExtractedIndex"), -1)
        return cls(
            last_extracted_index=max(-1, index),
            in_progress=data.get("inProgress") is True,
        )


@dataclass
class ChatMessage:
    """对话消息 (由宿主提供)"""

    name: str
    text: str
    is_system: bool = False


@dataclass
class RecallResult:
    """一次检索的结果"""

    pages: list[Page] = field(default_factory=list)
    characters: list[NPCDossier] = field(default_factory=list)
    tier: str = "none"

    @property
    def empty(self) -> bool:
        return not self.pages and not self.characters

    def capped(self, max_pages: int, max_characters: int = CHARACTER_CAP) -> RecallResult:
        return RecallResult(
            pages=self.pages[:max_pages],
            characters=self.characters[:max_characters],
            tier=self.tier,
        )


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


@dataclass
class MemoryStore:
    """单个对话的记忆根文档"""

    version: int = STORE_VERSION
    timeline: str = ""
    known_character_attitudes: list[KnownCharacterAttitude] = field(default_factory=list)
    characters: list[NPCDossier] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    pages: list[Page] = field(default_factory=list)
    embeddings: dict[str, list[float]] = field(default_factory=dict)
    processing: ProcessingState = field(default_factory=ProcessingState)
    recall_log: dict[str, list[str]] = field(default_factory=dict)

    # ==================== 查询 ====================

    def eligible_pages(self) -> list[Page]:
        """可被检索的页 (compressionLevel <= SUMMARY)"""
        return [p for p in self.pages if p.compression_level <= CompressionLevel.SUMMARY]

    def pages_at(self, level: CompressionLevel) -> list[Page]:
        return [p for p in self.pages if p.compression_level == level]

    def find_page(self, page_id: str) -> Page | None:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    def find_character(self, name: str) -> NPCDossier | None:
        key = name.strip().lower()
        for npc in self.characters:
            if npc.name.lower() == key:
                return npc
        return None

    def npc_names(self) -> list[str]:
        return [c.name for c in self.characters if c.name]

    def timeline_lines(self) -> list[str]:
        return [line for line in self.timeline.split("\n") if line.strip()]

    @property
    def is_empty(self) -> bool:
        return not (self.timeline or self.pages or self.characters or self.items
                    or self.known_character_attitudes)

    # ==================== 变更 ====================

    def remove_page(self, page_id: str) -> bool:
        """
        删除页, 同时清除其向量缓存与召回记录中的引用

        Returns:
            是否找到并删除
        """
        before = len(self.pages)
        self.pages = [p for p in self.pages if p.id != page_id]
        if len(self.pages) == before:
            return False

        self.embeddings.pop(page_id, None)
        for turn_id in list(self.recall_log):
            remaining = [pid for pid in self.recall_log[turn_id] if pid != page_id]
            if remaining:
                self.recall_log[turn_id] = remaining
            else:
                del self.recall_log[turn_id]
        return True

    def prune_embeddings(self) -> int:
        """删除不再对应可检索页的向量"""
        live = {p.id for p in self.eligible_pages()}
        stale = [pid for pid in self.embeddings if pid not in live]
        for pid in stale:
            del self.embeddings[pid]
        return len(stale)

    def record_recall(self, turn_id: str, page_ids: list[str]) -> None:
        if page_ids:
            self.recall_log[str(turn_id)] = list(page_ids)

    def copy(self) -> MemoryStore:
        return copy.deepcopy(self)

    # ==================== 序列化 ====================

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "timeline": self.timeline,
            "knownCharacterAttitudes": [k.to_dict() for k in self.known_character_attitudes],
            "characters": [c.to_dict() for c in self.characters],
            "items": [i.to_dict() for i in self.items],
            "pages": [p.to_dict() for p in self.pages],
            "embeddings": {pid: list(vec) for pid, vec in self.embeddings.items()},
            "processing": self.processing.to_dict(),
            "recallLog": {tid: list(ids) for tid, ids in self.recall_log.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> MemoryStore:
        """
        从当前版本的文档构建 (旧版本需先经过 migration.migrate)

        字段类型不符时逐项丢弃或回退默认值, 不会因为单个字段损坏而整体失败。
        """
        raw_embeddings = data.get("embeddings")
        embeddings = {}
        if isinstance(raw_embeddings, dict):
            for pid, vec in raw_embeddings.items():
                vector = _vector(vec)
                if vector is not None:
                    embeddings[str(pid)] = vector

        raw_log = data.get("recallLog")
        recall_log = {}
        if isinstance(raw_log, dict):
            for tid, ids in raw_log.items():
                ids = _str_list(ids)
                if ids:
                    recall_log[str(tid)] = ids

        processing = data.get("processing")
        return cls(
            version=_int(data.get("version"), STORE_VERSION),
            timeline=str(data.get("timeline", "") or ""),
            known_character_attitudes=[
                KnownCharacterAttitude.from_dict(k)
                for k in _dicts(data.get("knownCharacterAttitudes"))
                if k.get("name")
            ],
            characters=[
                NPCDossier.from_dict(c) for c in _dicts(data.get("characters")) if c.get("name")
            ],
            items=[Item.from_dict(i) for i in _dicts(data.get("items")) if i.get("name")],
            pages=[Page.from_dict(p) for p in _dicts(data.get("pages"))],
            embeddings=embeddings,
            processing=ProcessingState.from_dict(processing if isinstance(processing, dict) else {}),
            recall_log=recall_log,
        )
