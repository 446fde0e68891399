"""
存档版本迁移

每个版本边界一个纯函数 (不修改输入), 从文档当前版本开始依次执行,
不跳过任何中间版本:

- v1 -> v2: storyBible / memories 旧结构 -> 页式结构
- v2 -> v3: 扁平角色表拆分为已知角色态度与 NPC 档案, 页补充 categories
- v3 -> v4: 补充向量缓存, 统一字段命名 (recallLog / lastExtractedIndex / ...)

无法识别的版本直接抛出 MigrationError, 不做强制升级。
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from typing import Callable

from ..core.errors import MigrationError
from .types import STORE_VERSION

logger = logging.getLogger(__name__)

CURRENT_VERSION = STORE_VERSION


def _now_ms() -> int:
    return int(time.time() * 1000)


def _migration_1(data: dict) -> dict:
    bible = data.get("storyBible") or {}

    characters = [
        {
            "name": c.get("name", ""),
            "appearance": c.get("appearance", ""),
            "personality": c.get("personality", ""),
            "attitude": c.get("relationship") or c.get("attitude", ""),
            "currentState": "",
        }
        for c in bible.get("characters") or []
        if isinstance(c, dict)
    ]
    items = [
        {
            "name": i.get("name", ""),
            "status": i.get("status", ""),
            "significance": i.get("significance", ""),
        }
        for i in bible.get("items") or []
        if isinstance(i, dict)
    ]
    pages = [
        {
            "id": m.get("id") or f"pg_{uuid.uuid4().hex[:16]}",
            "day": m.get("day", ""),
            "title": m.get("title", ""),
            "content": m.get("content", ""),
            "keywords": list(m.get("tags") or []),
            "characters": [],
            "significance": m.get("significance", "medium"),
            "compressionLevel": 0,
            "sourceMessages": list(m.get("sourceMessages") or []),
            "createdAt": m.get("createdAt") or _now_ms(),
            "compressedAt": None,
        }
        for m in data.get("memories") or []
        if isinstance(m, dict) and m.get("status") == "active"
    ]

    processing = {"lastExtractedMessageId": -1, "extractionInProgress": False}
    processing.update(data.get("processing") or {})

    return {
        "version": 2,
        "timeline": bible.get("timeline", "") or "",
        "characters": characters,
        "items": items,
        "pages": pages,
        "processing": processing,
        "messageRecalls": dict(data.get("messageRecalls") or {}),
    }


def _migration_2(data: dict) -> dict:
    out = copy.deepcopy(data)

    known: list[dict] = []
    dossiers: list[dict] = []
    for c in out.get("characters") or []:
        if not isinstance(c, dict) or not c.get("name"):
            continue
        attitude = c.get("attitude") or c.get("relationship") or ""
        if c.get("appearance") or c.get("personality"):
            dossiers.append({**c, "attitude": attitude})
        else:
            known.append({"name": c["name"], "attitude": attitude})

    # 同名时保留档案
    dossier_names = {d["name"].lower() for d in dossiers}
    out["knownCharacterAttitudes"] = [k for k in known if k["name"].lower() not in dossier_names]
    out["characters"] = dossiers

    for page in out.get("pages") or []:
        page.setdefault("categories", [])

    out["version"] = 3
    return out


def _migration_3(data: dict) -> dict:
    out = copy.deepcopy(data)

    processing = out.pop("processing", None) or {}
    out["processing"] = {
        "lastExtractedIndex": processing.get(
            "lastExtractedIndex", processing.get("lastExtractedMessageId", -1)
        ),
        "inProgress": bool(
            processing.get("inProgress", processing.get("extractionInProgress", False))
        ),
    }
    out["recallLog"] = out.pop("messageRecalls", None) or out.get("recallLog") or {}
    out.setdefault("embeddings", {})

    for page in out.get("pages") or []:
        if "sourceMessageIndices" not in page:
            page["sourceMessageIndices"] = page.pop("sourceMessages", None) or []
        else:
            page.pop("sourceMessages", None)

    out["version"] = 4
    return out


MIGRATIONS: dict[int, Callable[[dict], dict]] = {
    1: _migration_1,
    2: _migration_2,
    3: _migration_3,
}


def detect_version(data: dict) -> int:
    """
    推断文档版本

    没有 version 字段时按结构推断: storyBible / memories 为 v1, 有 pages 为 v2。
    """
    if not isinstance(data, dict):
        raise MigrationError(f"Store document must be an object, got {type(data).__name__}")

    version = data.get("version")
    if version is None:
        if "storyBible" in data or "memories" in data:
            return 1
        if "pages" in data:
            return 2
        raise MigrationError("Store document has no version and an unrecognized layout")

    if isinstance(version, bool) or not isinstance(version, int):
        raise MigrationError(f"Store version must be an integer, got {version!r}")
    if version < 1 or version > CURRENT_VERSION:
        raise MigrationError(f"Unknown store version {version} (current is {CURRENT_VERSION})")
    return version


def needs_migration(data: dict) -> bool:
    return detect_version(data) < CURRENT_VERSION


def migrate(raw: dict) -> dict:
    """
    把任意已知版本的文档升级到当前版本

    当前版本的文档原样返回 (深拷贝), 因此重复执行是幂等的。

    Raises:
        MigrationError: 版本无法识别
    """
    version = detect_version(raw)
    data = copy.deepcopy(raw)

    while version < CURRENT_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise MigrationError(f"No migration registered for version {version}")
        data = step(data)
        logger.info(f"[Migration] v{version} -> v{version + 1}")
        version += 1

    data["version"] = CURRENT_VERSION
    return data
