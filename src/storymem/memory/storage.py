"""
记忆存档持久化 (SQLite)

每个对话 key 一行, data 列保存整份 MemoryStore 文档 (JSON)。
存档按原样读写, 版本迁移由 MemoryManager 在加载后完成。
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from ..core.errors import CorruptStoreError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS memory_stores (
    key TEXT PRIMARY KEY,
    version INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class MemoryStorage:
    """对话记忆存档的 SQLite 存储"""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute(_SCHEMA)
        self._conn.commit()

    def load(self, key: str) -> dict | None:
        """
        读取存档文档

        Returns:
            文档 dict, key 不存在时返回 None

        Raises:
            CorruptStoreError: 存储的内容不是 JSON 对象 (不会被自动覆盖)
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM memory_stores WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error(f"[Storage] Corrupted document for key={key}: {e}")
            raise CorruptStoreError(f"Stored document for {key} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            logger.error(f"[Storage] Document for key={key} is {type(data).__name__}, not an object")
            raise CorruptStoreError(f"Stored document for {key} is not a JSON object")
        return data

    def save(self, key: str, data: dict) -> None:
        version = data.get("version")
        payload = json.dumps(data, ensure_ascii=False)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO memory_stores (key, version, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    version = excluded.version,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (key, version if isinstance(version, int) else 0, payload,
                 datetime.now().isoformat()),
            )
            self._conn.commit()
        logger.debug(f"[Storage] Saved key={key} ({len(payload)} bytes)")

    def delete(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM memory_stores WHERE key = ?", (key,))
            self._conn.commit()
            return cur.rowcount > 0

    def list_keys(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM memory_stores ORDER BY updated_at DESC"
            ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
