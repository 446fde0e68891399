"""日志初始化"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_MARK = "_storymem_handler"


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    配置 storymem 包的根 logger

    重复调用只更新级别, 不会叠加 handler。

    Args:
        level: 日志级别名
        log_file: 日志文件路径, None 或空字符串表示只输出到控制台
        max_bytes: 单个日志文件大小上限
        backup_count: 保留的滚动文件数

    Returns:
        storymem 根 logger
    """
    root = logging.getLogger("storymem")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(getattr(h, _HANDLER_MARK, False) for h in root.handlers):
        return root

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    setattr(console, _HANDLER_MARK, True)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARK, True)
        root.addHandler(file_handler)

    return root
