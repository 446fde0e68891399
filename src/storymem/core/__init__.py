"""核心模块: 错误类型"""

from .errors import (
    CorruptStoreError,
    GatewayError,
    MigrationError,
    ParseError,
    StoreLoadError,
    StoryMemError,
)

__all__ = [
    "CorruptStoreError",
    "GatewayError",
    "MigrationError",
    "ParseError",
    "StoreLoadError",
    "StoryMemError",
]
