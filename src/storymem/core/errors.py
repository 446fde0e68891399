"""
StoryMem 错误类型

捕获位置:
- GatewayError: 调用点捕获, 检索降级到下一层, 提取/压缩放弃本轮
- ParseError: 提取放弃本轮, 计入连续失败次数
- StoreLoadError: 存档无法加载, 原存档不会被覆盖
  - MigrationError: 版本无法识别
  - CorruptStoreError: 持久化的内容无法解码或结构不符
"""

from __future__ import annotations


class StoryMemError(Exception):
    """StoryMem 错误基类"""


class GatewayError(StoryMemError):
    """文本生成 / Embedding 网关调用失败 (网络错误、非 2xx、空响应)"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(StoryMemError):
    """模型输出中无法解析出 JSON 对象"""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.preview = raw_text[:200]


class StoreLoadError(StoryMemError):
    """存档无法加载"""


class MigrationError(StoreLoadError):
    """存档版本无法识别 (未知 / 未来版本 / 结构不符)"""


class CorruptStoreError(StoreLoadError):
    """持久化的存档不是可解码的 JSON 对象"""
