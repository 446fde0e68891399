"""
日志模块

每个模块使用 logging.getLogger(__name__), 消息以 [组件] 前缀标注。
setup_logging() 安装控制台与滚动文件两个 handler。
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
