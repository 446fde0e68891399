"""
检索工具: 定义 (带实时枚举) 与本地处理器
"""
