"""
StoryMem 配置模块
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """记忆系统配置"""

    # 总开关
    enabled: bool = Field(default=True, description="是否启用记忆 (自动提取与每轮注入)")

    # 日志
    log_level: str = Field(default="INFO", description="日志级别")
    log_file: str = Field(default="logs/storymem.log", description="日志文件路径 (空字符串则不写文件)")

    # 存储
    database_path: str = Field(default="data/storymem.db", description="SQLite 数据库路径")

    # === 角色识别 ===
    protagonist_name: str = Field(default="", description="主角名 (从所有角色列表中排除)")
    known_character_names: list[str] = Field(
        default_factory=list,
        description="预设的已知角色名 (只跟踪态度, 大小写不敏感)",
    )

    # === 提取 ===
    extraction_interval: int = Field(default=5, description="累积多少条新消息后自动提取")
    extraction_max_tokens: int = Field(default=4096, description="提取调用的最大输出 token")
    init_chunk_size: int = Field(default=20, description="历史回填时每批消息数")
    init_max_tokens: int = Field(default=8192, description="历史回填调用的最大输出 token")
    min_page_content_length: int = Field(default=10, description="记忆页正文最短长度")
    failure_warning_threshold: int = Field(default=3, description="连续失败多少次后提示一次")

    # === 压缩 ===
    auto_compress: bool = Field(default=True, description="提取成功后是否自动压缩")
    compress_after_pages: int = Field(default=15, description="FRESH 页上限, 超出部分压缩为摘要")
    archive_after_pages: int = Field(default=20, description="SUMMARY 页上限, 超出部分归档删除")
    max_timeline_entries: int = Field(default=20, description="时间线最大行数")
    timeline_recent_lines: int = Field(default=5, description="压实时间线时原样保留的最近行数")

    # === 检索 ===
    max_pages: int = Field(default=3, description="每轮最多召回的记忆页数")
    recent_window: int = Field(default=5, description="检索查询使用的最近消息条数")

    # === 自动隐藏 ===
    auto_hide: bool = Field(default=False, description="提取后允许宿主隐藏已处理的旧消息")
    keep_recent_messages: int = Field(default=10, description="自动隐藏时始终保留可见的最近消息条数")

    # === 文本生成网关 (OpenAI 兼容) ===
    llm_base_url: str = Field(default="", description="Chat Completions API Base URL")
    llm_api_key: str = Field(default="", description="API Key")
    llm_model: str = Field(default="", description="模型名")
    llm_temperature: float = Field(default=0.3, description="采样温度")
    llm_timeout: float = Field(default=60.0, description="请求超时 (秒)")

    # === Embedding 网关 (OpenAI 兼容, 可选) ===
    embedding_enabled: bool = Field(default=False, description="是否启用向量预筛")
    embedding_base_url: str = Field(default="", description="Embeddings API Base URL")
    embedding_api_key: str = Field(default="", description="Embedding API Key")
    embedding_model: str = Field(default="text-embedding-3-small", description="Embedding 模型")
    embedding_dimensions: int = Field(default=1024, description="向量维度")
    embedding_top_k: int = Field(default=8, description="向量预筛保留的候选页数")
    embedding_timeout: float = Field(default=30.0, description="Embedding 请求超时 (秒)")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def embedding_configured(self) -> bool:
        return bool(self.embedding_enabled and self.embedding_base_url and self.embedding_api_key)


# 全局配置实例
settings = Settings()
