"""
配置管理系统

使用 Pydantic Settings 管理应用配置，支持环境变量和 .env 文件。
"""

import logging
from typing import List, Optional
from pathlib import Path
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class OpenAISettings(BaseSettings):
    """OpenAI 相关配置"""
    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    base_url: Optional[str] = Field(default=None, description="OpenAI API Base URL")
    model: str = Field(default="gpt-4o-mini", description="对话模型")
    embedding_model: str = Field(default="text-embedding-3-small", description="向量模型")
    timeout: float = Field(default=30.0, ge=1.0, le=120.0, description="单次请求超时时间(秒)")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="生成温度")
    max_tokens: int = Field(default=500, ge=100, le=4000, description="最大生成 token 数")


class VectorStoreSettings(BaseSettings):
    """向量检索配置"""
    model_config = SettingsConfigDict(env_prefix="VECTOR_")

    backend: str = Field(default="chroma", description="向量索引后端 (chroma/memory)")
    persist_directory: Path = Field(
        default=_PROJECT_ROOT / "chroma_data",
        description="Chroma 持久化目录"
    )
    collection_name: str = Field(default="menu_products", description="Chroma 集合名称")
    top_k: int = Field(default=5, ge=1, le=50, description="检索返回条数")

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("chroma", "memory"):
            raise ValueError(f"无效的向量索引后端: {v}, 有效值: ['chroma', 'memory']")
        return v


class AgentSettings(BaseSettings):
    """各阶段 Agent 配置"""
    model_config = SettingsConfigDict(env_prefix="AGENT_")

    history_window: int = Field(default=6, ge=1, le=50, description="发送给模型的最近消息数")
    max_attempts: int = Field(default=2, ge=1, le=2, description="单个阶段最多尝试次数（含首次）")
    retry_wait: float = Field(default=0.5, ge=0.0, le=10.0, description="重试前等待时间(秒)")
    recommendation_top_n: int = Field(default=3, ge=1, le=10, description="关联推荐条数")
    popular_fallback_n: int = Field(default=3, ge=1, le=10, description="热销推荐条数")
    fuzzy_threshold: float = Field(default=0.75, ge=0.0, le=1.0, description="商品名模糊匹配阈值")
    upsell_on_confirm: bool = Field(default=True, description="请求确认订单时附带搭配推荐")


class SessionSettings(BaseSettings):
    """会话配置"""
    model_config = SettingsConfigDict(env_prefix="SESSION_")

    idle_timeout: int = Field(default=1800, ge=60, le=86400, description="空闲超时时间(秒)")
    cleanup_interval: int = Field(default=60, ge=5, le=3600, description="空闲会话清理间隔(秒)")
    busy_policy: str = Field(default="queue", description="同一会话并发轮次策略 (queue/reject)")

    @field_validator('busy_policy')
    @classmethod
    def validate_busy_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("queue", "reject"):
            raise ValueError(f"无效的并发策略: {v}, 有效值: ['queue', 'reject']")
        return v


class CircuitBreakerSettings(BaseSettings):
    """熔断器相关配置"""
    model_config = SettingsConfigDict(env_prefix="CIRCUIT_BREAKER_")

    enabled: bool = Field(default=True, description="是否启用熔断器")
    failure_threshold: int = Field(default=5, ge=1, le=100, description="失败阈值")
    success_threshold: int = Field(default=3, ge=1, le=50, description="恢复阈值")
    timeout: float = Field(default=30.0, ge=1.0, le=300.0, description="熔断超时时间(秒)")


class DataSettings(BaseSettings):
    """静态数据文件配置"""
    model_config = SettingsConfigDict(env_prefix="DATA_")

    menu_path: Path = Field(default=_PROJECT_ROOT / "data" / "menu.yaml", description="菜单文件")
    rules_path: Path = Field(
        default=_PROJECT_ROOT / "data" / "association_rules.yaml",
        description="关联规则文件"
    )


class ServerSettings(BaseSettings):
    """服务器相关配置"""
    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(default="0.0.0.0", description="监听地址")
    port: int = Field(default=8000, ge=1, le=65535, description="监听端口")
    debug: bool = Field(default=False, description="调试模式")


class LoggingSettings(BaseSettings):
    """日志相关配置"""
    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="日志级别")
    format: str = Field(default="structured", description="日志格式 (structured/plain)")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"无效的日志级别: {v}, 有效值: {valid_levels}")
        return v


class CORSSettings(BaseSettings):
    """CORS 相关配置"""
    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: List[str] = Field(default=["*"], description="允许的来源")
    allow_credentials: bool = Field(default=True, description="是否允许凭证")


class Settings(BaseSettings):
    """应用主配置"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = Field(default="CaféMind 点单助手", description="应用名称")
    app_version: str = Field(default="1.0.0", description="应用版本")
    environment: str = Field(default="development", description="运行环境")

    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    vector: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    data: DataSettings = Field(default_factory=DataSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ['development', 'staging', 'production', 'testing']
        v = v.lower()
        if v not in valid_envs:
            raise ValueError(f"无效的环境: {v}, 有效值: {valid_envs}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def to_dict(self) -> dict:
        """转换为字典（隐藏敏感信息）"""
        return {
            "app_name": self.app_name,
            "app_version": self.app_version,
            "environment": self.environment,
            "openai": {
                "model": self.openai.model,
                "embedding_model": self.openai.embedding_model,
                "base_url": self.openai.base_url,
                "has_api_key": bool(self.openai.api_key),
                "timeout": self.openai.timeout
            },
            "vector": {
                "backend": self.vector.backend,
                "collection_name": self.vector.collection_name,
                "top_k": self.vector.top_k
            },
            "agent": {
                "history_window": self.agent.history_window,
                "max_attempts": self.agent.max_attempts,
                "recommendation_top_n": self.agent.recommendation_top_n
            },
            "session": {
                "idle_timeout": self.session.idle_timeout,
                "busy_policy": self.session.busy_policy
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format
            }
        }


# ==================== 全局实例 ====================

@lru_cache()
def get_settings() -> Settings:
    """获取配置实例（缓存）"""
    settings = Settings()
    logger.info(f"配置已加载: {settings.environment} 环境")
    return settings


def reload_settings() -> Settings:
    """重新加载配置"""
    get_settings.cache_clear()
    return get_settings()


def get_openai_settings() -> OpenAISettings:
    """获取 OpenAI 配置"""
    return get_settings().openai


def get_agent_settings() -> AgentSettings:
    """获取 Agent 配置"""
    return get_settings().agent
