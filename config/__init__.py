"""配置模块"""

from .settings import (
    get_settings,
    reload_settings,
    get_openai_settings,
    get_agent_settings,
    Settings,
    OpenAISettings,
    VectorStoreSettings,
    AgentSettings,
    SessionSettings,
    CircuitBreakerSettings,
    DataSettings,
    ServerSettings,
    LoggingSettings,
    CORSSettings,
)

__all__ = [
    "get_settings",
    "reload_settings",
    "get_openai_settings",
    "get_agent_settings",
    "Settings",
    "OpenAISettings",
    "VectorStoreSettings",
    "AgentSettings",
    "SessionSettings",
    "CircuitBreakerSettings",
    "DataSettings",
    "ServerSettings",
    "LoggingSettings",
    "CORSSettings",
]
