"""
核心模块

提供抽象接口和类型定义，解决循环依赖问题。
"""

from .interfaces import (
    CompletionService,
    EmbeddingService,
    VectorSearchService,
    CatalogService,
    SearchHit,
)
from .types import (
    Role,
    GuardDecision,
    AgentName,
    OrderState,
    OrderIntent,
    OrderEvent,
    RecommendationStrategy,
    BusyPolicy,
)

__all__ = [
    # 接口
    "CompletionService",
    "EmbeddingService",
    "VectorSearchService",
    "CatalogService",
    "SearchHit",
    # 类型
    "Role",
    "GuardDecision",
    "AgentName",
    "OrderState",
    "OrderIntent",
    "OrderEvent",
    "RecommendationStrategy",
    "BusyPolicy",
]
