"""
组件装配

按配置创建编排器及其协作方。任何协作方都可以通过参数注入，
测试中以假实现替换模型服务和向量索引。
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config import Settings, get_settings
from core.interfaces import CatalogService, CompletionService, EmbeddingService, VectorSearchService
from infrastructure.cache import EmbeddingCache
from infrastructure.health import HealthChecker, build_health_checker
from infrastructure.llm_client import OpenAICompletionService, OpenAIEmbeddingService
from infrastructure.resilience import ModelCircuitBreakers
from models.catalog import AssociationRuleTable
from services.catalog import load_association_rules, load_menu_catalog
from services.classifier import ClassificationStage
from services.details import DetailsStage
from services.guard import GuardStage
from services.order_taking import OrderTakingStage
from services.recommendation import RecommendationEngine, RecommendationStage
from services.session_manager import SessionManager
from nlp.product_matcher import ProductMatcher
from nlp.vector_store import create_vector_index
from .orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class AssistantRuntime:
    """装配完成的运行时组件"""
    orchestrator: TurnOrchestrator
    catalog: CatalogService
    rules: AssociationRuleTable
    vector_index: VectorSearchService
    breakers: ModelCircuitBreakers
    embedding_cache: EmbeddingCache
    sessions: SessionManager
    health: HealthChecker


def build_runtime(
    settings: Optional[Settings] = None,
    completion: Optional[CompletionService] = None,
    embedder: Optional[EmbeddingService] = None,
    vector_index: Optional[VectorSearchService] = None,
    catalog: Optional[CatalogService] = None,
    rules: Optional[AssociationRuleTable] = None,
    session_manager: Optional[SessionManager] = None
) -> AssistantRuntime:
    """创建运行时组件"""
    settings = settings or get_settings()
    agent = settings.agent

    breakers = ModelCircuitBreakers(settings.circuit_breaker)
    embedding_cache = EmbeddingCache()

    if completion is None:
        completion = OpenAICompletionService(settings.openai, breakers.completion)
    if embedder is None:
        embedder = OpenAIEmbeddingService(settings.openai, breakers.embedding, cache=embedding_cache)

    if vector_index is None:
        vector_index = create_vector_index(settings.vector, timeout=settings.openai.timeout)

    if catalog is None:
        catalog = load_menu_catalog(settings.data.menu_path)
    if rules is None:
        rules = load_association_rules(settings.data.rules_path, catalog)

    sessions = session_manager or SessionManager(
        idle_timeout=settings.session.idle_timeout,
        busy_policy=settings.session.busy_policy
    )

    engine = RecommendationEngine(
        catalog,
        rules,
        top_n=agent.recommendation_top_n,
        popular_n=agent.popular_fallback_n
    )

    orchestrator = TurnOrchestrator(
        guard=GuardStage(completion, agent),
        classifier=ClassificationStage(completion, catalog, agent),
        details=DetailsStage(
            completion, embedder, vector_index, catalog, agent, top_k=settings.vector.top_k
        ),
        order_taking=OrderTakingStage(
            completion,
            catalog,
            matcher=ProductMatcher(catalog, agent.fuzzy_threshold),
            engine=engine,
            settings=agent
        ),
        recommendation=RecommendationStage(completion, engine, agent),
        session_manager=sessions
    )

    health = build_health_checker(catalog, vector_index, breakers, sessions, embedding_cache)
    logger.info(f"编排器已创建: 向量索引={type(vector_index).__name__}, 会话策略={sessions.busy_policy.value}")

    return AssistantRuntime(
        orchestrator=orchestrator,
        catalog=catalog,
        rules=rules,
        vector_index=vector_index,
        breakers=breakers,
        embedding_cache=embedding_cache,
        sessions=sessions,
        health=health
    )


def build_orchestrator(**kwargs) -> TurnOrchestrator:
    """只需要编排器时的快捷方式"""
    return build_runtime(**kwargs).orchestrator
