"""推荐阶段

候选商品按 关联规则 → 分类热销 → 全店热销 的顺序解析，第一个产生结果的策略生效。
模型只负责把已选出的候选组织成自然的回复，不参与选品。
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from config import AgentSettings
from core.interfaces import CatalogService, CompletionService
from core.types import RecommendationStrategy
from infrastructure.exceptions import APIError
from models.catalog import AssociationRuleTable, Product
from models.order import CartLine
from models.session import Message
from nlp.prompts import RECOMMENDATION_PROMPT
from .base import StageService, latest_user_text

logger = logging.getLogger(__name__)

NO_CANDIDATE_REPLY = "您已经把我们的招牌都选上啦，还需要别的帮助吗？"


@dataclass
class Candidate:
    """推荐候选"""
    product: Product
    confidence: Optional[float] = None


@dataclass
class RecommendationResult:
    reply: str
    suggested_product_ids: List[str] = field(default_factory=list)
    strategy: RecommendationStrategy = RecommendationStrategy.NONE


class RecommendationEngine:
    """候选解析（纯规则，不调用模型）"""

    def __init__(
        self,
        catalog: CatalogService,
        rules: AssociationRuleTable,
        top_n: int = 3,
        popular_n: int = 3
    ):
        self.catalog = catalog
        self.rules = rules
        self.top_n = top_n
        self.popular_n = popular_n

    def by_association(self, cart_ids: Sequence[str]) -> List[Candidate]:
        """购物车中所有商品的关联后件取并集，同一后件保留最高置信度"""
        in_cart = set(cart_ids)
        best: Dict[str, float] = {}
        for product_id in cart_ids:
            for rule in self.rules.rules_for(product_id):
                if rule.consequent in in_cart:
                    continue
                if rule.confidence > best.get(rule.consequent, 0.0):
                    best[rule.consequent] = rule.confidence

        candidates = []
        for consequent, confidence in sorted(best.items(), key=lambda kv: (-kv[1], kv[0])):
            product = self.catalog.get_product(consequent)
            if product is None:
                logger.warning(f"关联规则引用了未知商品: {consequent}")
                continue
            candidates.append(Candidate(product, confidence))
            if len(candidates) >= self.top_n:
                break
        return candidates

    def by_category(self, category: str, cart_ids: Sequence[str]) -> List[Candidate]:
        in_cart = set(cart_ids)
        products = [p for p in self.catalog.list_by_category(category) if p.id not in in_cart]
        return [Candidate(p) for p in products[:self.top_n]]

    def by_popularity(self, cart_ids: Sequence[str]) -> List[Candidate]:
        in_cart = set(cart_ids)
        products = self.catalog.list_popular(self.popular_n + len(in_cart))
        return [Candidate(p) for p in products if p.id not in in_cart][:self.popular_n]

    def detect_category(self, text: str) -> Optional[str]:
        """从文本中识别目录分类名"""
        for category in self.catalog.categories():
            if category and category in text:
                return category
        return None

    def resolve(
        self,
        cart_ids: Sequence[str],
        category: Optional[str] = None
    ) -> Tuple[RecommendationStrategy, List[Candidate]]:
        candidates = self.by_association(cart_ids)
        if candidates:
            return RecommendationStrategy.ASSOCIATION, candidates

        if category:
            candidates = self.by_category(category, cart_ids)
            if candidates:
                return RecommendationStrategy.CATEGORY, candidates

        candidates = self.by_popularity(cart_ids)
        if candidates:
            return RecommendationStrategy.POPULARITY, candidates

        return RecommendationStrategy.NONE, []


def format_candidates(candidates: Sequence[Candidate]) -> str:
    lines = []
    for i, c in enumerate(candidates, 1):
        line = f"{i}. {c.product.name}（¥{c.product.price:g}）: {c.product.description}"
        if c.confidence is not None:
            line += f" [搭配度 {c.confidence:.0%}]"
        lines.append(line)
    return "\n".join(lines)


def template_reply(candidates: Sequence[Candidate]) -> str:
    names = "、".join(c.product.name for c in candidates)
    return f"为您推荐：{names}。需要的话告诉我「要第一个」就能加入订单。"


def _mentions_candidate(reply: str, candidates: Sequence[Candidate]) -> bool:
    for c in candidates:
        if c.product.name in reply or any(a and a in reply for a in c.product.aliases):
            return True
    return False


class RecommendationStage(StageService):
    """推荐阶段"""

    stage_name = "recommendation"

    def __init__(
        self,
        completion: CompletionService,
        engine: RecommendationEngine,
        settings: Optional[AgentSettings] = None
    ):
        super().__init__(completion, settings)
        self.engine = engine

    async def recommend(
        self,
        cart: Sequence[CartLine],
        history: Sequence[Message],
        category_hint: Optional[str] = None
    ) -> RecommendationResult:
        cart_ids = [line.product_id for line in cart]
        category = category_hint or self.engine.detect_category(latest_user_text(history))

        strategy, candidates = self.engine.resolve(cart_ids, category)
        self._metrics.increment("stage.recommendation.strategy", {"strategy": strategy.value})
        if not candidates:
            return RecommendationResult(reply=NO_CANDIDATE_REPLY, strategy=strategy)

        suggested = [c.product.id for c in candidates]
        instruction = RECOMMENDATION_PROMPT.format(candidates=format_candidates(candidates))
        try:
            reply = await self._complete_text(history, instruction)
        except APIError as e:
            self._fallback(e, strategy=strategy.value)
            reply = ""

        if not reply or not _mentions_candidate(reply, candidates):
            reply = template_reply(candidates)

        return RecommendationResult(reply=reply, suggested_product_ids=suggested, strategy=strategy)
