"""分类阶段：把已放行的一轮对话路由给一个专家"""

from dataclasses import dataclass
from typing import Optional, Sequence

from config import AgentSettings
from core.interfaces import CatalogService, CompletionService
from core.types import AgentName
from infrastructure.exceptions import APIError
from models.session import Message
from nlp.prompts import CLASSIFICATION_PROMPT
from nlp.schemas import RoutingDecision
from .base import StageService


@dataclass
class RoutingResult:
    """路由结果"""
    agent: AgentName
    category: Optional[str] = None
    reasoning: str = ""
    fallback: bool = False


class ClassificationStage(StageService):
    """分类阶段

    使用最近若干条消息（而非只看最后一句）判断，以便理解「再来两杯」这类跟进。
    持续失败时路由到 details。
    """

    stage_name = "classification"

    def __init__(
        self,
        completion: CompletionService,
        catalog: CatalogService,
        settings: Optional[AgentSettings] = None
    ):
        super().__init__(completion, settings)
        self.catalog = catalog

    async def classify(self, history: Sequence[Message]) -> RoutingResult:
        categories = self.catalog.categories()
        instruction = CLASSIFICATION_PROMPT.format(
            categories="\n".join(f"- {c}" for c in categories) or "（无）"
        )

        try:
            decision = await self._request_structured(history, instruction, RoutingDecision)
        except APIError as e:
            self._fallback(e, default=AgentName.DETAILS.value)
            return RoutingResult(agent=AgentName.DETAILS, fallback=True)

        # 只接受目录中存在的分类
        category = decision.category if decision.category in categories else None
        return RoutingResult(
            agent=AgentName(decision.agent),
            category=category,
            reasoning=decision.reasoning
        )
