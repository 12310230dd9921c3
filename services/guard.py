"""守卫阶段：判断本轮是否在助手服务范围内"""

from dataclasses import dataclass
from typing import Optional, Sequence

from core.types import GuardDecision
from infrastructure.exceptions import APIError
from models.session import Message
from nlp.prompts import GUARD_PROMPT
from nlp.schemas import GuardJudgment
from .base import StageService

DEFAULT_REFUSAL = "抱歉，我只能帮您处理本店的商品咨询、点单和推荐，请问有什么可以帮您？"


@dataclass
class GuardResult:
    """守卫判定结果"""
    decision: GuardDecision
    refusal_message: Optional[str] = None
    reasoning: str = ""

    @property
    def admitted(self) -> bool:
        return self.decision == GuardDecision.ALLOWED


class GuardStage(StageService):
    """守卫阶段

    判定失败时按拒绝处理。
    """

    stage_name = "guard"

    async def admit(self, history: Sequence[Message]) -> GuardResult:
        try:
            judgment = await self._request_structured(history, GUARD_PROMPT, GuardJudgment)
        except APIError as e:
            self._fallback(e)
            return GuardResult(
                decision=GuardDecision.REJECTED,
                refusal_message=DEFAULT_REFUSAL,
                reasoning="守卫判定失败，默认拒绝"
            )

        if judgment.decision == "allowed":
            return GuardResult(decision=GuardDecision.ALLOWED, reasoning=judgment.reasoning)

        self._metrics.increment("stage.guard.rejected")
        return GuardResult(
            decision=GuardDecision.REJECTED,
            refusal_message=judgment.message.strip() or DEFAULT_REFUSAL,
            reasoning=judgment.reasoning
        )
