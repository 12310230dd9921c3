"""
LangGraph 轮次编排

每一轮对话的流程:

    [用户输入] → [守卫] ──拒绝──▶ [结束]
                    │放行
                    ▼
                 [分类] → [路由]
                            ├─▶ [商品详情]
                            ├─▶ [点单]
                            └─▶ [推荐]

同一会话的轮次在会话锁内串行执行。轮次中出现未被阶段吸收的异常时，
会话历史和记忆恢复到本轮开始前的状态，并返回一条轮次级失败回复。
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TypedDict

from langgraph.graph import StateGraph, END

from core.types import AgentName, OrderState, Role
from infrastructure.monitoring import get_metrics_collector, get_structured_logger, monitor_performance
from models.session import Session
from services.classifier import ClassificationStage, RoutingResult
from services.details import DetailsStage
from services.guard import GuardResult, GuardStage
from services.order_taking import OrderTakingStage
from services.recommendation import RecommendationStage
from services.session_manager import SessionManager

logger = logging.getLogger(__name__)

TURN_FAILURE_REPLY = "抱歉，系统刚才出了点问题，您的订单没有变化，请再说一次。"
EMPTY_REPLY = "抱歉，我没有理解您的意思，可以换个说法吗？"


class TurnState(TypedDict, total=False):
    """图内流转的轮次状态（会话对象按引用传递）"""
    session: Session
    user_text: str
    guard_result: GuardResult
    routing: RoutingResult
    reply: str


@dataclass
class TurnResult:
    """一轮对话的对外结果"""
    session_id: str
    reply: str
    cart: List[Dict[str, Any]] = field(default_factory=list)
    order_state: OrderState = OrderState.IDLE
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "reply": self.reply,
            "cart": self.cart,
            "order_state": self.order_state.value,
        }


class TurnNodes:
    """图节点：调用阶段服务并写入会话记忆"""

    def __init__(
        self,
        guard: GuardStage,
        classifier: ClassificationStage,
        details: DetailsStage,
        order_taking: OrderTakingStage,
        recommendation: RecommendationStage
    ):
        self.guard_stage = guard
        self.classifier = classifier
        self.details_stage = details
        self.order_stage = order_taking
        self.recommendation_stage = recommendation

    async def guard(self, state: TurnState) -> Dict:
        session = state["session"]
        result = await self.guard_stage.admit(session.history)
        session.memory.guard_decision = result.decision

        update: Dict[str, Any] = {"guard_result": result}
        if not result.admitted:
            update["reply"] = result.refusal_message
        return update

    async def classify(self, state: TurnState) -> Dict:
        session = state["session"]
        routing = await self.classifier.classify(session.history)
        session.memory.routed_agent = routing.agent
        session.memory.category_hint = routing.category
        return {"routing": routing}

    async def details(self, state: TurnState) -> Dict:
        session = state["session"]
        result = await self.details_stage.answer(state["user_text"], session.history, session.memory)
        return {"reply": result.reply}

    async def order_taking(self, state: TurnState) -> Dict:
        session = state["session"]
        result = await self.order_stage.handle(session.history, session.memory)
        return {"reply": result.reply}

    async def recommendation(self, state: TurnState) -> Dict:
        session = state["session"]
        memory = session.memory
        result = await self.recommendation_stage.recommend(memory.cart, session.history, memory.category_hint)
        memory.recommendation_cache = list(result.suggested_product_ids) or None
        return {"reply": result.reply}


# ==================== 路由函数 ====================

def route_after_guard(state: TurnState) -> str:
    """守卫拒绝时直接结束，不运行任何专家"""
    return "classify" if state["guard_result"].admitted else END


def route_by_agent(state: TurnState) -> str:
    agent = state["session"].memory.routed_agent
    if agent not in AgentName.routable():
        return AgentName.DETAILS.value
    return agent.value


# ==================== 编排器 ====================

class TurnOrchestrator:
    """会话编排器，对外提供 post_turn"""

    def __init__(
        self,
        guard: GuardStage,
        classifier: ClassificationStage,
        details: DetailsStage,
        order_taking: OrderTakingStage,
        recommendation: RecommendationStage,
        session_manager: Optional[SessionManager] = None
    ):
        self.sessions = session_manager or SessionManager()
        self.nodes = TurnNodes(guard, classifier, details, order_taking, recommendation)
        self.graph = self._build_graph()
        # 会话状态由 SessionManager 持有，不使用检查点
        self.app = self.graph.compile()

        self._logger = get_structured_logger("workflow")
        self._metrics = get_metrics_collector()

    def _build_graph(self) -> StateGraph:
        """构建 LangGraph 轮次图"""
        workflow = StateGraph(TurnState)

        workflow.add_node("guard", self.nodes.guard)
        workflow.add_node("classify", self.nodes.classify)
        workflow.add_node(AgentName.DETAILS.value, self.nodes.details)
        workflow.add_node(AgentName.ORDER_TAKING.value, self.nodes.order_taking)
        workflow.add_node(AgentName.RECOMMENDATION.value, self.nodes.recommendation)

        workflow.set_entry_point("guard")
        workflow.add_conditional_edges(
            "guard",
            route_after_guard,
            {"classify": "classify", END: END}
        )
        workflow.add_conditional_edges(
            "classify",
            route_by_agent,
            {agent.value: agent.value for agent in AgentName.routable()}
        )
        for agent in AgentName.routable():
            workflow.add_edge(agent.value, END)

        return workflow

    @monitor_performance("workflow.post_turn")
    async def post_turn(self, session_id: str, user_text: str) -> TurnResult:
        """处理一轮用户输入

        Raises:
            ConcurrentTurnConflict: reject 策略下同一会话上一轮尚未完成
        """
        async with self.sessions.turn_lock(session_id):
            session = self.sessions.get_or_create(session_id)
            return await self._run_turn(session, user_text)

    async def _run_turn(self, session: Session, user_text: str) -> TurnResult:
        start = time.time()
        checkpoint = session.checkpoint()

        session.add_message(Role.USER, user_text)
        session.memory.begin_turn()

        try:
            final_state = await self.app.ainvoke({
                "session": session,
                "user_text": user_text,
                "reply": ""
            })
        except Exception as e:
            session.restore(checkpoint)
            session.touch()
            self._logger.error(
                "turn_failed",
                session_id=session.session_id,
                error_type=type(e).__name__,
                error_message=str(e)
            )
            self._metrics.increment("workflow.turn.failed", {"error": type(e).__name__})
            return TurnResult(
                session_id=session.session_id,
                reply=TURN_FAILURE_REPLY,
                cart=session.memory.cart_snapshot(),
                order_state=session.memory.order_state,
                failed=True
            )

        reply = final_state.get("reply") or EMPTY_REPLY
        session.add_message(Role.ASSISTANT, reply)
        session.touch()

        memory = session.memory
        self._logger.log_turn(
            session_id=session.session_id,
            guard_decision=memory.guard_decision.value,
            routed_agent=memory.routed_agent.value,
            order_state=memory.order_state.value,
            duration_ms=(time.time() - start) * 1000
        )
        self._metrics.increment("workflow.turn.routed", {"agent": memory.routed_agent.value})

        return TurnResult(
            session_id=session.session_id,
            reply=reply,
            cart=memory.cart_snapshot(),
            order_state=memory.order_state
        )

    def get_graph_visualization(self) -> str:
        """获取轮次图的 Mermaid 表示"""
        return self.app.get_graph().draw_mermaid()
