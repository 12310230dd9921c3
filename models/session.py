"""会话数据模型"""

import copy
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from core.types import AgentName, GuardDecision, OrderEvent, OrderState, Role
from .order import CartLine, next_order_state


@dataclass(frozen=True)
class Message:
    """对话消息，追加后不可变"""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class RetrievedPassage:
    """检索到的商品段落"""
    product_id: str
    text: str
    score: float


@dataclass
class AgentMemory:
    """会话内各阶段共享的记忆

    每个会话独占一个实例，按阶段划分读写字段：
    - guard_decision: 守卫阶段结果（编排器写入）
    - routed_agent / category_hint: 分类阶段结果（编排器写入）
    - last_retrieved_context: 商品详情阶段写入
    - cart / order_state: 点单阶段写入
    - recommendation_cache: 推荐阶段写入（点单阶段确认前的搭配推荐也会写入）
    """
    guard_decision: GuardDecision = GuardDecision.UNSET
    routed_agent: AgentName = AgentName.UNSET
    cart: List[CartLine] = field(default_factory=list)
    order_state: OrderState = OrderState.IDLE
    last_retrieved_context: List[RetrievedPassage] = field(default_factory=list)
    recommendation_cache: Optional[List[str]] = None
    category_hint: Optional[str] = None

    # ==================== 购物车 ====================

    def find_line(self, product_id: str) -> Optional[CartLine]:
        for line in self.cart:
            if line.product_id == product_id:
                return line
        return None

    def upsert_line(
        self,
        product_id: str,
        name: str,
        unit_price: float,
        quantity: int,
        modifiers: Optional[List[str]] = None
    ) -> CartLine:
        """添加商品，同一商品合并数量"""
        if quantity < 1:
            raise ValueError(f"添加数量必须为正整数: {quantity}")
        line = self.find_line(product_id)
        if line:
            line.quantity += quantity
            line.merge_modifiers(modifiers or [])
            return line
        line = CartLine(
            product_id=product_id,
            name=name,
            unit_price=unit_price,
            quantity=quantity,
            modifiers=list(modifiers or [])
        )
        self.cart.append(line)
        return line

    def remove_quantity(self, product_id: str, quantity: Optional[int] = None) -> bool:
        """减少数量，减到 0 时删除该行；quantity 为空时整行删除"""
        line = self.find_line(product_id)
        if line is None:
            return False
        if quantity is None or quantity >= line.quantity:
            self.cart.remove(line)
        else:
            line.quantity -= quantity
        return True

    def set_quantity(
        self,
        product_id: str,
        quantity: int,
        modifiers: Optional[List[str]] = None
    ) -> bool:
        """修改数量，设为 0 时删除该行"""
        line = self.find_line(product_id)
        if line is None:
            return False
        if quantity <= 0:
            self.cart.remove(line)
            return True
        line.quantity = quantity
        line.merge_modifiers(modifiers or [])
        return True

    def clear_cart(self):
        self.cart.clear()

    @property
    def cart_total(self) -> float:
        return round(sum(line.subtotal for line in self.cart), 2)

    def cart_product_ids(self) -> List[str]:
        return [line.product_id for line in self.cart]

    def cart_snapshot(self) -> List[Dict]:
        """购物车快照（与内部状态解耦）"""
        return [line.to_dict() for line in self.cart]

    # ==================== 订单状态 ====================

    def apply_event(self, event: OrderEvent) -> OrderState:
        """按状态机推进订单状态"""
        self.order_state = next_order_state(self.order_state, event)
        if event == OrderEvent.CANCEL:
            self.clear_cart()
        return self.order_state

    def begin_turn(self):
        """新一轮开始时重置本轮判定"""
        self.guard_decision = GuardDecision.UNSET
        self.routed_agent = AgentName.UNSET


@dataclass
class Session:
    """会话：有序消息历史 + 独占的 AgentMemory"""
    session_id: str
    history: List[Message] = field(default_factory=list)
    memory: AgentMemory = field(default_factory=AgentMemory)
    created_at: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)

    def add_message(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self.history.append(message)
        return message

    def recent_history(self, window: int) -> List[Message]:
        return list(self.history[-window:])

    def touch(self):
        self.last_active = time.time()

    def is_idle(self, timeout: float) -> bool:
        return (time.time() - self.last_active) > timeout

    def checkpoint(self) -> tuple:
        """记录当前状态，用于轮次失败时恢复"""
        return len(self.history), copy.deepcopy(self.memory)

    def restore(self, checkpoint: tuple):
        history_len, memory = checkpoint
        del self.history[history_len:]
        self.memory = memory

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "history": [m.to_dict() for m in self.history],
            "cart": self.memory.cart_snapshot(),
            "cart_total": self.memory.cart_total,
            "order_state": self.memory.order_state.value,
            "created_at": self.created_at,
            "last_active": self.last_active,
        }
