"""订单数据模型与状态机"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from core.types import OrderEvent, OrderState
from infrastructure.exceptions import InvalidOrderStateError


@dataclass
class CartLine:
    """购物车行，同一商品只占一行"""
    product_id: str
    name: str
    unit_price: float
    quantity: int = 1
    modifiers: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValueError(f"购物车数量必须为正整数: {self.quantity}")

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    def merge_modifiers(self, modifiers: List[str]):
        """合并规格备注（保持顺序并去重）"""
        for modifier in modifiers:
            if modifier and modifier not in self.modifiers:
                self.modifiers.append(modifier)

    def to_string(self) -> str:
        text = f"{self.name} x{self.quantity}"
        if self.modifiers:
            text += f"（{'、'.join(self.modifiers)}）"
        return text

    def to_dict(self) -> Dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "modifiers": list(self.modifiers),
            "subtotal": self.subtotal,
        }


# ==================== 订单状态机 ====================

# (当前状态, 事件) -> 新状态；CANCEL 对任意状态生效
ORDER_TRANSITIONS: Dict[Tuple[OrderState, OrderEvent], OrderState] = {
    (OrderState.IDLE, OrderEvent.EDIT): OrderState.COLLECTING,
    (OrderState.COLLECTING, OrderEvent.EDIT): OrderState.COLLECTING,
    (OrderState.COLLECTING, OrderEvent.REQUEST_CONFIRMATION): OrderState.AWAITING_CONFIRMATION,
    (OrderState.AWAITING_CONFIRMATION, OrderEvent.AFFIRM): OrderState.CONFIRMED,
    (OrderState.AWAITING_CONFIRMATION, OrderEvent.EDIT): OrderState.COLLECTING,
}


def can_transition(state: OrderState, event: OrderEvent) -> bool:
    """检查状态转换是否合法"""
    return event == OrderEvent.CANCEL or (state, event) in ORDER_TRANSITIONS


def next_order_state(state: OrderState, event: OrderEvent) -> OrderState:
    """计算状态转换结果

    Raises:
        InvalidOrderStateError: 非法转换
    """
    if event == OrderEvent.CANCEL:
        return OrderState.IDLE
    try:
        return ORDER_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidOrderStateError(
            current_state=state.value,
            event=event.value,
            expected_states=[s.value for (s, e) in ORDER_TRANSITIONS if e == event]
        )
