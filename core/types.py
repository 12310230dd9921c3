"""
核心类型定义

提供系统中使用的枚举和类型常量。
"""

from enum import Enum


class Role(str, Enum):
    """消息角色"""
    USER = "user"
    ASSISTANT = "assistant"


class GuardDecision(str, Enum):
    """守卫阶段判定"""
    UNSET = "unset"
    ALLOWED = "allowed"
    REJECTED = "rejected"


class AgentName(str, Enum):
    """专家阶段标签

    分类阶段只会路由到 DETAILS / ORDER_TAKING / RECOMMENDATION 之一。
    """
    UNSET = "unset"
    DETAILS = "details"
    ORDER_TAKING = "order_taking"
    RECOMMENDATION = "recommendation"

    @classmethod
    def routable(cls) -> tuple:
        """可被路由的专家"""
        return (cls.DETAILS, cls.ORDER_TAKING, cls.RECOMMENDATION)


class OrderState(str, Enum):
    """订单状态机状态"""
    IDLE = "idle"
    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"


class OrderIntent(str, Enum):
    """点单意图"""
    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    UNCLEAR = "unclear"

    @classmethod
    def from_string(cls, value: str) -> 'OrderIntent':
        """从字符串转换为枚举，无法识别时返回 UNCLEAR"""
        try:
            return cls(value)
        except ValueError:
            return cls.UNCLEAR

    @property
    def is_edit(self) -> bool:
        return self in (OrderIntent.ADD, OrderIntent.REMOVE, OrderIntent.MODIFY)


class OrderEvent(str, Enum):
    """订单状态机事件"""
    EDIT = "edit"
    REQUEST_CONFIRMATION = "request_confirmation"
    AFFIRM = "affirm"
    CANCEL = "cancel"


class RecommendationStrategy(str, Enum):
    """推荐策略（按回退顺序）"""
    ASSOCIATION = "association"
    CATEGORY = "category"
    POPULARITY = "popularity"
    NONE = "none"


class BusyPolicy(str, Enum):
    """同一会话并发轮次策略"""
    QUEUE = "queue"
    REJECT = "reject"
